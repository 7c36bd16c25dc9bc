"""
Project Name: Gateflash
Copyright (c) 2025 Gateflash contributors

Permission is hereby granted under MIT license.

Selection State Module
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from gateflash.boards import BoardCatalog
from gateflash.constants import CUSTOM_BINARY_ROLES, TIERS, TIER_STANDARD, TIER_EXPERT

logger = logging.getLogger("Selection")


class SelectionError(ValueError):
    """Raised for a selection the current state does not allow."""

    pass


@dataclass(frozen=True)
class CustomBinary:
    name: str
    data: bytes


@dataclass(frozen=True)
class FlashOptions:
    erase_before_flash: bool = False
    verify_after_flash: bool = True


class SelectionState:
    """
    The user's current choices: board, release, visibility tier, flash
    options and uploaded binaries. All changes go through the methods
    below; each one re-evaluates `ready` and notifies the listeners.
    """

    def __init__(self, boards: BoardCatalog):
        self.boards = boards
        self.board_id: Optional[str] = None
        self.release_tag: Optional[str] = None
        self.visibility_tier = TIER_STANDARD
        self.erase_before_flash = False
        self.verify_after_flash = True
        self.custom_binaries: dict = {}
        self.ready = False
        self._listeners: list = []

    def subscribe(self, listener: Callable) -> None:
        """listener(state) is called after every mutation."""
        self._listeners.append(listener)

    def _changed(self):
        self.ready = self._evaluate_ready()
        for listener in list(self._listeners):
            listener(self)

    def _evaluate_ready(self) -> bool:
        if not self.board_id or not self.release_tag:
            return False
        return self._in_scope(self.boards.get(self.board_id))

    def _in_scope(self, board) -> bool:
        if board is None:
            return False
        return not board.is_expert or self.visibility_tier == TIER_EXPERT

    def select_board(self, board_id: Optional[str]):
        if board_id:
            board = self.boards.get(board_id)
            if board is None:
                raise SelectionError(f"Unknown board '{board_id}'.")
            if not self._in_scope(board):
                raise SelectionError(
                    f"Board '{board_id}' is only available in expert mode."
                )
        self.board_id = board_id or None
        logger.debug(f"Selected board: {self.board_id}")
        self._changed()

    def select_release(self, tag: Optional[str]):
        self.release_tag = tag or None
        logger.debug(f"Selected release: {self.release_tag}")
        self._changed()

    def set_visibility_tier(self, tier: str):
        if tier not in TIERS:
            raise SelectionError(f"Unknown visibility tier '{tier}'.")
        self.visibility_tier = tier
        if tier == TIER_STANDARD and self.board_id:
            board = self.boards.get(self.board_id)
            if board is not None and board.is_expert:
                logger.info(
                    f"Board '{self.board_id}' is expert-only, clearing board selection."
                )
                self.board_id = None
        self._changed()

    def set_erase_before_flash(self, enabled: bool):
        self.erase_before_flash = bool(enabled)
        self._changed()

    def set_verify_after_flash(self, enabled: bool):
        self.verify_after_flash = bool(enabled)
        self._changed()

    def set_custom_binary(self, role: str, name: str, data: bytes):
        if role not in CUSTOM_BINARY_ROLES:
            raise SelectionError(
                f"Custom binaries are only supported for: {', '.join(CUSTOM_BINARY_ROLES)}"
            )
        if not data:
            raise SelectionError(f"Custom {role} binary '{name}' is empty.")
        self.custom_binaries[role] = CustomBinary(name, bytes(data))
        logger.debug(f"Custom {role} binary set: {name} ({len(data)} bytes)")
        self._changed()

    def clear_custom_binary(self, role: str):
        self.custom_binaries.pop(role, None)
        self._changed()

    def flash_options(self) -> FlashOptions:
        return FlashOptions(self.erase_before_flash, self.verify_after_flash)
