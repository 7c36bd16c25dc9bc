"""
Project Name: Gateflash
Copyright (c) 2025 Gateflash contributors

Permission is hereby granted under MIT license.

This module handles the board catalog for the Gateflash application.
It is responsible for:
- Fetching board definitions from the remote catalog (boards.json).
- Completing sparse catalog entries from the built-in flash layouts.
- Rejecting entries whose flash layout is unusable.
- Falling back to the built-in catalog when the remote one is unavailable.
- Merging the user's local board overrides (~/.gateflash/boards.json).

Remote entries have the shape
    {"value": id, "label": name, "expert_mode": 0|1,
     "chipFamily": "ESP32-S3", "prefix": "ESP32S3-8MB",
     "parts": [{"path": "bootloader.bin", "offset": 0}, ...]}
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from gateflash.config import ConfigManager, get_local_boards
from gateflash.constants import (
    BOARD_LAYOUTS,
    FALLBACK_BOARDS,
    CATALOG_TIMEOUT,
    MAX_FLASH_OFFSET,
    TIER_STANDARD,
    TIER_EXPERT,
)
from gateflash.utils import parse_offset, role_from_path

logger = logging.getLogger("BoardCatalog")


class BoardDefinitionError(ValueError):
    """Raised when a catalog entry cannot be turned into a BoardDefinition."""

    pass


@dataclass(frozen=True)
class FlashSegment:
    file_role: str
    flash_offset: int


@dataclass(frozen=True)
class BoardDefinition:
    id: str
    display_name: str
    chip_family: str
    segments: tuple
    visibility_tier: str = TIER_STANDARD
    asset_prefix: str = ""

    def __post_init__(self):
        validate_segments(self.id, self.segments)

    @property
    def is_expert(self) -> bool:
        return self.visibility_tier == TIER_EXPERT

    @property
    def offsets(self) -> list:
        return [segment.flash_offset for segment in self.segments]


def validate_segments(board_id: str, segments) -> None:
    """
    Checks a flash layout: at least one segment, the bootloader at 0x0,
    strictly increasing offsets that fit in 32 bits and unique roles.
    """
    if not segments:
        raise BoardDefinitionError(f"Board '{board_id}' has no flash segments.")
    previous = -1
    roles = set()
    for segment in segments:
        offset = segment.flash_offset
        if offset < 0 or offset > MAX_FLASH_OFFSET:
            raise BoardDefinitionError(
                f"Board '{board_id}': offset 0x{offset:X} is out of range."
            )
        if offset <= previous:
            raise BoardDefinitionError(
                f"Board '{board_id}': offsets are not strictly increasing at 0x{offset:X}."
            )
        if segment.file_role in roles:
            raise BoardDefinitionError(
                f"Board '{board_id}': duplicate segment '{segment.file_role}'."
            )
        roles.add(segment.file_role)
        previous = offset
    if segments[0].flash_offset != 0:
        raise BoardDefinitionError(f"Board '{board_id}' has no segment at 0x0.")


def board_from_entry(entry: dict) -> BoardDefinition:
    """
    Coerces one catalog entry into a BoardDefinition. Missing chip family,
    parts or asset prefix are taken from the built-in layout of the same id.
    """
    if not isinstance(entry, dict):
        raise BoardDefinitionError(f"Catalog entry is not an object: {entry!r}")
    board_id = entry.get("value")
    if not isinstance(board_id, str) or not board_id:
        raise BoardDefinitionError(f"Catalog entry without an id: {entry!r}")

    layout = BOARD_LAYOUTS.get(board_id, {})
    chip_family = entry.get("chipFamily") or layout.get("chipFamily")
    parts = entry.get("parts") or layout.get("parts")
    if not chip_family or not parts:
        raise BoardDefinitionError(f"No flash layout known for board '{board_id}'.")
    if not isinstance(parts, list):
        raise BoardDefinitionError(f"Board '{board_id}': parts is not a list.")

    segments = []
    for part in parts:
        if not isinstance(part, dict) or "path" not in part:
            raise BoardDefinitionError(f"Board '{board_id}': malformed part {part!r}")
        offset = parse_offset(part.get("offset"))
        if offset is None:
            raise BoardDefinitionError(
                f"Board '{board_id}': invalid offset {part.get('offset')!r}"
            )
        segments.append(FlashSegment(role_from_path(str(part["path"])), offset))

    tier = TIER_EXPERT if entry.get("expert_mode") in (1, True, "1") else TIER_STANDARD
    prefix = entry.get("prefix") or layout.get("prefix") or board_id.upper()

    return BoardDefinition(
        id=board_id,
        display_name=str(entry.get("label") or board_id),
        chip_family=str(chip_family),
        segments=tuple(segments),
        visibility_tier=tier,
        asset_prefix=str(prefix),
    )


def boards_from_entries(entries) -> list:
    """Builds boards from raw entries, skipping (and logging) the invalid ones."""
    if entries is not None and not isinstance(entries, list):
        logger.warning(f"Board list is not a JSON array: {entries!r}")
        return []
    boards = []
    seen = set()
    for entry in entries or []:
        try:
            board = board_from_entry(entry)
        except BoardDefinitionError as e:
            logger.warning(f"Skipping board catalog entry: {e}")
            continue
        if board.id in seen:
            logger.warning(f"Skipping duplicate board id '{board.id}'.")
            continue
        seen.add(board.id)
        boards.append(board)
    return boards


def builtin_boards() -> list:
    return boards_from_entries(FALLBACK_BOARDS)


class BoardCatalog:
    """
    Loads and caches the known board definitions. Loading never raises:
    any failure of the remote catalog substitutes the built-in set.
    """

    def __init__(self, config_manager: ConfigManager, url: Optional[str] = None):
        self.config_manager = config_manager
        self.url = url or config_manager.get_value("board-catalog-url")
        self._boards: Optional[list] = None
        self.used_fallback = False

    def _fetch_remote(self) -> list:
        logger.debug(f"Fetching board catalog from {self.url}...")
        response = requests.get(self.url, timeout=CATALOG_TIMEOUT)
        response.raise_for_status()
        config = response.json()
        if not isinstance(config, dict):
            raise BoardDefinitionError("Board catalog is not a JSON object.")
        boards = boards_from_entries(config.get("boards"))
        if not boards:
            raise BoardDefinitionError("Board catalog contains no usable boards.")
        return boards

    def _merge_local(self, boards: list) -> list:
        """Entries from the local override file replace boards with the same id."""
        local = get_local_boards()
        if not isinstance(local, dict):
            return boards
        overrides = boards_from_entries(local.get("boards", []))
        by_id = {board.id: board for board in boards}
        for board in overrides:
            if board.id not in by_id:
                boards.append(board)
            by_id[board.id] = board
        return [by_id[board.id] for board in boards]

    def load(self, refresh: bool = False) -> list:
        if self._boards is not None and not refresh:
            return list(self._boards)

        try:
            boards = self._fetch_remote()
            self.used_fallback = False
        except (requests.RequestException, ValueError) as e:
            # ValueError covers JSON decoding and BoardDefinitionError
            logger.warning(f"Failed to fetch board config, using defaults: {e}")
            boards = builtin_boards()
            self.used_fallback = True

        self._boards = self._merge_local(boards)
        logger.debug(f"Loaded {len(self._boards)} boards.")
        return list(self._boards)

    def list_for(self, tier: str) -> list:
        """Standard boards are always listed; expert boards only in the expert tier."""
        return [
            board
            for board in self.load()
            if not board.is_expert or tier == TIER_EXPERT
        ]

    def get(self, board_id: Optional[str]) -> Optional[BoardDefinition]:
        if not board_id:
            return None
        for board in self.load():
            if board.id == board_id:
                return board
        return None
