"""
Project Name: Gateflash
Copyright (c) 2025 Gateflash contributors

Permission is hereby granted under MIT license.

Asset Resolution Module

Maps every flash segment of a board to a location its bytes can be fetched
from. Strategies are tried in order and the first one that produces a
candidate wins:

    user-upload     bytes the user supplied for the firmware/filesystem role
    origin-release  release asset named "<prefix>-<role>.bin"
    cdn-mirror      {mirror}/{version}/<prefix>-<role>.bin (only if configured)
    local-hosted    {firmware base}/{version}/<prefix>-<role>.bin
"""

import logging
from dataclasses import dataclass
from typing import Optional

from gateflash.boards import BoardCatalog, BoardDefinition, FlashSegment
from gateflash.config import ConfigManager
from gateflash.constants import (
    ROLE_FIRMWARE,
    ROLE_FILESYSTEM,
    FILESYSTEM_SEGMENT_ROLES,
    STRATEGY_USER_UPLOAD,
    STRATEGY_ORIGIN_RELEASE,
    STRATEGY_CDN_MIRROR,
    STRATEGY_LOCAL_HOSTED,
)
from gateflash.releases import ReleaseCatalog, ReleaseDescriptor
from gateflash.selection import SelectionState

logger = logging.getLogger("AssetResolver")


class AssetResolutionAmbiguous(Exception):
    """The selected board/release pairing cannot be resolved."""

    pass


@dataclass(frozen=True)
class ResolvedSegment:
    file_role: str
    flash_offset: int
    source_url: str
    strategy: str
    file_name: str
    payload: Optional[bytes] = None

    @property
    def is_upload(self) -> bool:
        return self.payload is not None


@dataclass(frozen=True)
class ResolutionResult:
    resolved: tuple
    missing: frozenset

    @property
    def complete(self) -> bool:
        return not self.missing


def expected_file_name(board: BoardDefinition, segment: FlashSegment) -> str:
    return f"{board.asset_prefix}-{segment.file_role}.bin"


def custom_role_for(segment: FlashSegment) -> Optional[str]:
    """Which uploadable role (firmware/filesystem) overrides this segment, if any."""
    if segment.file_role == ROLE_FIRMWARE:
        return ROLE_FIRMWARE
    if segment.file_role in FILESYSTEM_SEGMENT_ROLES:
        return ROLE_FILESYSTEM
    return None


def _join(base: str, version: str, file_name: str) -> str:
    return f"{base.rstrip('/')}/{version}/{file_name}"


class ResolutionStrategy:
    name = ""

    def locate(
        self,
        board: BoardDefinition,
        segment: FlashSegment,
        release: Optional[ReleaseDescriptor],
        custom_binaries: dict,
    ) -> Optional[ResolvedSegment]:
        raise NotImplementedError

    def _resolved(self, segment, url, file_name, payload=None):
        return ResolvedSegment(
            file_role=segment.file_role,
            flash_offset=segment.flash_offset,
            source_url=url,
            strategy=self.name,
            file_name=file_name,
            payload=payload,
        )


class UserUploadStrategy(ResolutionStrategy):
    name = STRATEGY_USER_UPLOAD

    def locate(self, board, segment, release, custom_binaries):
        role = custom_role_for(segment)
        custom = custom_binaries.get(role) if role else None
        if custom is None:
            return None
        return self._resolved(segment, f"upload:{custom.name}", custom.name, custom.data)


class ReleaseAssetStrategy(ResolutionStrategy):
    name = STRATEGY_ORIGIN_RELEASE

    def locate(self, board, segment, release, custom_binaries):
        if release is None:
            return None
        file_name = expected_file_name(board, segment)
        asset = release.find_asset(file_name)
        if asset is None:
            return None
        return self._resolved(segment, asset.download_url, file_name)


class TemplateStrategy(ResolutionStrategy):
    """Builds {base}/{version}/{file name} without checking that it exists."""

    def __init__(self, base_url: Optional[str]):
        self.base_url = base_url

    def locate(self, board, segment, release, custom_binaries):
        if release is None or not self.base_url:
            return None
        file_name = expected_file_name(board, segment)
        return self._resolved(
            segment, _join(self.base_url, release.tag, file_name), file_name
        )


class CdnMirrorStrategy(TemplateStrategy):
    name = STRATEGY_CDN_MIRROR


class ReleasePathStrategy(TemplateStrategy):
    name = STRATEGY_LOCAL_HOSTED


def default_strategies(config_manager: ConfigManager) -> list:
    strategies = [UserUploadStrategy(), ReleaseAssetStrategy()]
    mirror = config_manager.get_value("cdn-mirror-url")
    if mirror:
        strategies.append(CdnMirrorStrategy(mirror))
    strategies.append(ReleasePathStrategy(config_manager.get_value("firmware-base-url")))
    return strategies


class AssetResolver:
    def __init__(self, strategies: list):
        self.strategies = list(strategies)

    def resolve(
        self,
        board: BoardDefinition,
        release: Optional[ReleaseDescriptor],
        custom_binaries: Optional[dict] = None,
    ) -> ResolutionResult:
        custom_binaries = custom_binaries or {}
        resolved = []
        missing = set()
        for segment in board.segments:
            found = None
            for strategy in self.strategies:
                found = strategy.locate(board, segment, release, custom_binaries)
                if found is not None:
                    break
            if found is None:
                logger.warning(
                    f"No source for {segment.file_role} @ 0x{segment.flash_offset:X}"
                )
                missing.add(segment.file_role)
                continue
            logger.debug(
                f"{segment.file_role} @ 0x{segment.flash_offset:X} -> {found.source_url} ({found.strategy})"
            )
            resolved.append(found)
        return ResolutionResult(tuple(resolved), frozenset(missing))

    def resolve_selection(
        self,
        boards: BoardCatalog,
        releases: ReleaseCatalog,
        selection: SelectionState,
    ):
        """
        Resolves the currently selected board and release.
        Returns (board, release, ResolutionResult).
        Raises AssetResolutionAmbiguous for an unknown board or release.
        """
        board = boards.get(selection.board_id)
        if board is None:
            raise AssetResolutionAmbiguous(f"Unknown board '{selection.board_id}'.")
        release = releases.get(selection.release_tag)
        result = self.resolve(board, release, selection.custom_binaries)
        if release is None or result.missing:
            raise AssetResolutionAmbiguous(
                f"Release '{selection.release_tag}' is not available for {board.display_name}."
            )
        return board, release, result
