"""
Project Name: Gateflash
Copyright (c) 2025 Gateflash contributors

Permission is hereby granted under MIT license.

Flash Manifest Module
"""

import json
from dataclasses import dataclass

from gateflash.boards import BoardDefinition
from gateflash.constants import PRODUCT_NAME
from gateflash.releases import ReleaseDescriptor
from gateflash.utils import data_uri


class IncompleteManifest(Exception):
    """Resolved segments do not line up with the board's flash layout."""

    pass


@dataclass(frozen=True)
class FlashManifest:
    display_name: str
    version: str
    chip_family: str
    segments: tuple
    new_install_prompt_erase: bool = True

    def to_dict(self) -> dict:
        """The manifest in the JSON shape used by web-based ESP flashers."""
        parts = []
        for segment in self.segments:
            path = data_uri(segment.payload) if segment.is_upload else segment.source_url
            parts.append({"path": path, "offset": segment.flash_offset})
        return {
            "name": self.display_name,
            "version": self.version,
            "chipFamily": self.chip_family,
            "new_install_prompt_erase": self.new_install_prompt_erase,
            "builds": [{"chipFamily": self.chip_family, "parts": parts}],
        }

    def to_json(self, indent=4) -> str:
        return json.dumps(self.to_dict(), indent=indent)


class ManifestBuilder:
    def __init__(self, product_name: str = PRODUCT_NAME):
        self.product_name = product_name

    def build(
        self,
        board: BoardDefinition,
        release: ReleaseDescriptor,
        resolved_segments,
        prompt_erase: bool = True,
    ) -> FlashManifest:
        resolved_segments = tuple(resolved_segments)
        if len(resolved_segments) != len(board.segments):
            raise IncompleteManifest(
                f"{board.id}: expected {len(board.segments)} segments, got {len(resolved_segments)}."
            )
        for expected, resolved in zip(board.segments, resolved_segments):
            if (
                expected.file_role != resolved.file_role
                or expected.flash_offset != resolved.flash_offset
            ):
                raise IncompleteManifest(
                    f"{board.id}: segment {resolved.file_role} @ 0x{resolved.flash_offset:X} "
                    f"does not match {expected.file_role} @ 0x{expected.flash_offset:X}."
                )

        return FlashManifest(
            display_name=f"{self.product_name} {release.tag}",
            version=release.tag,
            chip_family=board.chip_family,
            segments=resolved_segments,
            new_install_prompt_erase=prompt_erase,
        )
