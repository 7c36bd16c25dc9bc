"""
Project Name: Gateflash
Copyright (c) 2025 Gateflash contributors

Permission is hereby granted under MIT license.

Firmware Release Catalog Module
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import requests

from gateflash.config import ConfigManager
from gateflash.constants import CATALOG_TIMEOUT

logger = logging.getLogger("Releases")


class CatalogUnavailable(Exception):
    """The release catalog could not be fetched or parsed."""

    pass


@dataclass(frozen=True)
class ReleaseAsset:
    file_name: str
    download_url: str


@dataclass(frozen=True)
class ReleaseDescriptor:
    tag: str
    published_at: Optional[datetime]
    is_prerelease: bool
    is_draft: bool
    assets: tuple

    @property
    def is_eligible(self) -> bool:
        return not self.is_draft and len(self.assets) > 0

    def find_asset(self, file_name: str) -> Optional[ReleaseAsset]:
        for asset in self.assets:
            if asset.file_name == file_name:
                return asset
        return None


def _parse_timestamp(value) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        # GitHub uses a trailing Z for UTC
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparsable release timestamp: {value}")
        return None


def release_from_entry(entry: dict) -> Optional[ReleaseDescriptor]:
    """Converts one GitHub release object, or returns None if it is malformed."""
    if not isinstance(entry, dict):
        return None
    tag = entry.get("tag_name")
    if not isinstance(tag, str) or not tag:
        return None

    raw_assets = entry.get("assets") or []
    if not isinstance(raw_assets, list):
        return None

    assets = []
    for asset in raw_assets:
        if not isinstance(asset, dict):
            continue
        name = asset.get("name")
        url = asset.get("browser_download_url")
        if name and url:
            assets.append(ReleaseAsset(str(name), str(url)))

    return ReleaseDescriptor(
        tag=tag,
        published_at=_parse_timestamp(entry.get("published_at")),
        is_prerelease=bool(entry.get("prerelease")),
        is_draft=bool(entry.get("draft")),
        assets=tuple(assets),
    )


class ReleaseCatalog:
    """
    Fetches the published firmware releases, newest first as served by the
    remote API. Drafts and releases without assets are never offered.
    There is no fallback: a failed fetch raises CatalogUnavailable.
    """

    def __init__(self, config_manager: ConfigManager, url: Optional[str] = None):
        self.config_manager = config_manager
        self.url = url or config_manager.get_value("release-catalog-url")
        self._releases: Optional[list] = None

    def load(self, refresh: bool = False) -> list:
        if self._releases is not None and not refresh:
            return list(self._releases)

        logger.debug(f"Fetching firmware releases from {self.url}...")
        try:
            response = requests.get(self.url, timeout=CATALOG_TIMEOUT)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise CatalogUnavailable(f"Failed to fetch releases: {e}") from e
        except ValueError as e:
            raise CatalogUnavailable(f"Release catalog is not valid JSON: {e}") from e

        if not isinstance(data, list):
            raise CatalogUnavailable("Release catalog is not a JSON array.")

        releases = []
        for entry in data:
            release = release_from_entry(entry)
            if release is None:
                logger.debug(f"Skipping malformed release entry: {entry!r}")
                continue
            if release.is_eligible:
                releases.append(release)

        self._releases = releases
        logger.debug(f"Loaded {len(releases)} firmware releases.")
        return list(releases)

    def latest_stable(self) -> Optional[ReleaseDescriptor]:
        releases = self.load()
        for release in releases:
            if not release.is_prerelease:
                return release
        return releases[0] if releases else None

    def get(self, tag: Optional[str]) -> Optional[ReleaseDescriptor]:
        if not tag:
            return None
        for release in self.load():
            if release.tag == tag:
                return release
        return None

    def option_label(self, release: ReleaseDescriptor) -> str:
        """Label for the version selector, e.g. "v1.3.0-beta (Pre-release)"."""
        label = release.tag
        if release.is_prerelease:
            label += " (Pre-release)"
        releases = self.load()
        if releases and releases[0].tag == release.tag:
            label += " (Latest)"
        return label


def release_info(release: Optional[ReleaseDescriptor]) -> str:
    """Short description shown under the version selector."""
    if release is None:
        return ""
    date = release.published_at.date().isoformat() if release.published_at else "unknown"
    suffix = " (Pre-release)" if release.is_prerelease else ""
    return f"Released: {date}{suffix}"
