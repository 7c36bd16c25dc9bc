"""
Project Name: Gateflash
Copyright (c) 2025 Gateflash contributors

Permission is hereby granted under MIT license.

Flash Orchestration Module
"""

import time
import logging
import webbrowser
from typing import Callable, Optional

from gateflash.boards import BoardCatalog
from gateflash.config import ConfigManager
from gateflash.constants import TIER_EXPERT, TIER_STANDARD
from gateflash.esp_tool import ProgrammerDriver
from gateflash.manifest import FlashManifest, ManifestBuilder
from gateflash.releases import CatalogUnavailable, ReleaseCatalog, release_info
from gateflash.resolver import AssetResolutionAmbiguous, AssetResolver, default_strategies
from gateflash.selection import SelectionState
from gateflash.session import FlashEvents, FlashSession, FlashState
from gateflash.utils import time_formatter

logger = logging.getLogger("Flasher")

VERSIONS_FAILED_PLACEHOLDER = ("", "Failed to load versions")


class FlashManager:
    """
    Ties the catalogs, the selection and the resolver together and runs
    flash sessions, one at a time. Catalog and resolution failures are
    turned into a single user-facing message in `error_message`; session
    failures are reported through the session events and also recorded
    there.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        boards: Optional[BoardCatalog] = None,
        releases: Optional[ReleaseCatalog] = None,
        resolver: Optional[AssetResolver] = None,
        builder: Optional[ManifestBuilder] = None,
    ):
        self.config_manager = config_manager
        self.boards = boards or BoardCatalog(config_manager)
        self.releases = releases or ReleaseCatalog(config_manager)
        self.resolver = resolver or AssetResolver(default_strategies(config_manager))
        self.builder = builder or ManifestBuilder()
        self.selection = SelectionState(self.boards)
        self.session: Optional[FlashSession] = None
        self.releases_available = False
        self.start_enabled = True
        self.error_message: Optional[str] = None

    def show_error(self, message: str):
        self.error_message = message
        logger.error(message)

    def clear_error(self):
        self.error_message = None

    def load_catalogs(self) -> bool:
        """
        Loads boards (never fails) and releases, then preselects the latest
        stable release. Returns False when the releases could not be loaded.
        """
        self.boards.load()
        try:
            self.releases.load()
        except CatalogUnavailable as e:
            logger.debug(f"Release catalog unavailable: {e}")
            self.releases_available = False
            self.selection.select_release(None)
            self.show_error("Failed to load firmware versions. Please try again later.")
            return False

        self.releases_available = True
        latest = self.releases.latest_stable()
        if latest is not None:
            self.selection.select_release(latest.tag)
        return True

    def board_options(self) -> list:
        return [
            (board.id, board.display_name)
            for board in self.boards.list_for(self.selection.visibility_tier)
        ]

    def release_options(self) -> list:
        if not self.releases_available:
            return [VERSIONS_FAILED_PLACEHOLDER]
        return [
            (release.tag, self.releases.option_label(release))
            for release in self.releases.load()
        ]

    def version_info(self) -> str:
        if not self.releases_available:
            return ""
        return release_info(self.releases.get(self.selection.release_tag))

    def set_expert_mode(self, enabled: bool):
        self.selection.set_visibility_tier(TIER_EXPERT if enabled else TIER_STANDARD)

    @property
    def flash_active(self) -> bool:
        return self.session is not None and not self.session.is_terminal

    @property
    def ready_to_flash(self) -> bool:
        return self.releases_available and self.selection.ready and not self.flash_active

    def prepare_manifest(self) -> Optional[FlashManifest]:
        """Resolves the current selection into a manifest, or records why it cannot."""
        try:
            board, release, result = self.resolver.resolve_selection(
                self.boards, self.releases, self.selection
            )
        except (AssetResolutionAmbiguous, CatalogUnavailable) as e:
            self.show_error(str(e))
            return None
        return self.builder.build(board, release, result.resolved)

    def start_flash(
        self,
        driver: ProgrammerDriver,
        events: Optional[FlashEvents] = None,
        session_hook: Optional[Callable] = None,
    ) -> Optional[FlashSession]:
        """
        Runs one flash session to completion and returns it. Returns None
        without touching the device if a session is already running or the
        selection cannot be flashed. session_hook(session) is called before
        the session begins, e.g. to wire up cancellation.
        """
        if self.flash_active:
            logger.warning("A flash session is already running, ignoring start request.")
            return None
        if not self.ready_to_flash:
            self.show_error("Select a board and a firmware version first.")
            return None

        self.clear_error()
        manifest = self.prepare_manifest()
        if manifest is None:
            return None

        events = events or FlashEvents()
        user_on_error = events.on_error

        def on_error(error):
            self.show_error(str(error))
            if user_on_error:
                user_on_error(error)

        session_events = FlashEvents(
            on_progress=events.on_progress,
            on_log=events.on_log,
            on_error=on_error,
            on_complete=events.on_complete,
            on_state=events.on_state,
        )

        self.session = FlashSession(driver, session_events)
        if session_hook:
            session_hook(self.session)
        self.start_enabled = False
        start_time = time.time()
        try:
            state = self.session.begin(manifest, self.selection.flash_options())
        finally:
            self.start_enabled = True

        if state is FlashState.COMPLETED:
            logger.info(
                f"{manifest.display_name} flashed in {time_formatter(time.time() - start_time)}"
            )
            port = getattr(driver, "port", None)
            if port:
                self.config_manager.set_value("port", port)
        return self.session

    def device_urls(self):
        hostname = self.config_manager.get_value("device-hostname")
        ip = self.config_manager.get_value("device-ip")
        return f"http://{hostname}", f"http://{ip}"

    def open_device(
        self,
        confirm: Callable[[str], bool],
        opener: Callable = webbrowser.open,
    ) -> str:
        """
        Opens the device's web page by hostname, then offers the access
        point IP when the user reports that the hostname did not work.
        Returns the last URL opened.
        """
        primary, fallback = self.device_urls()
        opener(primary)
        if confirm(f"If {primary} didn't work, try {fallback}?"):
            opener(fallback)
            return fallback
        return primary
