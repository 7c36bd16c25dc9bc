#!/usr/bin/env python
"""
Project Name: Gateflash
Copyright (c) 2025 Gateflash contributors

Permission is hereby granted under MIT license.

Main CLI Handler for Gateflash
"""

import os
import sys
import signal
import logging
import platform
import argparse

import argcomplete
from argcomplete.completers import BaseCompleter
import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm
from rich.prompt import Confirm

from gateflash import __version__ as version
from gateflash.boards import BoardCatalog
from gateflash.config import ConfigManager
from gateflash.constants import ROLE_FIRMWARE, ROLE_FILESYSTEM
from gateflash.esp_tool import EsptoolDriver
from gateflash.flasher import FlashManager
from gateflash.logging_utils import setup_logging
from gateflash.releases import release_info
from gateflash.selection import SelectionError
from gateflash.session import FlashEvents

logger = logging.getLogger("Gateflash")

CONFIG_KEYS = [
    "board-catalog-url",
    "release-catalog-url",
    "firmware-base-url",
    "cdn-mirror-url",
    "esptool-path",
    "port",
    "baud-rate",
    "device-hostname",
    "device-ip",
]

_active_session = None


class BoardCompleter(BaseCompleter):
    def __call__(self, prefix, **kwargs):
        catalog = BoardCatalog(ConfigManager())
        return [board.id for board in catalog.load() if board.id.startswith(prefix)]


def add_board_argument(parser):
    board = parser.add_argument("board", type=str, help="Board id, see 'boards'.")
    board.completer = BoardCompleter()


def add_selection_args(parser):
    add_board_argument(parser)
    parser.add_argument(
        "-r",
        "--release",
        type=str,
        help="Firmware release tag (optional), defaults to the latest stable release.",
    )
    parser.add_argument(
        "-e", "--expert", action="store_true", help="Allow expert-only boards."
    )
    parser.add_argument(
        "--firmware", type=str, help="Custom firmware binary to flash instead."
    )
    parser.add_argument(
        "--filesystem", type=str, help="Custom filesystem binary to flash instead."
    )


def create_boards_args(parser):
    boards_parser = parser.add_parser("boards", help="List supported boards.")
    boards_parser.add_argument(
        "-e", "--expert", action="store_true", help="Include expert-only boards."
    )


def create_releases_args(parser):
    parser.add_parser("releases", help="List published firmware releases.")


def create_manifest_args(parser):
    manifest_parser = parser.add_parser(
        "manifest", help="Build the flash manifest for a board and release."
    )
    add_selection_args(manifest_parser)
    manifest_parser.add_argument(
        "-o", "--output", type=str, help="Output file (optional), defaults to stdout."
    )


def create_flash_args(parser):
    flash_parser = parser.add_parser("flash", help="Flash firmware to a device.")
    add_selection_args(flash_parser)
    flash_parser.add_argument(
        "--erase", action="store_true", help="Erase the entire flash before writing."
    )
    flash_parser.add_argument(
        "--no-verify",
        action="store_false",
        dest="verify",
        default=True,
        help="Skip verification after writing.",
    )
    flash_parser.add_argument("-p", "--port", type=str, help="Serial port name (optional)")
    flash_parser.add_argument("-b", "--baud", type=int, help="Baud rate (optional)")
    flash_parser.add_argument(
        "--esptool-path",
        type=str,
        help="Full path to esptool (optional), set if esptool is not found.",
    )
    flash_parser.add_argument(
        "-y", "--yes", action="store_true", help="Do not ask before erasing."
    )
    flash_parser.add_argument(
        "--open", action="store_true", help="Open the device web page when done."
    )


def create_open_args(parser):
    parser.add_parser("open", help="Open the flashed device's web page.")


def baud_rate_value(value):
    """An integer baud rate, or "" to restore the default."""
    if value == "":
        return value
    try:
        return int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid baud rate: '{value}'")


def create_config_args(parser):
    config_parser = parser.add_parser("config", help="Handles CONFIGURATION values.")
    for key in CONFIG_KEYS:
        config_parser.add_argument(
            f"--{key}",
            dest=key.replace("-", "_"),
            type=baud_rate_value if key == "baud-rate" else str,
            help=f"Set {key}, an empty value restores the default.",
        )


def build_parser():
    parser = argparse.ArgumentParser(
        description="Firmware flasher for FPVGate lap timers."
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose mode"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"Gateflash version: {version}",
        help="Show the Gateflash version and exit.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    create_boards_args(subparsers)
    create_releases_args(subparsers)
    create_manifest_args(subparsers)
    create_flash_args(subparsers)
    create_open_args(subparsers)
    create_config_args(subparsers)
    return parser


def read_binary(path):
    with open(path, "rb") as f:
        return f.read()


def apply_selection(manager: FlashManager, args) -> bool:
    """Pushes the command line choices into the selection state."""
    selection = manager.selection
    try:
        manager.set_expert_mode(args.expert)
        selection.select_board(args.board)
        if args.release:
            if manager.releases.get(args.release) is None:
                manager.show_error(f"Release '{args.release}' not found.")
                return False
            selection.select_release(args.release)
        for role, path in ((ROLE_FIRMWARE, args.firmware), (ROLE_FILESYSTEM, args.filesystem)):
            if path:
                selection.set_custom_binary(role, os.path.basename(path), read_binary(path))
        if "erase" in args:
            selection.set_erase_before_flash(args.erase)
            selection.set_verify_after_flash(args.verify)
    except SelectionError as e:
        manager.show_error(str(e))
        return False
    except OSError as e:
        manager.show_error(f"Could not read custom binary: {e}")
        return False
    return True


def load_catalogs(manager: FlashManager) -> bool:
    logger.info("Loading catalogs...", extra={"status": "start"})
    ok = manager.load_catalogs()
    logger.info(f"Loading catalogs... {'done' if ok else 'failed'}", extra={"status": "end"})
    return ok


def print_boards(manager: FlashManager):
    divider = f"+{'':-<20}+{'':-<48}+{'':-<10}+{'':-<9}+"
    logger.info(divider)
    logger.info(f"| {'Board': <19}| {'Name': <47}| {'Chip': <9}| {'Tier': <8}|")
    logger.info(divider)
    for board in manager.boards.list_for(manager.selection.visibility_tier):
        logger.info(
            f"| {board.id: <19}| {board.display_name[:46]: <47}| {board.chip_family: <9}| {board.visibility_tier: <8}|"
        )
    logger.info(divider)


def print_releases(manager: FlashManager):
    for tag, label in manager.release_options():
        release = manager.releases.get(tag) if tag else None
        info = f"  {release_info(release)}" if release else ""
        logger.info(f"{label}{info}")


class FlashProgressBar:
    """Feeds session progress percentages into a tqdm bar."""

    def __init__(self):
        self.pbar = tqdm.tqdm(total=100, bar_format="{l_bar}{bar}| {n:3d}% {postfix}")

    def update(self, percent, status):
        self.pbar.n = percent
        self.pbar.set_postfix_str(status, refresh=False)
        self.pbar.refresh()

    def close(self):
        self.pbar.close()


def run_flash(manager: FlashManager, config_manager: ConfigManager, args) -> int:
    if args.erase and not args.yes:
        if not Confirm.ask(
            "Erase the entire flash? All settings on the device will be lost.",
            default=False,
        ):
            logger.info("Flashing cancelled by user.")
            return 1

    board = manager.boards.get(manager.selection.board_id)
    logger.info(
        f"Flashing {manager.selection.release_tag} to {board.display_name}. {manager.version_info()}"
    )

    try:
        baud_rate = args.baud or int(config_manager.get_value("baud-rate"))
    except ValueError:
        logger.error("Invalid baud-rate in the configuration, fix it with 'config --baud-rate'.")
        return 1

    driver = EsptoolDriver(
        port=args.port or config_manager.get_value("port"),
        baud_rate=baud_rate,
        esptool_path=args.esptool_path or config_manager.get_value("esptool-path"),
    )

    progress = FlashProgressBar()
    events = FlashEvents(
        on_progress=progress.update,
        on_log=lambda line: logger.debug(line),
        on_complete=lambda: logger.info("Flash complete!"),
    )

    def remember_session(session):
        global _active_session
        _active_session = session

    try:
        with logging_redirect_tqdm():
            session = manager.start_flash(driver, events, session_hook=remember_session)
    finally:
        progress.close()

    if session is None or session.error is not None:
        logger.error("Flash failed. Check the connection and start again from the beginning.")
        return 1
    if args.open:
        manager.open_device(confirm=lambda question: Confirm.ask(question, default=False))
    return 0


def run_config(config_manager: ConfigManager, args) -> int:
    changed = False
    for key in CONFIG_KEYS:
        value = getattr(args, key.replace("-", "_"))
        if value is None:
            continue
        config_manager.set_value(key, value or None)
        changed = True
    if not changed:
        for key, value in config_manager.list_all().items():
            logger.info(f"{key}: {value}")
    return 0


def main():
    signal.signal(signal.SIGINT, exit_gracefully)

    parser = build_parser()
    argcomplete.autocomplete(parser)

    if len(sys.argv) == 1:
        parser.print_help()
        return 1

    args = parser.parse_args()
    config_manager = ConfigManager()
    setup_logging(args.verbose)

    logger.debug(f"Gateflash version: {version}")
    logger.debug(f"Running on Python: {platform.python_version()}")
    logger.debug(f"Platform: {platform.system()} {platform.release()}")

    if args.command == "config":
        return run_config(config_manager, args)

    manager = FlashManager(config_manager)

    if args.command == "open":
        manager.open_device(confirm=lambda question: Confirm.ask(question, default=False))
        return 0

    if args.command == "boards":
        manager.boards.load()
        manager.set_expert_mode(args.expert)
        print_boards(manager)
        return 0

    catalogs_ok = load_catalogs(manager)

    if args.command == "releases":
        print_releases(manager)
        return 0 if catalogs_ok else 1

    if not catalogs_ok or not apply_selection(manager, args):
        return 1

    if args.command == "manifest":
        manifest = manager.prepare_manifest()
        if manifest is None:
            return 1
        if args.output:
            with open(args.output, "w") as f:
                f.write(manifest.to_json())
            logger.info(f"Manifest written to {args.output}")
        else:
            print(manifest.to_json())
        return 0

    if args.command == "flash":
        return run_flash(manager, config_manager, args)
    return 0


def exit_gracefully(signum, frame):
    if _active_session is not None and not _active_session.is_terminal:
        logger.warning("\nCancelling after the current segment...")
        _active_session.cancel()
        return
    logger.warning("\nProcess interrupted.")
    sys.exit(1)


if __name__ == "__main__":
    sys.exit(main())
