"""
Project Name: Gateflash
Copyright (c) 2025 Gateflash contributors

Permission is hereby granted under MIT license.

Flash Session Module

One FlashSession drives one attempt to program a device:

    IDLE -> CONNECTING -> [ERASING] -> WRITING_SEGMENTS -> [VERIFYING] -> COMPLETED

with FAILED reachable from every state before COMPLETED.

Every transition emits a progress event, connect/disconnect and each
segment emit a timestamped log line, and the session ends with exactly one
on_complete or on_error. Cancellation is only honoured between segments.
"""

import threading
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import requests

from gateflash.constants import DOWNLOAD_TIMEOUT
from gateflash.esp_tool import ProgrammerDriver
from gateflash.logging_utils import timestamped
from gateflash.manifest import FlashManifest
from gateflash.selection import FlashOptions
from gateflash.utils import format_size

logger = logging.getLogger("FlashSession")


class FlashState(Enum):
    IDLE = "Idle"
    CONNECTING = "Connecting"
    ERASING = "Erasing"
    WRITING_SEGMENTS = "WritingSegments"
    VERIFYING = "Verifying"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FlashState.COMPLETED, FlashState.FAILED)


class FlashSessionError(Exception):
    """Base class for errors that end a flash session."""

    pass


class DeviceConnectionError(FlashSessionError):
    pass


class WriteError(FlashSessionError):
    def __init__(self, segment_index: int, segment, reason=None):
        self.segment_index = segment_index
        self.segment = segment
        super().__init__(
            f"Failed to write {segment.file_role} (segment {segment_index}) "
            f"at 0x{segment.flash_offset:X}: {reason}"
        )


class VerificationError(FlashSessionError):
    def __init__(self, segment_index: int, segment, reason=None):
        self.segment_index = segment_index
        self.segment = segment
        super().__init__(
            f"Verification of {segment.file_role} (segment {segment_index}) "
            f"at 0x{segment.flash_offset:X} failed: {reason}"
        )


class EraseError(FlashSessionError):
    pass


class Cancelled(FlashSessionError):
    pass


class SessionStateError(RuntimeError):
    """begin() was called on a session that is not idle."""

    pass


@dataclass
class FlashEvents:
    on_progress: Optional[Callable] = None  # (percent, status)
    on_log: Optional[Callable] = None  # (line)
    on_error: Optional[Callable] = None  # (error)
    on_complete: Optional[Callable] = None  # ()
    on_state: Optional[Callable] = None  # (state)


def fetch_segment_bytes(segment) -> bytes:
    """Returns the bytes of a resolved segment, downloading them if needed."""
    if segment.payload is not None:
        return segment.payload
    logger.debug(f"Downloading {segment.source_url}...")
    response = requests.get(segment.source_url, timeout=DOWNLOAD_TIMEOUT)
    response.raise_for_status()
    if not response.content:
        raise ValueError(f"{segment.file_name} is empty")
    return response.content


# Progress bands, in percent
WRITE_START = 10
VERIFY_START = 90


class FlashSession:
    def __init__(
        self,
        driver: ProgrammerDriver,
        events: Optional[FlashEvents] = None,
        fetcher: Callable = fetch_segment_bytes,
    ):
        self.driver = driver
        self.events = events or FlashEvents()
        self.fetcher = fetcher
        self.state = FlashState.IDLE
        self.history = [FlashState.IDLE]
        self.percent = 0
        self.error: Optional[FlashSessionError] = None
        self._cancel_requested = threading.Event()
        self._terminal_emitted = False

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def cancel(self):
        """Request cancellation; takes effect at the next segment boundary."""
        if not self.is_terminal:
            logger.debug("Cancellation requested.")
            self._cancel_requested.set()

    def _check_cancel(self):
        if self._cancel_requested.is_set():
            raise Cancelled("Flashing cancelled by user.")

    def _log(self, message: str):
        logger.debug(message)
        if self.events.on_log:
            self.events.on_log(timestamped(message))

    def _progress(self, percent: int, status: str):
        self.percent = percent
        if self.events.on_progress:
            self.events.on_progress(percent, status)

    def _transition(self, state: FlashState, percent: int, status: str):
        self.state = state
        self.history.append(state)
        if self.events.on_state:
            self.events.on_state(state)
        self._progress(percent, status)

    def begin(self, manifest: FlashManifest, options: FlashOptions) -> FlashState:
        """
        Runs the whole attempt and returns the terminal state. An exception
        raised by an event handler still releases the device and leaves the
        session FAILED before it propagates.
        """
        if self.state is not FlashState.IDLE:
            raise SessionStateError(f"Session already {self.state.value}.")

        try:
            try:
                self._transition(FlashState.CONNECTING, 0, "Connecting to device...")
                self._connect(manifest)
                if options.erase_before_flash:
                    self._check_cancel()
                    self._transition(FlashState.ERASING, 5, "Erasing flash...")
                    self._erase()
                payloads = self._write_segments(manifest)
                if options.verify_after_flash:
                    self._check_cancel()
                    self._transition(FlashState.VERIFYING, VERIFY_START, "Verifying flash...")
                    self._verify_segments(manifest, payloads)
                self._check_cancel()
            except FlashSessionError as e:
                self._fail(e)
                return self.state

            self._disconnect()
            self._transition(FlashState.COMPLETED, 100, "Flash complete!")
            self._emit_terminal(None)
            return self.state
        finally:
            if not self.is_terminal:
                self._abort()

    def _abort(self):
        logger.error(f"Flash session aborted while {self.state.value}.")
        try:
            self.driver.disconnect()
        except Exception as e:
            logger.warning(f"Error while disconnecting: {e}")
        if self.error is None:
            self.error = FlashSessionError(f"Session aborted while {self.state.value}.")
        self.state = FlashState.FAILED
        self.history.append(FlashState.FAILED)
        self._terminal_emitted = True

    def _connect(self, manifest: FlashManifest):
        self._log(f"Connecting to {manifest.chip_family} device...")
        try:
            self.driver.connect(manifest.chip_family)
        except Exception as e:
            raise DeviceConnectionError(f"Failed to connect to device: {e}") from e
        self._log("Connected.")

    def _erase(self):
        self._log("Erasing entire flash...")
        try:
            self.driver.erase_flash()
        except Exception as e:
            raise EraseError(f"Failed to erase flash: {e}") from e
        self._log("Flash erased.")

    def _write_segments(self, manifest: FlashManifest) -> list:
        segments = manifest.segments
        total = len(segments)
        self._transition(
            FlashState.WRITING_SEGMENTS, WRITE_START, f"Writing {total} segments..."
        )
        payloads = []
        span = VERIFY_START - WRITE_START
        for index, segment in enumerate(segments, start=1):
            self._check_cancel()
            self._log(
                f"Writing {segment.file_role} ({index}/{total}) at 0x{segment.flash_offset:X}..."
            )
            try:
                data = self.fetcher(segment)
                self.driver.write_segment(segment, data)
            except Exception as e:
                raise WriteError(index, segment, e) from e
            payloads.append(data)
            self._log(f"Wrote {segment.file_role} ({format_size(len(data))}).")
            self._progress(
                WRITE_START + span * index // total,
                f"Wrote {segment.file_role} ({index}/{total})",
            )
        return payloads

    def _verify_segments(self, manifest: FlashManifest, payloads: list):
        total = len(manifest.segments)
        for index, (segment, data) in enumerate(zip(manifest.segments, payloads), start=1):
            self._check_cancel()
            self._log(f"Verifying {segment.file_role} ({index}/{total})...")
            try:
                self.driver.verify_segment(segment, data)
            except Exception as e:
                raise VerificationError(index, segment, e) from e
            self._progress(
                VERIFY_START + 9 * index // total,
                f"Verified {segment.file_role} ({index}/{total})",
            )
        self._log("Verification passed.")

    def _disconnect(self):
        """Best effort: a failing disconnect is logged, never raised."""
        try:
            self.driver.disconnect()
            self._log("Disconnected.")
        except Exception as e:
            logger.warning(f"Error while disconnecting: {e}")
            self._log(f"Disconnect failed: {e}")

    def _fail(self, error: FlashSessionError):
        self.error = error
        logger.debug(f"Flash session failed: {error}")
        self._log(f"Error: {error}")
        self._disconnect()
        self._transition(FlashState.FAILED, self.percent, "Flash failed")
        self._emit_terminal(error)

    def _emit_terminal(self, error: Optional[FlashSessionError]):
        if self._terminal_emitted:
            return
        self._terminal_emitted = True
        if error is None:
            if self.events.on_complete:
                self.events.on_complete()
        elif self.events.on_error:
            self.events.on_error(error)
