"""
Project Name: Gateflash
Copyright (c) 2025 Gateflash contributors

Permission is hereby granted under MIT license.

esptool Wrapper Module
"""

import os
import sys
import logging
import importlib.util
import tempfile
import subprocess
from subprocess import Popen, PIPE, STDOUT, TimeoutExpired
from pathlib import Path
from shutil import which
from typing import Optional

import serial.tools.list_ports

from gateflash.constants import ESPTOOL_CHIPS, ESPTOOL_TIMEOUT, BAUD_RATE, KNOWN_USB_VIDS

logger = logging.getLogger("Esptool")


class EsptoolNotFoundError(FileNotFoundError): ...


class EsptoolCommandError(RuntimeError): ...


class ProgrammerDriver:
    """
    Device programming capability used by a flash session. Each method
    either completes or raises; the session owns the port between connect()
    and disconnect().
    """

    def connect(self, chip_family: str) -> None:
        raise NotImplementedError

    def erase_flash(self) -> None:
        raise NotImplementedError

    def write_segment(self, segment, data: bytes) -> None:
        raise NotImplementedError

    def verify_segment(self, segment, data: bytes) -> None:
        raise NotImplementedError

    def disconnect(self) -> None:
        raise NotImplementedError


def find_serial_port(preferred_port: Optional[str] = None) -> Optional[str]:
    """Returns the preferred port, else the first USB-serial bridge found."""
    if preferred_port:
        return preferred_port
    for port in serial.tools.list_ports.comports():
        if port.vid in KNOWN_USB_VIDS:
            logger.debug(f"Found serial device {port.device} ({port.description})")
            return port.device
    return None


def detached_process_group() -> dict:
    """
    Popen arguments that start esptool in its own process group, so a Ctrl-C
    in the terminal reaches only the session, which stops between segments.
    """
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


class Esptool:
    """
    Thin wrapper around the esptool command line program. Locates the
    executable (explicit path, PATH, or `python -m esptool`) and runs one
    subcommand at a time against a fixed chip, port and baud rate.
    """

    def __init__(self, chip, port, baud_rate=BAUD_RATE, esptool_path=None, timeout=ESPTOOL_TIMEOUT):
        self.chip = chip
        self.port = port
        self.baud_rate = baud_rate
        self.timeout = timeout
        self.command = self._find_esptool(esptool_path)
        logger.debug(f"Initialized esptool for {self.chip} on port: {self.port}")

    def _find_esptool(self, esptool_path):
        """Find the esptool executable, returned as an argv prefix."""
        candidates = [esptool_path]
        if esptool_path:
            candidates += [Path(esptool_path) / "esptool", Path(esptool_path) / "esptool.py"]
        candidates += [which("esptool"), which("esptool.py")]
        for path in candidates:
            if path and which(str(path)):
                return [which(str(path))]
        if esptool_path:
            raise EsptoolNotFoundError(esptool_path)
        if importlib.util.find_spec("esptool") is None:
            raise EsptoolNotFoundError("esptool")
        return [sys.executable, "-m", "esptool"]

    def build_options(self, before="default_reset", after="no_reset"):
        return [
            "--chip",
            self.chip,
            "--port",
            self.port,
            "--baud",
            str(self.baud_rate),
            "--before",
            before,
            "--after",
            after,
        ]

    def execute(self, options):
        """Run esptool with the provided options. Returns (output, returncode)."""
        cmd = self.command + options
        logger.debug(f"Executing command: {' '.join(cmd)}")
        process = Popen(
            cmd, stdout=PIPE, stderr=STDOUT, stdin=PIPE, **detached_process_group()
        )
        try:
            stdout, _ = process.communicate(timeout=self.timeout)
            returncode = process.returncode
        except TimeoutExpired:
            process.kill()
            stdout, _ = process.communicate()
            returncode = -1
        return (stdout or b"").decode("ISO-8859-1"), returncode

    def run(self, subcommand, *args, before="default_reset", after="no_reset"):
        """Run a subcommand and raise EsptoolCommandError on a non-zero exit."""
        output, returncode = self.execute(
            self.build_options(before, after) + [subcommand] + list(args)
        )
        if returncode != 0:
            tail = " | ".join(output.strip().splitlines()[-3:])
            raise EsptoolCommandError(f"esptool {subcommand} failed ({returncode}): {tail}")
        return output

    def chip_id(self):
        return self.run("chip_id")

    def erase_flash(self):
        return self.run("erase_flash")

    def write_flash(self, offset, file_path):
        return self.run("write_flash", hex(offset), str(file_path))

    def verify_flash(self, offset, file_path):
        return self.run("verify_flash", hex(offset), str(file_path))

    def hard_reset(self):
        return self.run("run", before="no_reset", after="hard_reset")


class EsptoolDriver(ProgrammerDriver):
    """Flashes segments one by one through esptool."""

    def __init__(self, port=None, baud_rate=BAUD_RATE, esptool_path=None):
        self.port = port
        self.baud_rate = baud_rate
        self.esptool_path = esptool_path
        self.tool: Optional[Esptool] = None

    def connect(self, chip_family):
        chip = ESPTOOL_CHIPS.get(chip_family)
        if chip is None:
            raise EsptoolCommandError(f"Unsupported chip family: {chip_family}")
        port = find_serial_port(self.port)
        if not port:
            raise EsptoolCommandError("No serial port found. Please specify one with --port.")
        tool = Esptool(chip, port, self.baud_rate, self.esptool_path)
        output = tool.chip_id()
        for line in output.splitlines():
            if line.startswith("Chip is") or line.startswith("Chip type"):
                logger.info(line.strip())
        self.port = port
        self.tool = tool

    def _require_tool(self) -> Esptool:
        if self.tool is None:
            raise EsptoolCommandError("Not connected.")
        return self.tool

    def erase_flash(self):
        self._require_tool().erase_flash()

    def _with_temp_file(self, segment, data, action):
        fd, path = tempfile.mkstemp(prefix=f"{segment.file_role}-", suffix=".bin")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            action(segment.flash_offset, path)
        finally:
            try:
                os.remove(path)
            except OSError as e:
                logger.warning(f"Could not remove temporary file {path}: {e}")

    def write_segment(self, segment, data):
        self._with_temp_file(segment, data, self._require_tool().write_flash)

    def verify_segment(self, segment, data):
        self._with_temp_file(segment, data, self._require_tool().verify_flash)

    def disconnect(self):
        tool, self.tool = self.tool, None
        if tool is not None:
            tool.hard_reset()
