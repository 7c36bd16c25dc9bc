import io
import logging
from datetime import datetime

import pytest

from gateflash.config import ConfigManager
from gateflash.logging_utils import SingleLineStatusHandler, timestamped
from gateflash.utils import data_uri, format_size, parse_offset, role_from_path, time_formatter


@pytest.mark.parametrize(
    "value, expected",
    [(0, 0), (0x8000, 0x8000), ("0x10000", 0x10000), ("0X8000", 0x8000), ("65536", 65536),
     (" 0x0 ", 0), ("-1", None), ("zero", None), (True, None), (None, None), (1.5, None)],
)
def test_parse_offset(value, expected):
    assert parse_offset(value) == expected


def test_role_from_path():
    assert role_from_path("bootloader.bin") == "bootloader"
    assert role_from_path("https://x.test/fw/littlefs.BIN") == "littlefs"
    assert role_from_path("partitions") == "partitions"


def test_data_uri():
    assert data_uri(b"\x00\x01") == "data:application/octet-stream;base64,AAE="


def test_formatters():
    assert format_size(512) == "512.00 B"
    assert format_size(2048) == "2.00 KB"
    assert time_formatter(5) == "5s"
    assert time_formatter(80) == "1m 20s"
    assert time_formatter(3725) == "1h 2m 5s"


def test_timestamped():
    assert timestamped("Connected.", datetime(2025, 3, 1, 9, 5, 7)) == "[09:05:07] Connected."


def test_status_handler_keeps_one_line():
    stream = io.StringIO()
    handler = SingleLineStatusHandler(stream)
    handler.setFormatter(logging.Formatter("%(message)s"))
    log = logging.getLogger("StatusHandlerTest")
    log.propagate = False
    log.addHandler(handler)
    log.setLevel(logging.INFO)
    try:
        log.info("Loading catalogs...", extra={"status": "start"})
        log.info("Loading catalogs... done", extra={"status": "end"})
        log.info("Writing...", extra={"status": "start"})
        log.info("interrupting message")
    finally:
        log.removeHandler(handler)
    assert stream.getvalue() == (
        "Loading catalogs...\rLoading catalogs... done\nWriting...\ninterrupting message\n"
    )


class TestConfigManager:
    def test_defaults_and_overrides(self, config_manager):
        assert config_manager.get_value("device-ip") == "192.168.4.1"
        assert config_manager.get_value("cdn-mirror-url") is None
        assert config_manager.get_value("cdn-mirror-url", "fallback") == "fallback"
        config_manager.set_value("port", "/dev/ttyUSB0")
        assert config_manager.list_all()["port"] == "/dev/ttyUSB0"

    def test_values_are_persisted(self, config_manager):
        config_manager.set_value("baud-rate", 115200)
        ConfigManager.reset_instances()
        assert ConfigManager().get_value("baud-rate") == 115200

    def test_none_removes_key(self, config_manager):
        config_manager.set_value("port", "COM3")
        config_manager.set_value("port", None)
        assert config_manager.get_value("port") is None

    def test_singleton_per_file(self, config_manager):
        assert ConfigManager() is config_manager
        assert ConfigManager("other.json") is not config_manager
