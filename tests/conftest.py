import json
import os

import pytest
import requests

from gateflash import config as config_module
from gateflash.config import ConfigManager
from gateflash.esp_tool import ProgrammerDriver

BOARD_CATALOG = "https://boards.test/boards.json"
RELEASE_CATALOG = "https://api.test/releases"
FIRMWARE_BASE = "https://site.test/firmware"

S3_PARTS = [
    {"path": "bootloader.bin", "offset": 0x0},
    {"path": "partitions.bin", "offset": 0x8000},
    {"path": "firmware.bin", "offset": 0x10000},
    {"path": "littlefs.bin", "offset": 0x410000},
]


class FakeResponse:
    def __init__(self, status_code=200, body=None, content=b""):
        self.status_code = status_code
        self._body = body
        self.content = content

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        if isinstance(self._body, (dict, list)):
            return self._body
        return json.loads(self._body)


class FakeHttp:
    """Maps URLs to FakeResponses or exceptions and records every request."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, url, body=None, status=200, content=b""):
        self.routes[url] = FakeResponse(status, body, content)

    def fail(self, url, exc=None):
        self.routes[url] = exc or requests.ConnectionError("connection refused")

    def get(self, url, *args, **kwargs):
        self.requests.append(url)
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404, {"message": "Not Found"})
        if isinstance(route, Exception):
            raise route
        return route


@pytest.fixture
def http(monkeypatch):
    fake = FakeHttp()
    monkeypatch.setattr(requests, "get", fake.get)
    return fake


@pytest.fixture
def config_manager(tmp_path, monkeypatch):
    home = tmp_path / ".gateflash"
    monkeypatch.setattr(config_module, "HOME_PATH", str(home))
    monkeypatch.setattr(config_module, "BOARDS_FILE", str(home / "boards.json"))
    ConfigManager.reset_instances()
    manager = ConfigManager()
    manager._config = {
        "board-catalog-url": BOARD_CATALOG,
        "release-catalog-url": RELEASE_CATALOG,
        "firmware-base-url": FIRMWARE_BASE,
    }
    yield manager
    ConfigManager.reset_instances()


def write_local_boards(boards):
    os.makedirs(config_module.HOME_PATH, exist_ok=True)
    with open(config_module.BOARDS_FILE, "w") as f:
        json.dump({"boards": boards}, f)


def board_entry(value, label, expert=0, parts=None, chip="ESP32-S3", prefix=None):
    entry = {
        "value": value,
        "label": label,
        "expert_mode": expert,
        "chipFamily": chip,
        "parts": parts or S3_PARTS,
    }
    if prefix:
        entry["prefix"] = prefix
    return entry


def release_entry(tag, prerelease=False, draft=False, asset_names=(), published="2025-03-01T12:00:00Z"):
    return {
        "tag_name": tag,
        "draft": draft,
        "prerelease": prerelease,
        "published_at": published,
        "assets": [
            {
                "name": name,
                "browser_download_url": f"https://github.test/download/{tag}/{name}",
            }
            for name in asset_names
        ],
    }


def s3_asset_names(prefix="ESP32S3-8MB"):
    return [f"{prefix}-{role}.bin" for role in ("bootloader", "partitions", "firmware", "littlefs")]


@pytest.fixture
def standard_catalogs(http):
    """A remote board catalog and a release list with v1.2.0 as latest stable."""
    http.add(
        BOARD_CATALOG,
        {
            "boards": [
                board_entry("esp32s3", "ESP32-S3 DevKitC-1 (8MB)", prefix="ESP32S3-8MB"),
                board_entry("esp32s3supermini", "ESP32-S3 Super Mini (4MB)"),
                board_entry("esp32c3", "ESP32-C3", expert=1),
                board_entry("lilygo", "LilyGO T-Energy S3", expert=1),
            ]
        },
    )
    http.add(
        RELEASE_CATALOG,
        [
            release_entry("v1.3.0-beta", prerelease=True, asset_names=s3_asset_names()),
            release_entry("v1.2.0", asset_names=s3_asset_names()),
            release_entry("v1.1.0", asset_names=["ESP32S3-8MB-firmware.bin"]),
        ],
    )
    return http


class FakeDriver(ProgrammerDriver):
    """In-memory programmer that records calls and can be told to fail."""

    def __init__(self, fail_connect=False, fail_write_at=None, fail_verify_at=None,
                 fail_erase=False, fail_disconnect=False):
        self.fail_connect = fail_connect
        self.fail_write_at = fail_write_at
        self.fail_verify_at = fail_verify_at
        self.fail_erase = fail_erase
        self.fail_disconnect = fail_disconnect
        self.calls = []
        self.flash = {}

    def connect(self, chip_family):
        self.calls.append(("connect", chip_family))
        if self.fail_connect:
            raise OSError("could not open port /dev/ttyACM0")

    def erase_flash(self):
        self.calls.append(("erase",))
        if self.fail_erase:
            raise OSError("erase timeout")
        self.flash.clear()

    def write_segment(self, segment, data):
        self.calls.append(("write", segment.flash_offset))
        writes = sum(1 for call in self.calls if call[0] == "write")
        if self.fail_write_at == writes:
            raise OSError("write timeout")
        self.flash[segment.flash_offset] = data

    def verify_segment(self, segment, data):
        self.calls.append(("verify", segment.flash_offset))
        verifies = sum(1 for call in self.calls if call[0] == "verify")
        if self.fail_verify_at == verifies or self.flash.get(segment.flash_offset) != data:
            raise ValueError("digest mismatch")

    def disconnect(self):
        self.calls.append(("disconnect",))
        if self.fail_disconnect:
            raise OSError("port vanished")

    def names(self):
        return [call[0] for call in self.calls]
