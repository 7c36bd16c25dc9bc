"""Tests for flash manifest construction."""

import base64
import json

import pytest

from gateflash.boards import BoardCatalog
from gateflash.manifest import IncompleteManifest, ManifestBuilder
from gateflash.releases import ReleaseCatalog
from gateflash.resolver import AssetResolver, ResolvedSegment, default_strategies
from gateflash.selection import CustomBinary


@pytest.fixture
def resolved(config_manager, standard_catalogs):
    board = BoardCatalog(config_manager).get("esp32s3")
    release = ReleaseCatalog(config_manager).get("v1.2.0")
    resolver = AssetResolver(default_strategies(config_manager))
    custom = {"firmware": CustomBinary("dev.bin", b"\xe9\x00dev")}
    return board, release, resolver.resolve(board, release, custom)


def test_manifest_shape(resolved):
    board, release, result = resolved
    manifest = ManifestBuilder().build(board, release, result.resolved)
    data = json.loads(manifest.to_json())
    assert data["name"] == "FPVGate v1.2.0"
    assert data["version"] == "v1.2.0"
    assert data["chipFamily"] == "ESP32-S3"
    assert data["new_install_prompt_erase"] is True
    assert len(data["builds"]) == 1
    build = data["builds"][0]
    assert build["chipFamily"] == "ESP32-S3"
    assert [p["offset"] for p in build["parts"]] == [0x0, 0x8000, 0x10000, 0x410000]
    assert build["parts"][0]["path"].startswith("https://github.test/download/v1.2.0/")


def test_uploaded_segment_becomes_data_uri(resolved):
    board, release, result = resolved
    parts = ManifestBuilder().build(board, release, result.resolved).to_dict()["builds"][0]["parts"]
    prefix = "data:application/octet-stream;base64,"
    assert parts[2]["path"].startswith(prefix)
    assert base64.b64decode(parts[2]["path"][len(prefix):]) == b"\xe9\x00dev"


def test_prompt_erase_flag(resolved):
    board, release, result = resolved
    manifest = ManifestBuilder().build(board, release, result.resolved, prompt_erase=False)
    assert manifest.to_dict()["new_install_prompt_erase"] is False


def test_product_name_is_configurable(resolved):
    board, release, result = resolved
    manifest = ManifestBuilder("Bench").build(board, release, result.resolved)
    assert manifest.display_name == "Bench v1.2.0"


def test_missing_segment_is_rejected(resolved):
    board, release, result = resolved
    with pytest.raises(IncompleteManifest):
        ManifestBuilder().build(board, release, result.resolved[:-1])


def test_misplaced_segment_is_rejected(resolved):
    board, release, result = resolved
    segments = list(result.resolved)
    segments[1] = ResolvedSegment("partitions", 0x9000, "https://x.test/p.bin", "local-hosted", "p.bin")
    with pytest.raises(IncompleteManifest):
        ManifestBuilder().build(board, release, segments)
