"""Tests for the firmware release catalog."""

import pytest

from gateflash.releases import CatalogUnavailable, ReleaseCatalog, release_info

from conftest import RELEASE_CATALOG, release_entry


def test_filters_drafts_and_assetless(config_manager, http):
    http.add(
        RELEASE_CATALOG,
        [
            release_entry("v2.0.0", draft=True, asset_names=["a.bin"]),
            release_entry("v1.9.0", asset_names=[]),
            release_entry("v1.8.0", prerelease=True, asset_names=["a.bin"]),
            release_entry("v1.7.0", asset_names=["a.bin"]),
            {"draft": False, "assets": []},
            "garbage",
        ],
    )
    catalog = ReleaseCatalog(config_manager)
    assert [r.tag for r in catalog.load()] == ["v1.8.0", "v1.7.0"]


def test_skips_entries_with_malformed_assets(config_manager, http):
    http.add(
        RELEASE_CATALOG,
        [
            release_entry("v1.0.0", asset_names=["a.bin"]),
            {"tag_name": "v0.9.0", "draft": False, "assets": 7},
        ],
    )
    assert [r.tag for r in ReleaseCatalog(config_manager).load()] == ["v1.0.0"]


def test_release_fields(config_manager, standard_catalogs):
    release = ReleaseCatalog(config_manager).get("v1.2.0")
    assert not release.is_prerelease
    assert release.published_at.year == 2025
    asset = release.find_asset("ESP32S3-8MB-firmware.bin")
    assert asset.download_url == "https://github.test/download/v1.2.0/ESP32S3-8MB-firmware.bin"
    assert release.find_asset("nope.bin") is None


def test_latest_stable_skips_prereleases(config_manager, standard_catalogs):
    assert ReleaseCatalog(config_manager).latest_stable().tag == "v1.2.0"


def test_latest_stable_falls_back_to_first(config_manager, http):
    http.add(
        RELEASE_CATALOG,
        [
            release_entry("v2.0.0-rc2", prerelease=True, asset_names=["a.bin"]),
            release_entry("v2.0.0-rc1", prerelease=True, asset_names=["a.bin"]),
        ],
    )
    assert ReleaseCatalog(config_manager).latest_stable().tag == "v2.0.0-rc2"


def test_latest_stable_empty(config_manager, http):
    http.add(RELEASE_CATALOG, [])
    assert ReleaseCatalog(config_manager).latest_stable() is None


def test_http_500_raises(config_manager, http):
    http.add(RELEASE_CATALOG, {"message": "boom"}, status=500)
    with pytest.raises(CatalogUnavailable):
        ReleaseCatalog(config_manager).load()


def test_network_error_raises(config_manager, http):
    http.fail(RELEASE_CATALOG)
    with pytest.raises(CatalogUnavailable):
        ReleaseCatalog(config_manager).load()


def test_unparsable_body_raises(config_manager, http):
    http.add(RELEASE_CATALOG, "{not json")
    with pytest.raises(CatalogUnavailable):
        ReleaseCatalog(config_manager).load()
    http.add(RELEASE_CATALOG, {"message": "API rate limit exceeded"})
    with pytest.raises(CatalogUnavailable):
        ReleaseCatalog(config_manager).load()


def test_load_is_idempotent(config_manager, standard_catalogs):
    catalog = ReleaseCatalog(config_manager)
    assert catalog.load() == catalog.load()
    assert standard_catalogs.requests.count(RELEASE_CATALOG) == 1


def test_option_labels(config_manager, standard_catalogs):
    catalog = ReleaseCatalog(config_manager)
    labels = [catalog.option_label(r) for r in catalog.load()]
    assert labels == ["v1.3.0-beta (Pre-release) (Latest)", "v1.2.0", "v1.1.0"]


def test_release_info(config_manager, standard_catalogs):
    catalog = ReleaseCatalog(config_manager)
    assert release_info(catalog.get("v1.2.0")) == "Released: 2025-03-01"
    assert release_info(catalog.get("v1.3.0-beta")) == "Released: 2025-03-01 (Pre-release)"
    assert release_info(None) == ""
