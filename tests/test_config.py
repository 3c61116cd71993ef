"""Tests for settings and backend descriptor loading."""

import json
import tempfile
from pathlib import Path

import pytest
import yaml

from xbridge.config import (
    BridgeSettings,
    ConfigError,
    descriptor_from_dict,
    load_config_file,
    load_descriptors,
    load_env_backends,
)
from xbridge.errors import ModelConflict


def _write_config(tmpdir: str, servers: list[dict], name: str = "downstreams.yaml") -> str:
    path = Path(tmpdir) / name
    with open(path, "w") as f:
        yaml.dump({"servers": servers}, f)
    return str(path)


def test_settings_defaults():
    settings = BridgeSettings.from_env({})
    assert settings.api_keys == []
    assert not settings.auth_configured
    assert settings.fetch_limit == 50
    assert settings.max_fetch_limit == 200
    assert settings.enrichment_concurrency == 8
    assert settings.port == 8080
    assert settings.config_file == "downstreams.yaml"


def test_settings_from_env():
    settings = BridgeSettings.from_env(
        {
            "BASE_URL": "https://bridge.example/",
            "BRIDGE_API_KEY": "k1, k2,",
            "BRIDGE_ALLOW_ANONYMOUS": "true",
            "FILTER_FETCH_LIMIT": "5",
            "FILTER_DEADLINE": "2.5",
            "RETRY_INTERVAL": "0",
            "LOG_LEVEL": "debug",
        }
    )
    assert settings.base_url == "https://bridge.example"
    assert settings.api_keys == ["k1", "k2"]
    assert settings.allow_anonymous
    assert settings.fetch_limit == 5
    assert settings.filter_deadline == 2.5
    assert settings.retry_interval == 0
    assert settings.log_level == "DEBUG"


def test_descriptor_from_dict_accepts_both_spellings():
    a = descriptor_from_dict({"url": "http://npm:3000/", "group_type": "noderegistries"})
    b = descriptor_from_dict({"base_url": "http://npm:3000", "groupType": "noderegistries", "apiKey": "k"})
    assert a.base_url == b.base_url == "http://npm:3000"
    assert a.group_type == b.group_type == "noderegistries"
    assert b.api_key == "k"
    assert a.enabled


def test_descriptor_enabled_from_string():
    d = descriptor_from_dict({"url": "http://x", "group_type": "g", "enabled": "false"})
    assert not d.enabled


def test_descriptor_requires_url_and_group_type():
    with pytest.raises(ConfigError):
        descriptor_from_dict({"url": "http://x"})
    with pytest.raises(ConfigError):
        descriptor_from_dict({"group_type": "g"})


def test_load_config_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_config(
            tmpdir,
            [
                {"url": "http://npm:3000", "group_type": "noderegistries"},
                {"url": "http://pypi:3100", "group_type": "pythonregistries", "path_prefix": "/api"},
            ],
        )
        descriptors = load_config_file(path)

    assert [d.group_type for d in descriptors] == ["noderegistries", "pythonregistries"]
    assert descriptors[1].path_prefix == "/api"


def test_load_config_file_accepts_json():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "downstreams.json"
        path.write_text(json.dumps({"servers": [{"url": "http://npm:3000", "group_type": "noderegistries"}]}))
        descriptors = load_config_file(path)
    assert descriptors[0].base_url == "http://npm:3000"


def test_load_config_file_rejects_garbage():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "bad.yaml"
        path.write_text("servers: [unclosed")
        with pytest.raises(ConfigError):
            load_config_file(path)


def test_env_backends():
    descriptors = load_env_backends(
        {
            "BRIDGE_BACKEND_NPM_URL": "http://npm:3000",
            "BRIDGE_BACKEND_NPM_GROUP_TYPE": "noderegistries",
            "BRIDGE_BACKEND_NPM_API_KEY": "secret",
            "BRIDGE_BACKEND_MAVEN_URL": "http://maven:3300",
            "BRIDGE_BACKEND_MAVEN_ENABLED": "no",
            "BRIDGE_BACKEND_ORPHAN_API_KEY": "x",
            "UNRELATED": "1",
        }
    )
    by_group = {d.group_type: d for d in descriptors}
    assert set(by_group) == {"noderegistries", "maven"}
    assert by_group["noderegistries"].api_key == "secret"
    assert not by_group["maven"].enabled


def test_load_descriptors_prefers_inline_json_over_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_config(tmpdir, [{"url": "http://from-file", "group_type": "filegroups"}])
        settings = BridgeSettings(config_file=path)
        env = {
            "DOWNSTREAMS_JSON": json.dumps({"servers": [{"url": "http://inline", "group_type": "inlinegroups"}]}),
            "BRIDGE_BACKEND_EXTRA_URL": "http://extra",
        }
        descriptors = load_descriptors(settings, env)

    assert [d.group_type for d in descriptors.all()] == ["inlinegroups", "extra"]


def test_load_descriptors_from_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_config(tmpdir, [{"url": "http://from-file", "group_type": "filegroups"}])
        descriptors = load_descriptors(BridgeSettings(config_file=path), {})
    assert "filegroups" in descriptors


def test_load_descriptors_with_nothing_configured():
    settings = BridgeSettings(config_file="/nonexistent/downstreams.yaml")
    assert len(load_descriptors(settings, {})) == 0


def test_load_descriptors_rejects_invalid_json():
    with pytest.raises(ConfigError):
        load_descriptors(BridgeSettings(config_file=""), {"DOWNSTREAMS_JSON": "{not json"})


def test_duplicate_group_types_conflict():
    env = {
        "DOWNSTREAMS_JSON": json.dumps(
            {
                "servers": [
                    {"url": "http://a", "group_type": "noderegistries"},
                    {"url": "http://b", "group_type": "noderegistries"},
                ]
            }
        )
    }
    with pytest.raises(ModelConflict):
        load_descriptors(BridgeSettings(), env)
