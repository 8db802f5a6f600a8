#!/usr/bin/env python3
"""
Tests for the settings file loader
"""

import json

import pytest

from portscout.config import BUILTIN_PROFILES, CONFIG_ENV, Profile, Settings, load_settings
from portscout.core.errors import ConfigError


def write(tmp_path, data):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps(data) if not isinstance(data, str) else data)
    return path


def test_defaults():
    settings = Settings()
    assert settings.concurrency == 500
    assert settings.timeout_ms == 3000
    assert settings.scan_type == "connect"
    assert settings.output_format == "plain"
    assert settings.rate_limit == 0


def test_partial_file_overrides_defaults(tmp_path):
    settings = load_settings(write(tmp_path, {"concurrency": 64, "scan_type": "syn"}))
    assert settings.concurrency == 64
    assert settings.scan_type == "syn"
    assert settings.timeout_ms == 3000


def test_environment_variable(tmp_path, monkeypatch):
    monkeypatch.setenv(CONFIG_ENV, str(write(tmp_path, {"output_format": "csv"})))
    assert load_settings().output_format == "csv"


def test_missing_default_file_gives_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv(CONFIG_ENV, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    assert load_settings() == Settings()


@pytest.mark.parametrize("data", [
    {"concurrency": 0},
    {"concurrency": "many"},
    {"timeout_ms": True},
    {"scan_type": "xmas"},
    {"output_format": "xml"},
    {"rate_limit": -5},
    {"grace_period": "soon"},
    {"threads": 10},
    [1, 2, 3],
    "{not json",
])
def test_invalid_settings(tmp_path, data):
    with pytest.raises(ConfigError):
        load_settings(write(tmp_path, data))


def test_explicit_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "nope.json")


def test_builtin_profiles_are_valid():
    settings = Settings()
    assert {"quick", "full", "web", "database", "stealth"} <= set(settings.all_profiles())
    for profile in BUILTIN_PROFILES.values():
        profile.validate()
    assert settings.get_profile("stealth").scan_type == "syn"


def test_profiles_from_settings_file(tmp_path):
    settings = load_settings(write(tmp_path, {
        "concurrency": 64,
        "profiles": {
            "lan": {"ports": "22,80", "scan_type": "udp", "rate_limit": 25},
            "web": {"description": "my web ports", "ports": "8000-8010"},
        },
    }))
    lan = settings.get_profile("lan")
    assert isinstance(lan, Profile)
    assert (lan.ports, lan.scan_type, lan.rate_limit) == ("22,80", "udp", 25)
    assert lan.concurrency is None
    # a user profile replaces the built-in of the same name
    assert settings.get_profile("web").ports == "8000-8010"
    assert settings.get_profile("web").banner is None


def test_unknown_profile():
    with pytest.raises(ConfigError, match="available"):
        Settings().get_profile("nope")


@pytest.mark.parametrize("profiles", [
    {"bad name!": {"ports": "80"}},
    {"lan": {"ports": "80-"}},
    {"lan": {"ports": [22, 80]}},
    {"lan": {"scan_type": "xmas"}},
    {"lan": {"concurrency": 0}},
    {"lan": {"timeout_ms": "fast"}},
    {"lan": {"banner": "yes"}},
    {"lan": {"threads": 4}},
    {"lan": "22,80"},
    ["lan"],
])
def test_invalid_profiles(tmp_path, profiles):
    with pytest.raises(ConfigError):
        load_settings(write(tmp_path, {"profiles": profiles}))
