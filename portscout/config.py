"""
Persistent settings
Defaults for the CLI, read from a JSON file; command-line flags override them.

The settings file may also define named scan profiles:

    {
      "concurrency": 200,
      "profiles": {
        "lan": {"ports": "22,80,443", "scan_type": "syn", "rate_limit": 50}
      }
    }

A profile only sets what it names; everything else falls back to the
settings. User profiles replace built-in ones of the same name.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Optional, Union

from portscout.core.errors import ConfigError
from portscout.core.models import ScanKind
from portscout.core.ports import parse_ports

logger = logging.getLogger(__name__)

CONFIG_ENV = "PORTSCOUT_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/portscout/settings.json")

OUTPUT_FORMATS = ("plain", "json", "csv")
SCAN_TYPES = tuple(kind.value for kind in ScanKind)

PROFILE_NAME = re.compile(r"^[A-Za-z0-9_-]+$")


def _check_int(what: str, value, minimum: int):
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigError(f"{what} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigError(f"{what} must be at least {minimum}, got {value}")


def _check_number(what: str, value):
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise ConfigError(f"{what} must be a number, got {value!r}")


@dataclass
class Profile:
    """Named scan preset; fields left as None fall back to the settings"""
    name: str
    description: str = ""
    ports: Optional[str] = None
    scan_type: Optional[str] = None
    concurrency: Optional[int] = None
    timeout_ms: Optional[int] = None
    banner: Optional[bool] = None
    rate_limit: Optional[int] = None

    def validate(self):
        if not PROFILE_NAME.match(self.name):
            raise ConfigError(f"invalid profile name {self.name!r}: "
                              "use letters, digits, '-' and '_'")
        what = f"profile '{self.name}'"
        if not isinstance(self.description, str):
            raise ConfigError(f"{what}: description must be a string")
        if self.ports is not None:
            if not isinstance(self.ports, str):
                raise ConfigError(f"{what}: ports must be a port specification string")
            parse_ports(self.ports)
        if self.scan_type is not None and self.scan_type not in SCAN_TYPES:
            raise ConfigError(f"{what}: unknown scan type {self.scan_type!r}")
        if self.concurrency is not None:
            _check_int(f"{what}: concurrency", self.concurrency, 1)
        if self.timeout_ms is not None:
            _check_int(f"{what}: timeout_ms", self.timeout_ms, 1)
        if self.rate_limit is not None:
            _check_int(f"{what}: rate_limit", self.rate_limit, 0)
        if self.banner is not None and not isinstance(self.banner, bool):
            raise ConfigError(f"{what}: banner must be true or false")


BUILTIN_PROFILES = {
    profile.name: profile for profile in (
        Profile("quick", "Most common service ports",
                ports="21,22,23,25,53,80,110,111,135,139,143,443,445,993,995,1723,3306,3389,5900,8080",
                scan_type="connect", concurrency=1000, timeout_ms=2000, banner=False, rate_limit=0),
        Profile("full", "All 65535 ports",
                ports="1-65535", scan_type="connect", concurrency=500, timeout_ms=3000,
                banner=False, rate_limit=0),
        Profile("web", "Common web service ports, with banners",
                ports="80,443,3000,5000,8000,8080,8443,8888,9000,9090", scan_type="connect",
                concurrency=100, timeout_ms=5000, banner=True, rate_limit=0),
        Profile("database", "Common database ports, with banners",
                ports="1433,1521,3306,5432,5984,6379,9042,11211,27017", scan_type="connect",
                concurrency=50, timeout_ms=5000, banner=True, rate_limit=0),
        Profile("stealth", "Rate-limited SYN scan of the first 1000 ports",
                ports="1-1000", scan_type="syn", concurrency=100, timeout_ms=5000,
                banner=False, rate_limit=100),
    )
}


@dataclass
class Settings:
    concurrency: int = 500
    timeout_ms: int = 3000
    scan_type: str = "connect"
    output_format: str = "plain"
    rate_limit: int = 0
    banner_timeout: float = 3.0
    grace_period: float = 0.5
    profiles: Dict[str, Profile] = field(default_factory=dict)

    def validate(self):
        _check_int("setting 'concurrency'", self.concurrency, 1)
        _check_int("setting 'timeout_ms'", self.timeout_ms, 1)
        _check_int("setting 'rate_limit'", self.rate_limit, 0)
        _check_number("setting 'banner_timeout'", self.banner_timeout)
        _check_number("setting 'grace_period'", self.grace_period)
        if self.banner_timeout <= 0:
            raise ConfigError("setting 'banner_timeout' must be positive")
        if self.grace_period < 0:
            raise ConfigError("setting 'grace_period' cannot be negative")
        if self.scan_type not in SCAN_TYPES:
            raise ConfigError(f"unknown scan type in settings: {self.scan_type!r}")
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigError(f"unknown output format in settings: {self.output_format!r}")
        for profile in self.profiles.values():
            profile.validate()

    def all_profiles(self) -> Dict[str, Profile]:
        return {**BUILTIN_PROFILES, **self.profiles}

    def get_profile(self, name: str) -> Profile:
        profiles = self.all_profiles()
        if name not in profiles:
            raise ConfigError(f"profile '{name}' not found "
                              f"(available: {', '.join(sorted(profiles))})")
        return profiles[name]


def _config_path(path: Optional[Union[str, Path]]) -> Optional[Path]:
    if path is not None:
        return Path(path).expanduser()
    env = os.environ.get(CONFIG_ENV)
    if env:
        return Path(env).expanduser()
    default = DEFAULT_CONFIG_PATH.expanduser()
    return default if default.exists() else None


def _parse_profiles(data, config_path: Path) -> Dict[str, Profile]:
    if not isinstance(data, dict):
        raise ConfigError(f"'profiles' in {config_path} must be a JSON object")

    known = {f.name for f in fields(Profile)} - {"name"}
    profiles = {}
    for name, entry in data.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"profile '{name}' in {config_path} must be a JSON object")
        unknown = sorted(set(entry) - known)
        if unknown:
            raise ConfigError(f"unknown keys in profile '{name}': {', '.join(unknown)}")
        profiles[name] = Profile(name=name, **entry)
    return profiles


def load_settings(path: Optional[Union[str, Path]] = None) -> Settings:
    """Load settings from `path`, $PORTSCOUT_CONFIG or the default location

    A missing default file yields the built-in defaults; an explicitly named
    file that does not exist is an error.
    """
    config_path = _config_path(path)
    if config_path is None:
        return Settings()

    try:
        with open(config_path) as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"settings file not found: {config_path}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid JSON in settings file {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"cannot read settings file {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"settings file {config_path} must contain a JSON object")

    known = {f.name for f in fields(Settings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"unknown settings in {config_path}: {', '.join(unknown)}")

    if "profiles" in data:
        data["profiles"] = _parse_profiles(data["profiles"], config_path)

    settings = Settings(**data)
    settings.validate()
    logger.debug(f"Loaded settings from {config_path} ({len(settings.profiles)} profiles)")
    return settings
