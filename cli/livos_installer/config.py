from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from typing import Any

import tomli_w
from platformdirs import site_config_dir

APP_NAME = "livos-installer"
SETTINGS_FILENAME = "settings.toml"
RELEASE_URL_DEFAULT = "https://api.livinity.io"
CHANNEL_DEFAULT = "stable"
CHANNELS = ("stable", "beta")
ENV_RELEASE_URL = "LIVOS_RELEASE_URL"
ENV_CHANNEL = "LIVOS_CHANNEL"


@dataclass
class InstallerSettings:
    release_url: str = RELEASE_URL_DEFAULT
    channel: str = CHANNEL_DEFAULT


def settings_path() -> str:
    return f"{site_config_dir(APP_NAME)}/{SETTINGS_FILENAME}"


def default_settings() -> InstallerSettings:
    return InstallerSettings()


def normalize_release_url(raw: str | None) -> str:
    value = (raw or "").strip().rstrip("/")
    if not value:
        return ""
    lowered = value.lower()
    if lowered.startswith("http://") or lowered.startswith("https://"):
        return value
    host = value.split("/", 1)[0].split(":", 1)[0].lower()
    scheme = "http://" if host in {"localhost", "127.0.0.1"} else "https://"
    return f"{scheme}{value}"


def normalize_channel(raw: str | None) -> str:
    value = (raw or "").strip().lower()
    if value not in CHANNELS:
        raise ValueError(f"unknown release channel {raw!r}; expected one of {', '.join(CHANNELS)}")
    return value


def to_toml(settings: InstallerSettings) -> dict[str, Any]:
    return {
        "release_url": settings.release_url,
        "channel": settings.channel,
    }


def from_toml(data: dict[str, Any]) -> InstallerSettings:
    settings = default_settings()
    release_url = normalize_release_url(str(data.get("release_url") or ""))
    if release_url:
        settings.release_url = release_url
    channel = str(data.get("channel") or "").strip().lower()
    if channel in CHANNELS:
        settings.channel = channel
    return settings


def load_settings() -> InstallerSettings:
    path = settings_path()
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        return default_settings()
    return from_toml(data)


def resolve_release_url(settings: InstallerSettings) -> str:
    env_value = normalize_release_url(os.getenv(ENV_RELEASE_URL, ""))
    if env_value:
        return env_value
    return (settings.release_url or RELEASE_URL_DEFAULT).strip().rstrip("/")


def resolve_channel(settings: InstallerSettings, override: str | None = None) -> str:
    raw = override or os.getenv(ENV_CHANNEL, "").strip() or settings.channel
    return normalize_channel(raw)


def save_settings(settings: InstallerSettings) -> str:
    path = settings_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(tomli_w.dumps(to_toml(settings)).encode("utf-8"))
    os.chmod(path, 0o600)
    return path
