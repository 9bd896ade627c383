from __future__ import annotations

import base64
import dataclasses
import logging
import os
import re
import secrets
import sys
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping

import typer

from . import console
from .errors import ConfigurationInvalid

logger = logging.getLogger(__name__)

DEFAULT_INSTALL_DIR = "/opt/livos"
SERVICE_USER = "livos"
CONFIG_FILENAME = ".env"
VERSION_FILENAME = "VERSION"
LOCK_FILENAME = ".install.lock"
BACKUPS_DIRNAME = "backups"

DEFAULTS: dict[str, str] = {
    "domain": "localhost",
    "port": "80",
    "admin_email": "admin@localhost",
}

ENV_NONINTERACTIVE = "LIVOS_NONINTERACTIVE"
ENV_OVERRIDES: dict[str, str] = {
    "LIVOS_DOMAIN": "domain",
    "LIVOS_PORT": "port",
    "LIVOS_ADMIN_EMAIL": "admin_email",
}

OVERRIDE_KEYS = ("domain", "port", "admin_email", "install_dir", "data_dir", "log_dir", "run_as")
SECRET_FIELDS = ("app_key", "db_password", "jwt_secret")
MIN_SECRET_LENGTH = 16

# Attribute name -> key written to the config file.
FILE_KEYS: dict[str, str] = {
    "domain": "domain",
    "port": "port",
    "admin_email": "adminEmail",
    "app_key": "appKey",
    "db_password": "dbPassword",
    "jwt_secret": "jwtSecret",
    "install_dir": "installDir",
    "data_dir": "dataDir",
    "log_dir": "logDir",
}

_DOMAIN_RE = re.compile(
    r"^(?=.{1,253}$)[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)*$"
)
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")
_TRUTHY = {"1", "true", "yes", "y", "on"}


class Mode(str, Enum):
    INTERACTIVE = "interactive"
    NON_INTERACTIVE = "non-interactive"


def generate_symmetric_key() -> str:
    """32 random bytes, URL-safe base64 so it embeds in a key=value line."""
    return secrets.token_urlsafe(32)


def generate_password() -> str:
    """16 random bytes as lowercase base32: survives case-insensitive handling."""
    return base64.b32encode(secrets.token_bytes(16)).decode("ascii").rstrip("=").lower()


SECRET_GENERATORS: dict[str, Callable[[], str]] = {
    "app_key": generate_symmetric_key,
    "db_password": generate_password,
    "jwt_secret": generate_symmetric_key,
}


@dataclass
class InstallConfig:
    domain: str = DEFAULTS["domain"]
    port: int = int(DEFAULTS["port"])
    admin_email: str = DEFAULTS["admin_email"]
    install_dir: Path = Path(DEFAULT_INSTALL_DIR)
    data_dir: Path | None = None
    log_dir: Path | None = None
    run_as: str = SERVICE_USER
    app_key: str | None = None
    db_password: str | None = None
    jwt_secret: str | None = None
    _frozen: bool = field(default=False, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.install_dir = Path(self.install_dir)
        self.data_dir = Path(self.data_dir) if self.data_dir else self.install_dir / "data"
        self.log_dir = Path(self.log_dir) if self.log_dir else self.install_dir / "logs"

    def __setattr__(self, name: str, value) -> None:
        if getattr(self, "_frozen", False):
            raise dataclasses.FrozenInstanceError(f"cannot assign to field {name!r} of a frozen InstallConfig")
        object.__setattr__(self, name, value)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> "InstallConfig":
        missing = self.missing_secrets()
        if missing:
            raise ConfigurationInvalid(missing[0], "secret was never generated")
        object.__setattr__(self, "_frozen", True)
        return self

    def missing_secrets(self) -> list[str]:
        return [name for name in SECRET_FIELDS if not getattr(self, name)]

    @property
    def env_path(self) -> Path:
        return self.install_dir / CONFIG_FILENAME

    @property
    def version_path(self) -> Path:
        return self.install_dir / VERSION_FILENAME

    @property
    def backups_dir(self) -> Path:
        return self.install_dir / BACKUPS_DIRNAME

    @property
    def lock_path(self) -> Path:
        return self.install_dir / LOCK_FILENAME


def select_mode(
    non_interactive: bool = False,
    *,
    environ: Mapping[str, str] | None = None,
    isatty: Callable[[], bool] | None = None,
) -> Mode:
    env = os.environ if environ is None else environ
    if non_interactive or env.get(ENV_NONINTERACTIVE, "").strip().lower() in _TRUTHY:
        return Mode.NON_INTERACTIVE
    if isatty is None:
        isatty = lambda: sys.stdin.isatty() and sys.stdout.isatty()  # noqa: E731
    return Mode.INTERACTIVE if isatty() else Mode.NON_INTERACTIVE


def overrides_from_env(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    env = os.environ if environ is None else environ
    out: dict[str, str] = {}
    for env_key, field_name in ENV_OVERRIDES.items():
        value = (env.get(env_key) or "").strip()
        if value:
            out[field_name] = value
    return out


def validate_domain(raw: str) -> str:
    value = (raw or "").strip().lower()
    if not _DOMAIN_RE.match(value):
        raise ConfigurationInvalid("domain", f"{raw!r} is not a valid host name")
    return value


def validate_port(raw: str | int) -> int:
    try:
        port = int(str(raw).strip())
    except ValueError:
        raise ConfigurationInvalid("port", f"{raw!r} is not a number") from None
    if not 1 <= port <= 65535:
        raise ConfigurationInvalid("port", f"{port} is outside 1-65535")
    return port


def validate_email(raw: str) -> str:
    value = (raw or "").strip()
    if not _EMAIL_RE.match(value):
        raise ConfigurationInvalid("admin_email", f"{raw!r} is not an email address")
    return value


_VALIDATORS: dict[str, Callable[[str], object]] = {
    "domain": validate_domain,
    "port": validate_port,
    "admin_email": validate_email,
}

_PROMPTS: dict[str, str] = {
    "domain": "Domain name",
    "port": "HTTP port",
    "admin_email": "Admin email",
}


def _default_prompt(text: str, default: str) -> str:
    return typer.prompt(text, default=default)


def is_corrupt_secret(value: str | None) -> bool:
    if not value:
        return True
    if len(value) < MIN_SECRET_LENGTH:
        return True
    return not value.isprintable() or any(ch.isspace() for ch in value)


def read_env_content(content: str) -> dict[str, str]:
    data: dict[str, str] = {}
    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        data[key.strip()] = value.strip()
    return data


def read_env_file(path: Path) -> dict[str, str]:
    if not path.is_file():
        return {}
    return read_env_content(path.read_text(encoding="utf-8"))


def _apply_existing_secrets(config: InstallConfig, existing: Mapping[str, str]) -> None:
    for name in SECRET_FIELDS:
        value = existing.get(FILE_KEYS[name])
        if value is None:
            continue
        if is_corrupt_secret(value):
            console.warn(f"Existing {FILE_KEYS[name]} in {config.env_path} is unusable; generating a new one.")
            continue
        setattr(config, name, value)


def fill_secrets(config: InstallConfig) -> list[str]:
    """Generate every secret that is still unset; return the generated names."""
    generated: list[str] = []
    for name in SECRET_FIELDS:
        if getattr(config, name):
            continue
        setattr(config, name, SECRET_GENERATORS[name]())
        generated.append(name)
    return generated


def resolve(
    mode: Mode,
    overrides: Mapping[str, str],
    *,
    prompt: Callable[[str, str], str] | None = None,
) -> InstallConfig:
    unknown = sorted(set(overrides) - set(OVERRIDE_KEYS))
    if unknown:
        raise ConfigurationInvalid(unknown[0], "unknown configuration key")

    config = InstallConfig(
        install_dir=Path(overrides.get("install_dir") or DEFAULT_INSTALL_DIR),
        data_dir=Path(overrides["data_dir"]) if overrides.get("data_dir") else None,
        log_dir=Path(overrides["log_dir"]) if overrides.get("log_dir") else None,
        run_as=(overrides.get("run_as") or SERVICE_USER).strip(),
    )
    if not config.run_as:
        raise ConfigurationInvalid("run_as", "run-as identity cannot be empty")

    ask = prompt or _default_prompt
    for name in ("domain", "port", "admin_email"):
        validator = _VALIDATORS[name]
        if name in overrides:
            value = validator(overrides[name])
        elif mode is Mode.NON_INTERACTIVE:
            value = validator(DEFAULTS[name])
        else:
            while True:
                answer = ask(_PROMPTS[name], DEFAULTS[name])
                try:
                    value = validator(answer or DEFAULTS[name])
                    break
                except ConfigurationInvalid as exc:
                    console.err(str(exc))
        setattr(config, name, value)

    _apply_existing_secrets(config, read_env_file(config.env_path))
    generated = fill_secrets(config)
    if generated:
        logger.debug("generated secrets: %s", ", ".join(generated))
    return config


def adopt_persisted_secrets(config: InstallConfig) -> InstallConfig:
    """Return ``config`` with usable secrets already on disk taking precedence.

    Another run may have written the file after ``config`` was resolved;
    its secrets win over values generated here.
    """
    existing = read_env_file(config.env_path)
    adopted: dict[str, str] = {}
    for name in SECRET_FIELDS:
        value = existing.get(FILE_KEYS[name])
        if value is None or is_corrupt_secret(value) or value == getattr(config, name):
            continue
        adopted[name] = value
    if not adopted:
        return config
    logger.info("keeping %s already persisted in %s", ", ".join(FILE_KEYS[n] for n in adopted), config.env_path)
    updated = dataclasses.replace(config, **adopted)
    return updated.freeze() if config.frozen else updated


def render_env(config: InstallConfig) -> str:
    stamp = datetime.now(timezone.utc).replace(microsecond=0).isoformat()
    lines = [
        "# LivOS configuration, generated by livos-installer",
        f"# {stamp}",
    ]
    for name, key in FILE_KEYS.items():
        value = getattr(config, name)
        lines.append(f"{key}={'' if value is None else value}")
    return "\n".join(lines) + "\n"


def _write_private(path: Path, content: str, *, owner: tuple[int, int] | None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, 0o600)
        if owner is not None:
            os.chown(tmp_name, owner[0], owner[1])
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_config(config: InstallConfig, *, owner: tuple[int, int] | None = None) -> Path:
    """Persist the configuration as owner-only key=value lines."""
    missing = config.missing_secrets()
    if missing:
        raise ConfigurationInvalid(missing[0], "refusing to write a configuration without secrets")
    _write_private(config.env_path, render_env(config), owner=owner)
    return config.env_path


def rotate_secret(env_path: Path, name: str, *, owner: tuple[int, int] | None = None) -> str:
    """Replace one persisted secret with a fresh value.

    Everything derived from the old value (sessions, tokens) stops working,
    so this is only ever called from the explicit rotate command.
    """
    if name not in SECRET_FIELDS:
        raise ConfigurationInvalid(name, f"not a secret; choose one of {', '.join(SECRET_FIELDS)}")
    if not env_path.exists():
        raise ConfigurationInvalid("config", f"{env_path} does not exist")
    key = FILE_KEYS[name]
    new_value = SECRET_GENERATORS[name]()
    lines = env_path.read_text(encoding="utf-8").splitlines()
    out: list[str] = []
    replaced = False
    for line in lines:
        stripped = line.strip()
        if not stripped.startswith("#") and "=" in stripped and stripped.split("=", 1)[0].strip() == key:
            out.append(f"{key}={new_value}")
            replaced = True
        else:
            out.append(line)
    if not replaced:
        out.append(f"{key}={new_value}")
    if owner is None:
        st = env_path.stat()
        owner = (st.st_uid, st.st_gid)
    _write_private(env_path, "\n".join(out) + "\n", owner=owner)
    return new_value
