"""
Settings taken from the environment and the on-disk session store.

The session store is a TOML file, ``<LAB47_HOME>/svc.toml``, holding the
account email and the long-lived session token:

    [account]
    email = "someone@example.com"
    token = "..."
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

import tomli_w

from labctl.api import DEFAULT_BASE
from labctl.errors import ConfigError, UsageError
from labctl.logging import get_labctl_logger

LOGGER = get_labctl_logger()

API_BASE_ENV = "LAB47_API_BASE"
HOME_ENV = "LAB47_HOME"
DEFAULT_HOME = "~/.config/lab47"
CONFIG_FILE = "svc.toml"
DEFAULT_REGISTRY = "vcr.pub"


@dataclass(frozen=True)
class Settings:
    """
    Process-wide settings. Built once from the environment and passed to the
    commands explicitly.
    """

    api_base: str = DEFAULT_BASE
    home: Path = field(default_factory=lambda: Path(os.path.expanduser(DEFAULT_HOME)))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        if environ is None:
            environ = os.environ
        api_base = (environ.get(API_BASE_ENV) or "").strip() or DEFAULT_BASE
        home = (environ.get(HOME_ENV) or "").strip() or DEFAULT_HOME
        return cls(api_base=api_base, home=Path(os.path.expanduser(home)))

    @property
    def config_path(self) -> Path:
        return self.home / CONFIG_FILE

    @property
    def registry_server(self) -> str:
        """
        Registry host matching the API base. The public service maps to
        vcr.pub; any other base is assumed to serve its registry on the same
        host.
        """
        if self.api_base.rstrip("/") == DEFAULT_BASE:
            return DEFAULT_REGISTRY

        host = urlparse(self.api_base).netloc
        if not host:
            raise ConfigError(f"invalid {API_BASE_ENV}: {self.api_base!r}")
        return host


@dataclass
class Account:
    email: str = ""
    token: str = ""


@dataclass
class Config:
    account: Account = field(default_factory=Account)

    def require_token(self) -> str:
        if not self.account.token:
            raise UsageError("please login first")
        return self.account.token

    def to_dict(self) -> dict[str, Any]:
        return {"account": {"email": self.account.email, "token": self.account.token}}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Config":
        section = data.get("account")
        if not isinstance(section, dict):
            return cls()
        return cls(
            account=Account(
                email=str(section.get("email") or ""),
                token=str(section.get("token") or ""),
            )
        )


def load_config(path: Path) -> Config:
    """
    Load the session store. A missing file is not an error and yields an
    empty configuration.
    """
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        LOGGER.debug("No configuration at %s", path)
        return Config()
    except OSError as e:
        raise ConfigError(f"error reading configuration {path}: {e}") from e

    try:
        data = tomllib.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"error parsing configuration {path}: {e}") from e

    return Config.from_dict(data)


def save_config(config: Config, path: Path) -> None:
    """
    Write the session store with owner-only permissions.
    """
    try:
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            tomli_w.dump(config.to_dict(), f)
        os.chmod(path, 0o600)
    except OSError as e:
        raise ConfigError(f"error writing configuration {path}: {e}") from e
    LOGGER.debug("Saved configuration to %s", path)
