import os
import stat
from pathlib import Path

import pytest

from labctl.api import DEFAULT_BASE
from labctl.config import Account, Config, Settings, load_config, save_config
from labctl.errors import ConfigError, UsageError


def test_load_config__missing_file(tmp_path):
    config = load_config(tmp_path / "svc.toml")

    assert config == Config()
    assert config.account.token == ""


def test_save_config__round_trip(tmp_path):
    path = tmp_path / "nested" / "svc.toml"
    config = Config(account=Account(email="me@example.com", token="tok-1"))

    save_config(config, path)

    assert load_config(path) == config
    assert "[account]" in path.read_text()


def test_save_config__owner_only(tmp_path):
    path = tmp_path / "svc.toml"
    path.write_text("")
    os.chmod(path, 0o644)

    save_config(Config(account=Account(email="a", token="b")), path)

    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


def test_load_config__invalid_toml(tmp_path):
    path = tmp_path / "svc.toml"
    path.write_text("[account\nemail = ")

    with pytest.raises(ConfigError):
        load_config(path)


def test_load_config__not_utf8(tmp_path):
    path = tmp_path / "svc.toml"
    path.write_bytes(b'[account]\nemail = "\xff\xfe"\n')

    with pytest.raises(ConfigError, match="error parsing configuration"):
        load_config(path)


def test_load_config__ignores_unknown_sections(tmp_path):
    path = tmp_path / "svc.toml"
    path.write_text('[other]\nkey = 1\n\n[account]\nemail = "x@example.com"\n')

    config = load_config(path)

    assert config.account.email == "x@example.com"
    assert config.account.token == ""


def test_require_token__not_logged_in():
    with pytest.raises(UsageError, match="please login first"):
        Config().require_token()


def test_settings_from_env__defaults():
    settings = Settings.from_env({})

    assert settings.api_base == DEFAULT_BASE
    assert settings.home == Path(os.path.expanduser("~/.config/lab47"))
    assert settings.config_path == settings.home / "svc.toml"


def test_settings_from_env__overrides(tmp_path):
    settings = Settings.from_env(
        {"LAB47_API_BASE": "http://localhost:8080", "LAB47_HOME": str(tmp_path)}
    )

    assert settings.api_base == "http://localhost:8080"
    assert settings.config_path == tmp_path / "svc.toml"


@pytest.mark.parametrize(
    ["api_base", "expected"],
    [
        pytest.param(DEFAULT_BASE, "vcr.pub", id="default"),
        pytest.param(DEFAULT_BASE + "/", "vcr.pub", id="default-trailing-slash"),
        pytest.param("http://localhost:8080", "localhost:8080", id="local"),
        pytest.param("https://svc.staging.example", "svc.staging.example", id="staging"),
    ],
)
def test_registry_server(api_base, expected):
    assert Settings(api_base=api_base).registry_server == expected


def test_registry_server__invalid_base():
    with pytest.raises(ConfigError):
        Settings(api_base="not a url").registry_server
