import os

import pytest
import yaml

from wings import config as cfg
from wings.config import (
    Configuration,
    from_file,
    get_config,
    jwt_secret,
    new_at_path,
    set_config,
    set_debug_via_flag,
    update_config,
    write_to_disk,
)


@pytest.fixture(autouse=True)
def _fresh_global(tmp_path):
    set_config(new_at_path(str(tmp_path / "config.yml")))
    set_debug_via_flag(False)
    yield
    set_debug_via_flag(False)


def test_new_at_path_defaults():
    c = new_at_path("/etc/pterodactyl/config.yml")
    assert c.path == cfg.DEFAULT_LOCATION
    assert c.api.port == 8080
    assert c.api.host == "0.0.0.0"
    assert c.system.sftp.port == 2022
    assert c.system.root_directory == "/var/lib/pterodactyl"
    assert c.throttles.lines == 2000
    assert c.remote_query.timeout == 30
    assert c.docker.network.name == "pterodactyl_nw"


def test_states_path():
    c = new_at_path("x")
    assert c.system.states_path == "/var/lib/pterodactyl/states.json"


def test_from_dict_uses_file_keys():
    c = Configuration.from_dict(
        {
            "remote": "https://panel.example.com",
            "token_id": "node-id",
            "token": "token",
            "api": {"ssl": {"enabled": True, "cert": "/c.pem", "key": "/k.pem"}},
            "system": {"sftp": {"bind_port": 2200}, "user": {"rootless": {"enabled": True}}},
            "throttles": {"line_reset_interval": 250},
        },
        "/tmp/c.yml",
    )
    assert c.panel_location == "https://panel.example.com"
    assert c.authentication_token_id == "node-id"
    assert c.authentication_token == "token"
    assert c.api.ssl.enabled is True
    assert c.api.ssl.certificate_file == "/c.pem"
    assert c.api.ssl.key_file == "/k.pem"
    assert c.api.port == 8080
    assert c.system.sftp.port == 2200
    assert c.system.sftp.address == "0.0.0.0"
    assert c.system.user.rootless.enabled is True
    assert c.throttles.period == 250
    assert c.path == "/tmp/c.yml"


def test_to_dict_round_trip():
    c = Configuration.from_dict({"uuid": "abc", "allowed_origins": ["https://a.example.com"]})
    again = Configuration.from_dict(c.to_dict())
    assert again == c
    assert c.to_dict()["remote"] == ""


def test_merge_overlays_values():
    c = new_at_path("p")
    c.merge({"api": {"port": 9090}})
    c.merge({"api": {"host": "127.0.0.1"}})
    assert c.api.port == 9090
    assert c.api.host == "127.0.0.1"
    assert c.path == "p"


def test_merge_rejects_non_mapping():
    with pytest.raises(TypeError):
        new_at_path("p").merge(["not", "a", "mapping"])


def test_write_and_read_round_trip(tmp_path):
    p = tmp_path / "out.yml"
    c = Configuration.from_dict({"token": "token", "api": {"port": 9000}}, str(p))
    write_to_disk(c)
    assert os.stat(p).st_mode & 0o777 == 0o600
    from_file(str(p))
    loaded = get_config()
    assert loaded == c
    assert loaded.path == str(p)


def test_written_yaml_uses_file_keys(tmp_path):
    p = tmp_path / "out.yml"
    write_to_disk(Configuration.from_dict({"remote": "https://panel.example.com"}, str(p)))
    data = yaml.safe_load(p.read_text())
    assert data["remote"] == "https://panel.example.com"
    assert data["system"]["sftp"]["bind_port"] == 2022


def test_write_without_path_raises():
    with pytest.raises(ValueError):
        write_to_disk(Configuration())


def test_from_file_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        from_file(str(tmp_path / "missing.yml"))


def test_from_file_empty_keeps_defaults(tmp_path):
    p = tmp_path / "empty.yml"
    p.write_text("")
    from_file(str(p))
    assert get_config() == new_at_path(str(p))


def test_get_config_returns_copy():
    c = get_config()
    c.api.port = 1
    assert get_config().api.port == 8080


def test_update_config_modifies_global():
    def change(c):
        c.system.timezone = "UTC"

    update_config(change)
    assert get_config().system.timezone == "UTC"


def test_jwt_secret_follows_token():
    set_config(Configuration.from_dict({"token": "token"}))
    assert jwt_secret() == b"token"
    set_config(Configuration.from_dict({"token": "secret"}))
    assert jwt_secret() == b"secret"


def test_debug_flag_not_written(tmp_path):
    p = tmp_path / "d.yml"
    set_config(new_at_path(str(p)))
    set_debug_via_flag(True)
    assert get_config().debug is True
    write_to_disk(get_config())
    assert yaml.safe_load(p.read_text())["debug"] is False