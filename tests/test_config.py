from pathlib import Path

import pytest

from browserkit import constants
from browserkit.config import DEFAULT_ENABLED_CHANNELS, load_config


def test_load_config_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "browserkit.cfg"
    config = load_config(config_path)

    assert config.path == config_path
    assert config.server.host == constants.DEFAULT_SERVER_HOST
    assert config.server.port == constants.DEFAULT_SERVER_PORT
    assert config.server.heartbeat_seconds == 30.0
    assert config.channels.enabled == DEFAULT_ENABLED_CHANNELS
    assert config.channels.clipboard_script == constants.DEFAULT_CLIPBOARD_SCRIPT
    assert config.requests.timeout_seconds == 30.0
    assert config.dedup.ttl_seconds == 300.0
    assert config.dedup.max_entries == 1000
    assert config.dedup.cleanup_interval == 100
    assert config.logging.level == "INFO"
    assert config.logging.path is None
    assert config.logging.log_network is False


def test_load_config_overrides_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "browserkit.cfg"
    config_path.write_text(
        """
[server]
host = 0.0.0.0
port = 9000

[channels]
clipboard_script = /assets/clipboard.js
enabled = Clipboard

[requests]
timeout_seconds = 5

[dedup]
ttl_seconds = 60
max_entries = 50

[logging]
level = DEBUG
path = ~/logs/browserkit.log
log_network = true
        """.strip()
        + "\n",
        encoding="utf-8",
    )

    config = load_config(config_path)

    assert config.server.host == "0.0.0.0"
    assert config.server.port == 9000
    assert config.channels.enabled == ["clipboard"]
    assert config.script_for("clipboard") == "/assets/clipboard.js"
    assert config.script_for("geolocation") == constants.DEFAULT_GEOLOCATION_SCRIPT
    assert config.requests.timeout_seconds == 5.0
    assert config.dedup.ttl_seconds == 60.0
    assert config.dedup.max_entries == 50
    assert config.logging.level == "DEBUG"
    assert config.logging.path == Path("~/logs/browserkit.log").expanduser()
    assert config.logging.log_network is True
    assert config.raw.get("server", "port") == "9000"


def test_invalid_numbers_fall_back_and_clamp(tmp_path: Path) -> None:
    config_path = tmp_path / "browserkit.cfg"
    config_path.write_text(
        "[server]\nport = not-a-port\n"
        "[requests]\ntimeout_seconds = -3\n"
        "[dedup]\nmax_entries = 0\ncleanup_interval = abc\n",
        encoding="utf-8",
    )

    config = load_config(config_path)

    assert config.server.port == constants.DEFAULT_SERVER_PORT
    assert config.requests.timeout_seconds == pytest.approx(0.1)
    assert config.dedup.max_entries == 1
    assert config.dedup.cleanup_interval == 100


def test_script_for_unknown_kind(tmp_path: Path) -> None:
    config = load_config(tmp_path / "browserkit.cfg")

    with pytest.raises(KeyError):
        config.script_for("camera")
