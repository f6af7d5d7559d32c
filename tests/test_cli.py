from pathlib import Path

import pytest

from browserkit import cli


def test_show_config_prints_sections(tmp_path: Path, capsys) -> None:
    config_path = tmp_path / "browserkit.cfg"
    config_path.write_text("[server]\nport = 9100\n", encoding="utf-8")

    exit_code = cli.main(["-c", str(config_path), "show-config"])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert f"Configuration loaded from {config_path}" in output
    assert "[server]" in output
    assert "port = 9100" in output
    assert "[dedup]" in output


def test_serve_starts_app(tmp_path: Path, monkeypatch) -> None:
    started = []
    monkeypatch.setattr(
        cli.BrowserKitApp,
        "start",
        classmethod(lambda cls, config: started.append(config)),
    )

    exit_code = cli.main(["-c", str(tmp_path / "browserkit.cfg"), "serve"])

    assert exit_code == 0
    assert len(started) == 1
    assert started[0].path == tmp_path / "browserkit.cfg"


def test_command_is_required() -> None:
    with pytest.raises(SystemExit):
        cli.main([])
