from __future__ import annotations

from pathlib import Path

import pytest

from pyuad.config import UadConfig
from pyuad.exceptions import UadConfigError


def test_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("UAD_ADB_PATH", "/opt/platform-tools/adb")
    monkeypatch.setenv("UAD_CONFIG_PATH", str(tmp_path / "c.json"))
    monkeypatch.setenv("UAD_BACKUP_FOLDER", str(tmp_path / "b"))
    monkeypatch.setenv("UAD_ADB_TIMEOUT", "5")
    monkeypatch.setenv("UAD_SELF_UPDATE", "yes")

    config = UadConfig.from_env()

    assert config.adb_path == "/opt/platform-tools/adb"
    assert config.config_path == tmp_path / "c.json"
    assert config.backup_folder == tmp_path / "b"
    assert config.adb_timeout == 5.0
    assert config.self_update_enabled is True


def test_overrides_win_over_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("UAD_ADB_TIMEOUT", "5")
    monkeypatch.setenv("UAD_SELF_UPDATE", "1")

    config = UadConfig.from_env(adb_timeout=9.0, self_update_enabled=False)

    assert config.adb_timeout == 9.0
    assert config.self_update_enabled is False


def test_invalid_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("UAD_HTTP_TIMEOUT", "soon")

    with pytest.raises(UadConfigError):
        UadConfig.from_env()

    with pytest.raises(UadConfigError):
        UadConfig(adb_timeout=0)


def test_default_config_path_honours_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

    assert UadConfig().config_path == tmp_path / "uad-ng" / "config.json"
