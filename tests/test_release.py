from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest

from pyuad._release import ReleaseChecker, SelfUpdater, remove_self_update_leftover
from pyuad.config import UadConfig
from pyuad.exceptions import UadReleaseError, UadUpdateError
from pyuad.models.release import Release, parse_version

_PAYLOAD = {
    "tag_name": "v1.2.0",
    "html_url": "https://example.invalid/releases/v1.2.0",
    "assets": [
        {"name": "uad-ng-linux", "browser_download_url": "https://example.invalid/uad-ng-linux"},
        {"name": "uad-ng-windows.exe", "browser_download_url": "https://example.invalid/uad-ng-windows.exe"},
    ],
}


class _FakeResponse:
    def __init__(self, status: int, payload: Any) -> None:
        self.status = status
        self._payload = payload

    async def __aenter__(self) -> _FakeResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    async def json(self, content_type: str | None = None) -> Any:
        return self._payload

    async def text(self) -> str:
        return str(self._payload)


class _FakeSession:
    def __init__(self, status: int, payload: Any) -> None:
        self._response = _FakeResponse(status, payload)
        self.urls: list[str] = []

    def get(self, url: str, **_kwargs: Any) -> _FakeResponse:
        self.urls.append(url)
        return self._response


def _config(**overrides: Any) -> UadConfig:
    return UadConfig(release_url="https://example.invalid/latest", **overrides)


def test_parse_version() -> None:
    assert parse_version("v1.2.3") == (1, 2, 3)
    assert parse_version("1.2") == (1, 2, 0)
    assert parse_version("nightly") == (0, 0, 0)


def test_release_model() -> None:
    release = Release.model_validate(_PAYLOAD)

    assert release.name == "v1.2.0"
    assert release.is_newer_than("1.1.9")
    assert not release.is_newer_than("v1.2.0")
    asset = release.asset_for("uad-ng-linux")
    assert asset is not None and asset.download_url.endswith("uad-ng-linux")
    assert release.asset_for("uad-ng-macos") is None


@pytest.mark.asyncio
async def test_latest_release_only_when_newer() -> None:
    session = _FakeSession(200, _PAYLOAD)

    newer = await ReleaseChecker(_config(current_version="1.0.0"), session).latest_release()  # type: ignore[arg-type]
    same = await ReleaseChecker(_config(current_version="1.2.0"), session).latest_release()  # type: ignore[arg-type]

    assert newer is not None and newer.tag_name == "v1.2.0"
    assert same is None
    assert session.urls == ["https://example.invalid/latest"] * 2


@pytest.mark.asyncio
async def test_latest_release_http_error() -> None:
    checker = ReleaseChecker(_config(), _FakeSession(503, "unavailable"))  # type: ignore[arg-type]

    with pytest.raises(UadReleaseError, match="HTTP 503"):
        await checker.latest_release()


@pytest.mark.asyncio
async def test_latest_release_bad_payload() -> None:
    checker = ReleaseChecker(_config(), _FakeSession(200, {"nope": 1}))  # type: ignore[arg-type]

    with pytest.raises(UadReleaseError):
        await checker.latest_release()


@pytest.mark.asyncio
async def test_download_refused_when_disabled() -> None:
    updater = SelfUpdater(_config(self_update_enabled=False), _FakeSession(200, b""))  # type: ignore[arg-type]

    with pytest.raises(UadUpdateError, match="disabled"):
        await updater.download(Release.model_validate(_PAYLOAD))


@pytest.mark.asyncio
async def test_download_without_matching_asset() -> None:
    updater = SelfUpdater(_config(self_update_enabled=True), _FakeSession(200, b""))  # type: ignore[arg-type]

    with pytest.raises(UadUpdateError, match="asset"):
        await updater.download(Release.model_validate({"tag_name": "v2.0.0"}))


def test_leftover_binary_is_removed(tmp_path: Path) -> None:
    leftover = tmp_path / "uad-ng.old"
    leftover.write_bytes(b"old")

    remove_self_update_leftover([sys.argv[0], "--self-update-temp", str(leftover)])
    remove_self_update_leftover([sys.argv[0], "--self-update-temp"])

    assert not leftover.exists()
