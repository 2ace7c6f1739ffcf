"""Latest-release lookup and self-update download over HTTP."""

from __future__ import annotations

import logging
import os
import stat
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Any

import aiohttp
from pydantic import ValidationError

from pyuad._constants import NAME, SELF_UPDATE_TEMP_ARG, USER_AGENT
from pyuad.config import UadConfig
from pyuad.exceptions import UadReleaseError, UadUpdateError
from pyuad.models.release import Release

_logger = logging.getLogger(__name__)


def _bin_name() -> str:
    if sys.platform.startswith("win"):
        return f"{NAME}-windows"
    if sys.platform == "darwin":
        return f"{NAME}-macos"
    return f"{NAME}-linux"


class ReleaseChecker:
    """Query the releases API for a version newer than the running one."""

    def __init__(self, config: UadConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    async def _get_json(self, url: str) -> Any:
        headers = {"accept": "application/vnd.github+json", "user-agent": USER_AGENT}
        timeout = aiohttp.ClientTimeout(total=self._config.http_timeout)
        _logger.debug("GET %s", url)
        try:
            async with self._http.get(url, headers=headers, timeout=timeout) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise UadReleaseError(f"HTTP {resp.status} from {url}: {text[:200]}")
                return await resp.json(content_type=None)
        except UadReleaseError:
            raise
        except (aiohttp.ClientError, TimeoutError, ValueError) as exc:
            raise UadReleaseError(f"Request to {url} failed: {exc}") from exc

    async def latest_release(self) -> Release | None:
        """Return the latest release when newer than ``config.current_version``."""
        payload = await self._get_json(self._config.release_url)
        try:
            release = Release.model_validate(payload)
        except ValidationError as exc:
            raise UadReleaseError(f"Unexpected release payload: {exc}") from exc
        if release.is_newer_than(self._config.current_version):
            _logger.info("New release available: %s", release.tag_name)
            return release
        _logger.debug("Running %s, latest is %s", self._config.current_version, release.tag_name)
        return None


class SelfUpdater:
    """Download a release binary and relaunch into it.

    ``relaunch`` is the only code path in pyuad that terminates the process.
    """

    def __init__(self, config: UadConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    async def download(self, release: Release) -> tuple[Path, Path]:
        """Download the platform binary; return ``(relaunch_path, cleanup_path)``."""
        if not self._config.self_update_enabled:
            raise UadUpdateError("Self-update is disabled")
        asset = release.asset_for(_bin_name())
        if asset is None or not asset.download_url:
            raise UadUpdateError(f"No {_bin_name()} asset in release {release.tag_name}")

        current = Path(sys.argv[0]).resolve()
        fd, tmp_name = tempfile.mkstemp(prefix=f"{NAME}-", dir=current.parent)
        tmp_path = Path(tmp_name)
        timeout = aiohttp.ClientTimeout(total=None, sock_read=self._config.http_timeout)
        try:
            with os.fdopen(fd, "wb") as fh:
                async with self._http.get(asset.download_url, timeout=timeout) as resp:
                    if resp.status != 200:
                        raise UadUpdateError(f"HTTP {resp.status} downloading {asset.name}")
                    async for chunk in resp.content.iter_chunked(64 * 1024):
                        fh.write(chunk)
        except (aiohttp.ClientError, TimeoutError, OSError) as exc:
            tmp_path.unlink(missing_ok=True)
            raise UadUpdateError(f"Download of {asset.name} failed: {exc}") from exc
        except UadUpdateError:
            tmp_path.unlink(missing_ok=True)
            raise

        tmp_path.chmod(tmp_path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        # Swap binaries: the old one moves aside and is removed by the new process.
        cleanup_path = current.with_name(f"{current.name}.old")
        try:
            current.replace(cleanup_path)
            tmp_path.replace(current)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise UadUpdateError(f"Could not replace {current}: {exc}") from exc
        _logger.debug("%s update has been downloaded", NAME)
        return current, cleanup_path

    def relaunch(self, relaunch_path: Path, cleanup_path: Path) -> None:
        args = list(sys.argv[1:])
        # Drop a previous cleanup argument and its value before passing ours.
        if SELF_UPDATE_TEMP_ARG in args:
            idx = args.index(SELF_UPDATE_TEMP_ARG)
            del args[idx : idx + 2]
        try:
            subprocess.Popen([str(relaunch_path), *args, SELF_UPDATE_TEMP_ARG, str(cleanup_path)])
        except OSError as exc:
            raise UadUpdateError(f"Failed to relaunch {relaunch_path}: {exc}") from exc
        sys.exit(0)


def remove_self_update_leftover(argv: list[str]) -> None:
    """Delete the previous binary passed via ``--self-update-temp``."""
    if SELF_UPDATE_TEMP_ARG not in argv:
        return
    idx = argv.index(SELF_UPDATE_TEMP_ARG)
    if idx + 1 >= len(argv):
        return
    try:
        Path(argv[idx + 1]).unlink(missing_ok=True)
    except OSError:
        _logger.error("Could not remove temp update file %s", argv[idx + 1], exc_info=True)
