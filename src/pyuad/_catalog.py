"""Package catalog: removal recommendations and descriptions."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import aiohttp

from pyuad._constants import USER_AGENT
from pyuad.config import UadConfig
from pyuad.exceptions import UadCatalogError
from pyuad.models.package import CatalogEntry, PackageEntry, Removal

_logger = logging.getLogger(__name__)


def parse_catalog(payload: Any) -> dict[str, CatalogEntry]:
    """Parse ``{"pkg": {"removal": "Recommended", "description": ...}}``.

    Malformed entries are skipped rather than failing the whole catalog.
    """
    if not isinstance(payload, Mapping):
        raise UadCatalogError("Catalog payload is not an object")
    catalog: dict[str, CatalogEntry] = {}
    for name, raw in payload.items():
        if not isinstance(raw, Mapping):
            continue
        catalog[str(name)] = CatalogEntry(
            removal=Removal(str(raw.get("removal", ""))),
            description=str(raw.get("description") or ""),
        )
    return catalog


def annotate(
    partitions: Sequence[Sequence[PackageEntry]],
    catalog: Mapping[str, CatalogEntry],
) -> list[list[PackageEntry]]:
    """Return partitions with removal tags and descriptions from *catalog*."""
    annotated: list[list[PackageEntry]] = []
    for partition in partitions:
        entries: list[PackageEntry] = []
        for entry in partition:
            info = catalog.get(entry.name)
            if info is None:
                entries.append(entry)
            else:
                entries.append(entry.model_copy(update={"removal": info.removal, "description": info.description}))
        annotated.append(entries)
    return annotated


class CatalogClient:
    def __init__(self, config: UadConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    async def fetch(self) -> dict[str, CatalogEntry]:
        url = self._config.catalog_url
        timeout = aiohttp.ClientTimeout(total=self._config.http_timeout)
        _logger.debug("GET %s", url)
        try:
            async with self._http.get(url, headers={"user-agent": USER_AGENT}, timeout=timeout) as resp:
                if resp.status != 200:
                    raise UadCatalogError(f"HTTP {resp.status} from {url}")
                payload = await resp.json(content_type=None)
        except UadCatalogError:
            raise
        except (aiohttp.ClientError, TimeoutError, ValueError) as exc:
            raise UadCatalogError(f"Request to {url} failed: {exc}") from exc
        catalog = parse_catalog(payload)
        _logger.info("Loaded %d catalog entries", len(catalog))
        return catalog
