from __future__ import annotations

from typing import Any

import pytest

from pyuad._catalog import CatalogClient, annotate, parse_catalog
from pyuad.config import UadConfig
from pyuad.exceptions import UadCatalogError
from pyuad.models.package import CatalogEntry, PackageEntry, Removal


def test_parse_catalog_normalizes_removal() -> None:
    catalog = parse_catalog(
        {
            "com.facebook.katana": {"removal": "Recommended", "description": "Facebook"},
            "com.android.systemui": {"removal": "UNSAFE"},
            "com.odd": {"removal": "Sometimes", "description": None},
            "broken": "not an object",
        }
    )

    assert catalog["com.facebook.katana"] == CatalogEntry(removal=Removal.RECOMMENDED, description="Facebook")
    assert catalog["com.android.systemui"].removal is Removal.UNSAFE
    assert catalog["com.odd"] == CatalogEntry(removal=Removal.UNLISTED, description="")
    assert "broken" not in catalog


def test_parse_catalog_rejects_non_object() -> None:
    with pytest.raises(UadCatalogError):
        parse_catalog(["a", "b"])


def test_annotate_keeps_selection_and_state() -> None:
    partitions = [[PackageEntry(name="a", selected=True), PackageEntry(name="b")]]

    result = annotate(partitions, {"a": CatalogEntry(removal=Removal.EXPERT, description="A")})

    assert result[0][0] == PackageEntry(name="a", selected=True, removal=Removal.EXPERT, description="A")
    assert result[0][1] == partitions[0][1]


class _Response:
    def __init__(self, status: int, payload: Any) -> None:
        self.status = status
        self._payload = payload

    async def __aenter__(self) -> _Response:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    async def json(self, content_type: str | None = None) -> Any:
        return self._payload


class _Session:
    def __init__(self, status: int, payload: Any) -> None:
        self._response = _Response(status, payload)

    def get(self, url: str, **_kwargs: Any) -> _Response:
        return self._response


@pytest.mark.asyncio
async def test_client_fetch() -> None:
    client = CatalogClient(UadConfig(), _Session(200, {"a": {"removal": "Advanced"}}))  # type: ignore[arg-type]

    catalog = await client.fetch()

    assert catalog["a"].removal is Removal.ADVANCED


@pytest.mark.asyncio
async def test_client_fetch_http_error() -> None:
    client = CatalogClient(UadConfig(), _Session(404, None))  # type: ignore[arg-type]

    with pytest.raises(UadCatalogError, match="HTTP 404"):
        await client.fetch()
