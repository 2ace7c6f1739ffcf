"""Release and self-update state models."""

from __future__ import annotations

import enum
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

_VERSION_RE = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")


def parse_version(tag: str) -> tuple[int, int, int]:
    """Parse ``v1.2.3``-style tags. Unparseable tags sort lowest."""
    match = _VERSION_RE.search(tag)
    if match is None:
        return (0, 0, 0)
    major, minor, patch = (int(part) if part else 0 for part in match.groups())
    return (major, minor, patch)


class ReleaseAsset(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    download_url: str = Field(default="", validation_alias="browser_download_url")


class Release(BaseModel):
    """A published release (GitHub ``releases/latest`` shape)."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    tag_name: str
    name: str = ""
    html_url: str = ""
    assets: tuple[ReleaseAsset, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, values: Any) -> Any:
        if isinstance(values, dict) and not values.get("name"):
            merged = dict(values)
            merged["name"] = merged.get("tag_name", "")
            return merged
        return values

    @property
    def version(self) -> tuple[int, int, int]:
        return parse_version(self.tag_name)

    def is_newer_than(self, current: str) -> bool:
        return self.version > parse_version(current)

    def asset_for(self, bin_name: str) -> ReleaseAsset | None:
        for asset in self.assets:
            if asset.name.startswith(bin_name):
                return asset
        return None


class SelfUpdateStatus(enum.StrEnum):
    IDLE = "idle"
    CHECKING = "checking"
    DONE = "done"
    UPDATING = "updating"
    FAILED = "failed"


class SelfUpdateState(BaseModel):
    """Self-update progress. Frozen: transitions build a new instance."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: SelfUpdateStatus = SelfUpdateStatus.IDLE
    latest_release: Release | None = None


class CatalogState(enum.StrEnum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    DONE = "done"
    FAILED = "failed"
