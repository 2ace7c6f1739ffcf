"""Device and user models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from pyuad._constants import supports_disable_mode, supports_multi_user


class User(BaseModel):
    """A user partition on a device (``pm list users``)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int
    """Android user id (``0`` is the owner)."""
    index: int = 0
    """Position of this user's package partition."""
    protected: bool = False
    """Managed work profiles whose packages cannot be listed or bulk-targeted."""


class Device(BaseModel):
    """A device reachable through the bridge."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    adb_id: str
    """Bridge serial; the device identity."""
    model: str = ""
    """Display model name (``ro.product.model``)."""
    android_sdk: int = 0
    """Platform SDK level (``ro.build.version.sdk``). ``0`` means unreachable."""
    user_list: tuple[User, ...] = Field(default_factory=tuple)

    @property
    def is_connected(self) -> bool:
        return self.android_sdk > 0

    @property
    def supports_multi_user(self) -> bool:
        return supports_multi_user(self.android_sdk)

    @property
    def supports_disable_mode(self) -> bool:
        return supports_disable_mode(self.android_sdk)

    @property
    def unprotected_users(self) -> tuple[User, ...]:
        return tuple(u for u in self.user_list if not u.protected)

    def __str__(self) -> str:
        return f"{self.model} ({self.adb_id})" if self.model else self.adb_id
