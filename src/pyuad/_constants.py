"""Internal constants shared across the library."""

NAME = "uad-ng"
USER_AGENT = "pyuad"

RELEASE_URL = (
    "https://api.github.com/repos/Universal-Debloater-Alliance/"
    "universal-android-debloater-next-generation/releases/latest"
)
CATALOG_URL = (
    "https://raw.githubusercontent.com/Universal-Debloater-Alliance/"
    "universal-android-debloater-next-generation/main/resources/assets/uad_lists.json"
)

# ------------------------------------------------------------------
# Android platform thresholds (SDK levels)
# ------------------------------------------------------------------

#: Multi-user package commands (``--user``) exist since Lollipop.
MULTI_USER_MIN_SDK = 21
#: ``pm disable-user`` works without root since Marshmallow.
DISABLE_MODE_MIN_SDK = 23
#: ``cmd package install-existing`` replaces ``pm install-existing`` on Oreo.
CMD_PACKAGE_MIN_SDK = 26

BACKUP_SUFFIX = ".json"
SELF_UPDATE_TEMP_ARG = "--self-update-temp"


def supports_multi_user(android_sdk: int) -> bool:
    """Whether a device on *android_sdk* can target individual users."""
    return android_sdk >= MULTI_USER_MIN_SDK


def supports_disable_mode(android_sdk: int) -> bool:
    """Whether packages can be disabled (instead of uninstalled) on *android_sdk*."""
    return android_sdk >= DISABLE_MODE_MIN_SDK
