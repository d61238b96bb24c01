# Vault Preferences
# Unencrypted, non-sensitive settings kept in the vault metadata namespace.
# Follows the UserPreferences key/value pattern: string values, typed on read.

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict

from .exceptions import ValidationFailure
from .store import VaultStore

logger = logging.getLogger(__name__)

# Well-known preference keys
PREF_AUTO_LOCK_TIMEOUT = "autoLockTimeout"
PREF_CLIPBOARD_CLEAR_TIME = "clipboardClearTime"
PREF_DARK_MODE = "darkMode"
PREF_LOCALE = "locale"

SUPPORTED_LOCALES = ("zh-CN", "en-US")


@dataclass
class VaultPreferences:
    """Session preferences.

    auto_lock_timeout: idle minutes before auto-lock (0 disables)
    clipboard_clear_time: seconds before a copied value is cleared (0 disables)
    """

    auto_lock_timeout: int = 5
    clipboard_clear_time: int = 30
    dark_mode: bool = False
    locale: str = "zh-CN"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_preferences(store: VaultStore) -> VaultPreferences:
    """Read preferences from the store, falling back to defaults per key."""
    prefs = VaultPreferences()

    raw = store.get_item(PREF_AUTO_LOCK_TIMEOUT)
    if raw is not None:
        prefs.auto_lock_timeout = _parse_non_negative(
            PREF_AUTO_LOCK_TIMEOUT, raw, prefs.auto_lock_timeout
        )

    raw = store.get_item(PREF_CLIPBOARD_CLEAR_TIME)
    if raw is not None:
        prefs.clipboard_clear_time = _parse_non_negative(
            PREF_CLIPBOARD_CLEAR_TIME, raw, prefs.clipboard_clear_time
        )

    raw = store.get_item(PREF_DARK_MODE)
    if raw is not None:
        prefs.dark_mode = raw == "true"

    raw = store.get_item(PREF_LOCALE)
    if raw is not None:
        if raw in SUPPORTED_LOCALES:
            prefs.locale = raw
        else:
            logger.warning("Ignoring unsupported stored locale %r", raw)

    return prefs


def validate_duration(name: str, value: Any) -> int:
    """Return ``value`` if it is a non-negative int, else raise ValidationFailure."""
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValidationFailure(f"{name} must be a non-negative integer")
    return value


def validate_locale(locale: Any) -> str:
    if locale not in SUPPORTED_LOCALES:
        raise ValidationFailure(
            f"Unsupported locale {locale!r}; expected one of {', '.join(SUPPORTED_LOCALES)}"
        )
    return locale


def _parse_non_negative(key: str, raw: str, default: int) -> int:
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring unparseable %s value %r", key, raw)
        return default
    if value < 0:
        logger.warning("Ignoring negative %s value %r", key, raw)
        return default
    return value
