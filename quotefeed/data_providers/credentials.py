"""
Credential Store with Layered Fallback

Provides provider API keys with the following priority:
1. Runtime override (entered by the user through a settings surface)
2. Bundled default (environment variable / .env through Settings)

Reads happen on every eligibility check and vastly outnumber writes, so the
store swaps in a new override mapping on each write instead of mutating the
one readers are looking at.
"""
import threading
from typing import Optional, Mapping, Callable
from loguru import logger


PLACEHOLDER_MARKER = "YOUR_"


class CredentialSource:
    """Enum-like class for credential sources"""
    OVERRIDE = "override"
    DEFAULT = "default"
    NONE = None


def is_valid_key(key: Optional[str]) -> bool:
    """A key is usable when non-empty and not a template placeholder."""
    return bool(key) and bool(key.strip()) and PLACEHOLDER_MARKER not in key


class CredentialStore:
    """
    Read-mostly store of provider credentials.

    Usage:
        store = CredentialStore(settings.provider_api_keys())
        store.set_override("fmp", "user-entered-key")
        key = store.get_credential("fmp")
    """

    def __init__(
        self,
        defaults: Optional[Mapping[str, str]] = None,
        overrides: Optional[Mapping[str, str]] = None,
    ):
        self._defaults: dict[str, str] = dict(defaults or {})
        self._overrides: dict[str, str] = dict(overrides or {})
        self._write_lock = threading.Lock()
        self._listeners: list[Callable[[str], None]] = []

    def get_credential(self, provider: str) -> Optional[str]:
        """
        Get the effective key for a provider.

        Returns the override when it is valid, else the bundled default when
        valid, else None.
        """
        key, _ = self.get_credential_with_source(provider)
        return key

    def get_credential_with_source(self, provider: str) -> tuple[Optional[str], Optional[str]]:
        """Get the effective key and where it came from."""
        overrides = self._overrides
        override = overrides.get(provider)
        if is_valid_key(override):
            return override.strip(), CredentialSource.OVERRIDE

        default = self._defaults.get(provider)
        if is_valid_key(default):
            return default.strip(), CredentialSource.DEFAULT

        return None, CredentialSource.NONE

    def has_valid_credential(self, provider: str) -> bool:
        return self.get_credential(provider) is not None

    def set_override(self, provider: str, value: str) -> None:
        """Store a user-entered key for a provider."""
        with self._write_lock:
            updated = dict(self._overrides)
            updated[provider] = value
            self._overrides = updated
        logger.info(f"Credential override set for {provider}")
        self._notify(provider)

    def clear_override(self, provider: str) -> None:
        """Drop the user-entered key, falling back to the bundled default."""
        with self._write_lock:
            if provider not in self._overrides:
                return
            updated = dict(self._overrides)
            del updated[provider]
            self._overrides = updated
        logger.info(f"Credential override cleared for {provider}")
        self._notify(provider)

    def add_listener(self, callback: Callable[[str], None]) -> None:
        """Register a callback invoked with the provider name on every change."""
        self._listeners.append(callback)

    def providers_with_credentials(self) -> list[str]:
        """Names of providers that currently have a valid key."""
        names = set(self._defaults) | set(self._overrides)
        return sorted(name for name in names if self.has_valid_credential(name))

    def _notify(self, provider: str) -> None:
        for callback in list(self._listeners):
            callback(provider)
