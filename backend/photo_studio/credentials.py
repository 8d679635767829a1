"""
API key resolution.

The user's saved key wins over the deploy-time default from the environment.
Nothing is cached: the key can change between calls (another tab, the key
settings endpoint), so every provider call resolves again.
"""
import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Protocol

from .config import get_user_config_dir
from .errors import MissingCredential

logger = logging.getLogger(__name__)

STORE_KEY = "GEMINI_API_KEY"
PLACEHOLDER_KEY = "your_api_key_here"
ENV_KEYS = ("GEMINI_API_KEY", "API_KEY")


def is_usable_key(value: Optional[str]) -> bool:
    """False for None, blank, the literal 'undefined' and the placeholder text."""
    if value is None:
        return False
    stripped = value.strip()
    return bool(stripped) and stripped not in ("undefined", PLACEHOLDER_KEY)


class KeyStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryKeyStore:
    """In-process key/value store."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileKeyStore:
    """
    Key/value store persisted as JSON in the user config directory.

    A missing or unreadable file reads as empty. The file is written with
    0o600 permissions since it holds API keys.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_user_config_dir() / "config.json"

    def _load(self) -> Dict[str, str]:
        if not self.path.is_file():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read key store {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            pass  # Not supported on every platform

    def get(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)


def env_default_key() -> Optional[str]:
    for name in ENV_KEYS:
        value = os.getenv(name)
        if is_usable_key(value):
            return value
    return None


def resolve_credential(store: Optional[KeyStore] = None, env_default: Optional[str] = None) -> str:
    """
    Return the API key to use for one provider call.

    Args:
        store: Saved user keys. A non-blank value there takes priority.
        env_default: Deploy-time default. When None the environment is read now.

    Raises:
        MissingCredential: if neither source yields a usable key.
    """
    user_key = store.get(STORE_KEY) if store is not None else None
    if is_usable_key(user_key):
        candidate = user_key
    else:
        candidate = env_default if env_default is not None else env_default_key()

    if not is_usable_key(candidate):
        raise MissingCredential()
    return candidate.strip()


class CredentialProvider:
    """
    Explicit key source handed to every operation.

    Callers own the store and re-inject a provider when the key changes;
    operations never read global state on their own.
    """

    def __init__(self, store: Optional[KeyStore] = None, env_default: Optional[str] = None):
        self.store = store
        self.env_default = env_default

    @classmethod
    def fixed(cls, value: Optional[str]) -> "CredentialProvider":
        """Provider for a key supplied with a single request."""
        return cls(store=MemoryKeyStore({STORE_KEY: value} if value else {}), env_default="")

    def resolve(self) -> str:
        return resolve_credential(self.store, self.env_default)

    def has_user_key(self) -> bool:
        if self.store is None:
            return False
        return is_usable_key(self.store.get(STORE_KEY))

    def save_key(self, value: Optional[str]) -> bool:
        """Save a trimmed key, or clear it when blank. Returns True when a key was saved."""
        if self.store is None:
            raise RuntimeError("No key store configured")
        trimmed = (value or "").strip()
        if trimmed:
            self.store.set(STORE_KEY, trimmed)
            logger.info("Saved user API key")
            return True
        self.clear_key()
        return False

    def clear_key(self) -> None:
        if self.store is None:
            raise RuntimeError("No key store configured")
        self.store.remove(STORE_KEY)
        logger.info("Cleared user API key")
