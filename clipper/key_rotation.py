"""
Key rotation - round-robin API key selection per upstream service.

Features:
- Round-robin rotation: each service keeps its own cursor
- File-based storage: keys are loaded from <keys_dir>/<service>-keys.txt
- Environment fallback: a single-key pool from <SERVICE>_API_KEY
- Memoized loading: a pool is read once, clear_cache() forces a reload

Thread safety:
- The cursor read-and-advance is one locked step (RotationCursor.advance),
  so concurrent callers never receive the same slot or skip one.
- Pool loading is serialized so a service is read from disk at most once
  per cache generation.

Usage:
    from clipper.key_rotation import key_rotation

    deepgram_key = key_rotation.get_next("deepgram")
    gemini_key = key_rotation.get_next("gemini")
"""

import logging
import os
import threading
from pathlib import Path
from typing import Optional

from clipper.errors import ConfigError, NoCredentialsAvailable

logger = logging.getLogger(__name__)


# Service name -> key file name
KEY_FILES = {
    "deepgram": "deepgram-keys.txt",
    "gemini": "gemini-keys.txt",
    "github": "github-keys.txt",
}

# Service name -> environment variable fallback
ENV_VARS = {
    "deepgram": "DEEPGRAM_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "github": "GH_PAT",
}


def key_file_name(service: str) -> str:
    return KEY_FILES.get(service, f"{service}-keys.txt")


def env_var_name(service: str) -> str:
    return ENV_VARS.get(service, f"{service.upper().replace('-', '_')}_API_KEY")


def parse_key_lines(content: str) -> list[str]:
    """Split a key file into keys, skipping blank and '#' comment lines."""
    keys = []
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        keys.append(line)
    return keys


class RotationCursor:
    """
    Atomic round-robin cursor.

    Invariant: 0 <= position < size of the pool it was last advanced over.
    """

    def __init__(self):
        self._position = 0
        self._lock = threading.Lock()

    def advance(self, size: int) -> int:
        """Return the current slot and move to the next one, as one step."""
        if size < 1:
            raise ValueError("size must be >= 1")
        with self._lock:
            index = self._position % size
            self._position = (index + 1) % size
            return index

    def peek(self) -> int:
        with self._lock:
            return self._position

    def reset(self) -> None:
        with self._lock:
            self._position = 0


class KeyRotation:
    """
    Manages round-robin API key rotation per service.

    Example:
        >>> rotation = KeyRotation(keys_dir=Path("/etc/clipper/keys"))
        >>> rotation.get_next("deepgram")  # key at index 0
        >>> rotation.get_next("deepgram")  # key at index 1 (or wraps to 0)
    """

    def __init__(self, keys_dir: Optional[Path] = None):
        self._keys_dir = Path(keys_dir) if keys_dir is not None else None
        self._cursors: dict[str, RotationCursor] = {}
        self._cache: dict[str, tuple[str, ...]] = {}
        self._lock = threading.Lock()

    @property
    def keys_dir(self) -> Path:
        if self._keys_dir is None:
            from clipper.config import get_clipper_home
            return get_clipper_home() / "keys"
        return self._keys_dir

    @keys_dir.setter
    def keys_dir(self, value: Path) -> None:
        with self._lock:
            self._keys_dir = Path(value)
            self._cache.clear()

    def get_next(self, service: str) -> str:
        """
        Get the next API key for a service using round-robin rotation.

        Raises:
            NoCredentialsAvailable: If neither a key file nor the env var provides a key
        """
        keys = self._load(service)
        if not keys:
            raise NoCredentialsAvailable(
                service,
                f"No API keys available for service: {service}. "
                f"Either add keys to {key_file_name(service)} or set "
                f"{env_var_name(service)} environment variable.",
            )
        index = self._cursor(service).advance(len(keys))
        return keys[index]

    def get_all(self, service: str) -> list[str]:
        """All keys for a service, without advancing the rotation."""
        return list(self._load(service))

    def get_count(self, service: str) -> int:
        return len(self._load(service))

    def has(self, service: str) -> bool:
        return self.get_count(service) > 0

    def reset_rotation(self, service: str) -> None:
        """Move a service's cursor back to the first key."""
        self._cursor(service).reset()

    def clear_cache(self, service: Optional[str] = None) -> None:
        """Forget loaded keys so the next access re-reads the source."""
        with self._lock:
            if service is None:
                self._cache.clear()
            else:
                self._cache.pop(service, None)

    def _cursor(self, service: str) -> RotationCursor:
        with self._lock:
            cursor = self._cursors.get(service)
            if cursor is None:
                cursor = RotationCursor()
                self._cursors[service] = cursor
            return cursor

    def _load(self, service: str) -> tuple[str, ...]:
        with self._lock:
            cached = self._cache.get(service)
            if cached is not None:
                return cached
            keys = self._read_source(service)
            self._cache[service] = keys
            return keys

    def _read_source(self, service: str) -> tuple[str, ...]:
        key_file = self.keys_dir / key_file_name(service)
        keys: list[str] = []

        if key_file.exists():
            try:
                keys = parse_key_lines(key_file.read_text(encoding="utf-8"))
            except OSError as e:
                raise ConfigError(f"Failed to read key file: {key_file}. Error: {e}")
            logger.debug(f"Loaded {len(keys)} key(s) for {service} from {key_file}")

        if not keys:
            env_value = os.environ.get(env_var_name(service), "").strip()
            if env_value:
                keys = [env_value]
                logger.debug(f"Using {env_var_name(service)} for {service}")

        return tuple(keys)


# Singleton instance for convenient access
key_rotation = KeyRotation()
