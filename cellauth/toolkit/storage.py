"""
Client-side key/value storage.

`FileStorage` is durable: it outlives the process, like a browser's local
storage, and holds the session id. `VolatileStorage` is scoped to one client
instance (one "tab") and holds CSRF state tokens; entries also lapse after a
while so an abandoned redirect does not leave a usable token behind.
"""

import abc
import json
from datetime import timedelta
from pathlib import Path

from cachetools import TTLCache


class Storage(abc.ABC):
    @abc.abstractmethod
    def get(self, key: str) -> str | None:
        raise NotImplementedError

    @abc.abstractmethod
    def set(self, key: str, value: str):
        raise NotImplementedError

    @abc.abstractmethod
    def delete(self, key: str):
        raise NotImplementedError


class FileStorage(Storage):
    """
    A JSON document on disk, readable only by the current user.
    """

    filename: Path

    def __init__(self, filename: Path | None = None):
        if filename is None:
            filename = Path.home() / ".config/cellauth/storage.json"

        self.filename = filename

    def _read(self) -> dict[str, str]:
        if not self.filename.exists():
            return {}

        with open(self.filename, "r") as handle:
            return json.load(handle)

    def _write(self, content: dict[str, str]):
        self.filename.parent.mkdir(exist_ok=True, parents=True)

        with open(self.filename, "w") as handle:
            json.dump(content, handle)

        self.filename.chmod(0o600)

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str):
        content = self._read()
        content[key] = value
        self._write(content)

    def delete(self, key: str):
        content = self._read()

        if content.pop(key, None) is not None:
            self._write(content)


class VolatileStorage(Storage):
    """
    In-memory storage that lives as long as this object, with entries that
    expire after `lifetime`.
    """

    def __init__(
        self, lifetime: timedelta = timedelta(minutes=15), maxsize: int = 128
    ):
        self._cache = TTLCache(maxsize=maxsize, ttl=lifetime.total_seconds())

    def get(self, key: str) -> str | None:
        return self._cache.get(key)

    def set(self, key: str, value: str):
        self._cache[key] = value

    def delete(self, key: str):
        self._cache.pop(key, None)
