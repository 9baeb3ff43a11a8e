from __future__ import annotations

import json
import logging
import os
import uuid
from contextlib import suppress
from pathlib import Path
from typing import Protocol

from storefront.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class StorageKeys:
    auth_token = "storefront.auth_token"
    user = "storefront.user"
    guest_cart = "storefront.guest_cart"
    guest_wishlist = "storefront.guest_wishlist"
    checkout = "storefront.checkout"


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store; state ends with the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class FileStore:
    """Durable store backed by one JSON document.

    The file is re-read on every access so several clients sharing a path see
    each other's writes (last write wins per key). If the file cannot be read or
    written the store keeps working from memory and stops touching the disk.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._cache: dict[str, str] = {}
        self._degraded = False

    @property
    def degraded(self) -> bool:
        return self._degraded

    def _degrade(self, exc: OSError) -> None:
        self._degraded = True
        logger.warning("storage_unavailable", extra={"path": str(self.path), "error": str(exc)})

    def _read(self) -> dict[str, str]:
        if self._degraded:
            return self._cache
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self._cache = {}
            return self._cache
        except OSError as exc:
            self._degrade(exc)
            return self._cache
        try:
            parsed = json.loads(raw) if raw.strip() else {}
        except ValueError:
            logger.warning("storage_file_corrupt", extra={"path": str(self.path)})
            parsed = {}
        if not isinstance(parsed, dict):
            parsed = {}
        self._cache = {str(key): value for key, value in parsed.items() if isinstance(value, str)}
        return self._cache

    def _write(self, data: dict[str, str]) -> None:
        self._cache = data
        if self._degraded:
            return
        tmp = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            with suppress(OSError):
                tmp.unlink(missing_ok=True)
            self._degrade(exc)

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = dict(self._read())
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = dict(self._read())
        if key not in data:
            return
        data.pop(key)
        self._write(data)


def open_store(config: Settings | None = None) -> KeyValueStore:
    config = config or default_settings
    path = (config.storage_path or "").strip()
    if path:
        return FileStore(Path(path).expanduser())
    return MemoryStore()


def read_json(store: KeyValueStore, key: str) -> object | None:
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("storage_value_corrupt", extra={"key": key})
        return None


def write_json(store: KeyValueStore, key: str, value: object) -> None:
    store.set(key, json.dumps(value, separators=(",", ":"), ensure_ascii=False))
