from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Protocol

from ..errors import FatalError, PublishFatal
from ..models import PublishedRecord
from ..output.storage import StorageAuthError, StorageError, SupabaseStorageClient
from ..utils.logging import get_logger

logger = get_logger("digest.processors.dedup")

MANIFEST_VERSION = 1


class ManifestStore(Protocol):
    """Where the manifest of published identifiers lives between runs."""

    def read(self) -> Optional[bytes]: ...

    def write(self, data: bytes) -> None: ...


class LocalManifestStore:
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def read(self) -> Optional[bytes]:
        if not self.path.exists():
            return None
        return self.path.read_bytes()

    def write(self, data: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(self.path)

    def __repr__(self) -> str:
        return f"LocalManifestStore({str(self.path)!r})"


class BucketManifestStore:
    def __init__(self, storage: SupabaseStorageClient, path: str = "manifest/published.json") -> None:
        self.storage = storage
        self.path = path

    def read(self) -> Optional[bytes]:
        return self.storage.download(self.path)

    def write(self, data: bytes) -> None:
        self.storage.upload(self.path, data, "application/json")

    def __repr__(self) -> str:
        return f"BucketManifestStore({self.storage.bucket}/{self.path})"


class Deduplicator:
    """Tracks which identifiers were already published.

    ``is_new`` checks and claims an identifier in one step under a lock, so
    two workers can never both start on the same item. Claims live only for
    the current run; only published records are written back by ``save``.
    """

    def __init__(self, store: ManifestStore) -> None:
        self.store = store
        self._lock = threading.Lock()
        self._published: Dict[str, PublishedRecord] = {}
        self._claimed: set[str] = set()
        self._dirty = False

    # ---------------- Persistence -----------------
    def load(self) -> None:
        try:
            raw = self.store.read()
        except StorageAuthError as exc:
            raise PublishFatal(f"cannot read dedup manifest: {exc}") from exc
        except (StorageError, OSError) as exc:
            raise FatalError(f"cannot read dedup manifest from {self.store!r}: {exc}") from exc

        published: Dict[str, PublishedRecord] = {}
        if raw:
            try:
                data = json.loads(raw.decode("utf-8"))
                for row in data.get("published", []):
                    record = PublishedRecord.from_dict(row)
                    published[record.identifier] = record
            except (ValueError, KeyError, TypeError, AttributeError) as exc:
                # republishing overwrites the same paths, so starting over is safe
                logger.error("Ignoring unreadable dedup manifest %r: %s", self.store, exc)
                published = {}
        with self._lock:
            self._published = published
            self._claimed = set()
            self._dirty = False
        logger.info("Loaded dedup manifest with %d published identifiers", len(published))

    def save(self) -> None:
        with self._lock:
            if not self._dirty:
                logger.debug("Dedup manifest unchanged; not saving")
                return
            rows = [r.to_dict() for r in sorted(self._published.values(), key=lambda r: r.identifier)]
        payload = {"version": MANIFEST_VERSION, "published": rows}
        try:
            self.store.write(json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8"))
        except StorageAuthError as exc:
            raise PublishFatal(f"cannot write dedup manifest: {exc}") from exc
        except (StorageError, OSError) as exc:
            raise FatalError(f"cannot write dedup manifest to {self.store!r}: {exc}") from exc
        with self._lock:
            self._dirty = False
        logger.info("Saved dedup manifest with %d published identifiers", len(rows))

    # ---------------- Public API -----------------
    def is_new(self, identifier: str) -> bool:
        with self._lock:
            if identifier in self._published or identifier in self._claimed:
                return False
            self._claimed.add(identifier)
            return True

    def record_published(self, record: PublishedRecord) -> None:
        with self._lock:
            self._published[record.identifier] = record
            self._dirty = True

    @property
    def seen(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._published)

    def records(self) -> List[PublishedRecord]:
        with self._lock:
            return list(self._published.values())
