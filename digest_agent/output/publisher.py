from __future__ import annotations

import hashlib
import threading
from datetime import date
from typing import Optional, Sequence

from ..errors import PublishFailed, PublishFatal
from ..models import PublishedRecord, SourceKind, SummaryArtifact, utcnow
from ..utils.logging import get_logger
from .markdown import format_digest, format_digest_title
from .storage import StorageAuthError, StorageError, SupabaseStorageClient

logger = get_logger("digest.output.publisher")

DOCUMENT_CONTENT_TYPE = "text/markdown; charset=utf-8"


def document_path(kind: SourceKind, identifier: str) -> str:
    """Storage path of an item's document; the same identifier always maps to the same path."""
    digest = hashlib.sha256(identifier.encode("utf-8")).hexdigest()[:20]
    return f"{kind.value}/{digest}.md"


def digest_path(kind: SourceKind, day: date) -> str:
    return f"digests/{day.isoformat()}/{kind.value}.md"


class StoragePublisher:
    """Upload finished documents to the bucket.

    Uploads share a process-wide semaphore of ``max_concurrent`` slots and
    are tried ``max_attempts`` times with a fixed delay. Rejected credentials
    raise ``PublishFatal`` immediately.
    """

    def __init__(
        self,
        storage: SupabaseStorageClient,
        *,
        max_concurrent: int = 4,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.storage = storage
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        # wakes retry delays early; an attempt that already started still finishes
        self.cancel = cancel or threading.Event()
        self._slots = threading.BoundedSemaphore(max_concurrent)

    def max_upload_seconds(self) -> float:
        """Longest one document upload can take across all its attempts."""
        return self.max_attempts * (self.storage.timeout + self.retry_delay)

    def _upload(self, path: str, body: str) -> str:
        last_error: Optional[StorageError] = None
        for attempt in range(self.max_attempts):
            try:
                with self._slots:
                    return self.storage.upload(path, body.encode("utf-8"), DOCUMENT_CONTENT_TYPE)
            except StorageAuthError as exc:
                raise PublishFatal(f"storage rejected credentials: {exc}") from exc
            except StorageError as exc:
                last_error = exc
                if attempt + 1 >= self.max_attempts:
                    break
                logger.warning(
                    "Upload of %s failed (attempt %s/%s): %s; retrying in %.1fs",
                    path,
                    attempt + 1,
                    self.max_attempts,
                    exc,
                    self.retry_delay,
                )
                if self.cancel.wait(self.retry_delay):
                    break
        raise PublishFailed(f"upload of {path} failed: {last_error}")

    def publish(self, artifact: SummaryArtifact) -> PublishedRecord:
        path = document_path(artifact.kind, artifact.identifier)
        public_url = self._upload(path, artifact.body)
        logger.info("Published %s to %s", artifact.identifier, path)
        return PublishedRecord(
            identifier=artifact.identifier,
            kind=artifact.kind,
            title=artifact.title,
            path=path,
            public_url=public_url,
            published_at=utcnow(),
        )

    def publish_digest(
        self, kind: SourceKind, records: Sequence[PublishedRecord], day: Optional[date] = None
    ) -> Optional[str]:
        """Write the daily index for ``kind``; returns its path, or None when nothing was published."""
        if not records:
            return None
        day = day or utcnow().date()
        path = digest_path(kind, day)
        self._upload(path, format_digest(kind, records, day))
        logger.info("Published %s (%d entries)", format_digest_title(kind, day), len(records))
        return path
