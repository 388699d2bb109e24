"""Attachment upload for replies and cases.

Uploading N files is one user action but N independent storage uploads plus
N record inserts. Each file succeeds or fails on its own; the caller gets an
itemized report and already-stored files are never retried or discarded.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence

from helpdesk_core.config import DEFAULT_ALLOWED_CONTENT_TYPES
from helpdesk_core.models import Attachment
from helpdesk_core.utils import RetryPolicy

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class FileUpload:
    """A file selected by the user"""

    file_name: str
    data: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class FailedUpload:
    """One file that did not make it; ``stored_path`` is set when the object
    reached storage but its record could not be written."""

    file_name: str
    error: str
    stored_path: Optional[str] = None


@dataclass
class UploadReport:
    succeeded: List[Attachment] = field(default_factory=list)
    failed: List[FailedUpload] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    @property
    def is_partial(self) -> bool:
        return bool(self.succeeded) and bool(self.failed)


def validate_upload(
    upload: FileUpload,
    max_bytes: int = MAX_UPLOAD_BYTES,
    allowed_types: Sequence[str] = DEFAULT_ALLOWED_CONTENT_TYPES,
) -> Optional[str]:
    """Return a user-facing error message, or None if the file is acceptable."""
    if upload.size > max_bytes:
        return f"File size must be less than {max_bytes // (1024 * 1024)}MB"
    if upload.content_type not in allowed_types:
        return "File type not supported"
    return None


def build_storage_path(
    owner_id: str, case_id: str, scope: str, file_name: str, timestamp_ms: int
) -> str:
    """``{ownerId}/{caseId}/{reply|case}/{timestamp}-{filename}``"""
    if scope not in ("reply", "case"):
        raise ValueError(f"Invalid attachment scope: {scope}")
    safe_name = file_name.replace("/", "_").replace("\\", "_")
    return f"{owner_id}/{case_id}/{scope}/{timestamp_ms}-{safe_name}"


class AttachmentUploader:
    """Stores files in object storage and records them in ``case_attachments``.

    Args:
        storage: ``StorageClient`` for the attachments bucket
        records: ``ThreadDataClient`` (or anything with ``create_attachment``)
        retry_policy: Applied to each upload and each insert separately
    """

    def __init__(
        self,
        storage,
        records,
        retry_policy: Optional[RetryPolicy] = None,
        max_bytes: int = MAX_UPLOAD_BYTES,
        allowed_types: Sequence[str] = DEFAULT_ALLOWED_CONTENT_TYPES,
        signed_url_ttl: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.records = records
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_bytes = max_bytes
        self.allowed_types = list(allowed_types)
        self.signed_url_ttl = signed_url_ttl
        self._clock = clock

    async def _upload_one(
        self, upload: FileUpload, owner_id: str, case_id: str, reply_id: Optional[str]
    ) -> Attachment:
        problem = validate_upload(upload, self.max_bytes, self.allowed_types)
        if problem:
            raise ValueError(problem)

        scope = "reply" if reply_id else "case"
        path = build_storage_path(owner_id, case_id, scope, upload.file_name, int(self._clock() * 1000))
        stored_path = await self.retry_policy.call(
            self.storage.upload, path, upload.data, upload.content_type
        )

        try:
            return await self.retry_policy.call(
                self.records.create_attachment,
                case_id=case_id,
                reply_id=reply_id,
                file_name=upload.file_name,
                file_path=stored_path,
                content_type=upload.content_type,
                size=upload.size,
                created_by=owner_id,
            )
        except Exception as e:
            raise _RecordFailed(stored_path, e) from e

    async def upload_all(
        self,
        files: Iterable[FileUpload],
        owner_id: str,
        case_id: str,
        reply_id: Optional[str] = None,
    ) -> UploadReport:
        """Upload every file concurrently and report per-file outcomes."""
        files = list(files)
        results = await asyncio.gather(
            *(self._upload_one(f, owner_id, case_id, reply_id) for f in files),
            return_exceptions=True,
        )

        report = UploadReport()
        for upload, result in zip(files, results):
            if isinstance(result, Attachment):
                report.succeeded.append(result)
            elif isinstance(result, _RecordFailed):
                logger.error(
                    f"Attachment {upload.file_name} stored at {result.stored_path} "
                    f"but not recorded: {result.cause}"
                )
                report.failed.append(
                    FailedUpload(upload.file_name, str(result.cause), stored_path=result.stored_path)
                )
            elif isinstance(result, Exception):
                logger.warning(f"Attachment {upload.file_name} failed: {result!r}")
                report.failed.append(FailedUpload(upload.file_name, str(result)))
            else:
                raise result

        if files:
            logger.info(
                f"Uploaded {len(report.succeeded)}/{report.total} attachment(s) for case {case_id}"
            )
        return report

    async def signed_url(self, path: str, expires_in: Optional[int] = None) -> str:
        return await self.storage.create_signed_url(path, expires_in or self.signed_url_ttl)

    def public_url(self, path: str) -> str:
        return self.storage.public_url(path)


class _RecordFailed(Exception):
    def __init__(self, stored_path: str, cause: BaseException):
        super().__init__(str(cause))
        self.stored_path = stored_path
        self.cause = cause


def format_file_size(size: int) -> str:
    """Human readable size: "0 Bytes", "512 Bytes", "1.5 KB", "2 MB"."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"
