"""Domain services built on the backend clients."""

from helpdesk_core.services.attachments import (
    AttachmentUploader,
    FailedUpload,
    FileUpload,
    UploadReport,
    build_storage_path,
    format_file_size,
    validate_upload,
)

__all__ = [
    "AttachmentUploader",
    "FailedUpload",
    "FileUpload",
    "UploadReport",
    "build_storage_path",
    "format_file_size",
    "validate_upload",
]
