from typing import ClassVar


class IntakeError(Exception):
    """Base exception for all intake pipeline faults.

    ``public_message`` is safe to show to the uploader; ``str(exc)`` may carry
    internal detail and is meant for logs only.
    """

    code: ClassVar[str] = "intake_error"
    default_public_message: ClassVar[str] = "The upload could not be processed"
    server_fault: ClassVar[bool] = False

    def __init__(self, message: str = "", public_message: str | None = None) -> None:
        super().__init__(message or self.default_public_message)
        self.public_message = public_message or self.default_public_message


class SizeError(IntakeError):
    """Raised when the declared or actual size is outside the allowed bounds."""

    code = "size_rejected"
    default_public_message = "File size is outside the allowed range"


class TypeRejected(IntakeError):
    """Raised when the sniffed content type is not on the allow-list."""

    code = "type_rejected"
    default_public_message = "File type is not allowed"


class NameOrPathError(IntakeError):
    """Raised when an internal name or containment check fails."""

    code = "storage_misconfigured"
    default_public_message = "The upload could not be stored"
    server_fault = True


class PathConfigurationError(NameOrPathError):
    """Raised when a storage directory resolves outside the storage root."""


class SanitizationFailed(IntakeError):
    """Raised when markup content cannot be safely rewritten."""

    code = "sanitization_failed"
    default_public_message = "The file contains markup that could not be sanitized"


class IngestionFailed(IntakeError):
    """Raised on unexpected I/O or filesystem faults."""

    code = "ingestion_failed"
    default_public_message = "The upload failed, please try again"
    server_fault = True
