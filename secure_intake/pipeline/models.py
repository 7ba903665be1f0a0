import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO

MAX_ORIGINAL_NAME_LENGTH = 255


class IntakeState(str, Enum):
    RECEIVED = "received"
    STAGED = "staged"
    CLASSIFIED = "classified"
    SANITIZING = "sanitizing"
    FINALIZED = "finalized"
    REJECTED = "rejected"


@dataclass(frozen=True)
class UploadRequest:
    """One untrusted upload. Every field except ``stream`` is advisory."""

    stream: BinaryIO | Iterable[bytes]
    declared_content_type: str = ""
    declared_filename: str = ""
    declared_size: int | None = None
    owner_token: str | None = None


@dataclass(frozen=True)
class StagedFile:
    """Bytes written to disk but not yet trusted."""

    path: Path
    byte_length: int
    declared_content_type: str


@dataclass(frozen=True)
class FinalizedAsset:
    """Descriptor of a stored, servable upload."""

    stored_name: str
    public_path: str
    byte_size: int
    content_type: str
    original_name: str
    download_url: str

    def to_response(self) -> dict[str, object]:
        """Field names used by the upload endpoint's JSON body."""
        return {
            "fileName": self.public_path,
            "originalName": self.original_name,
            "size": self.byte_size,
            "mimetype": self.content_type,
            "downloadUrl": self.download_url,
        }


def display_label(declared_filename: str) -> str:
    """Make a caller filename safe to show. Never used to build a path."""
    cleaned = "".join(
        ch for ch in declared_filename if unicodedata.category(ch)[0] != "C"
    )
    return cleaned.strip()[:MAX_ORIGINAL_NAME_LENGTH]
