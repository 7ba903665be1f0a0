from dataclasses import dataclass

from secure_intake.classification.formats import MARKUP_TYPES


@dataclass(frozen=True, slots=True)
class ClassificationVerdict:
    """Content type derived from the bytes themselves, never from the caller."""

    sniffed_content_type: str | None
    allowed: bool

    @property
    def is_markup(self) -> bool:
        return self.allowed and self.sniffed_content_type in MARKUP_TYPES
