from secure_intake.classification.formats import SVG_CONTENT_TYPE
from secure_intake.config.settings import Settings
from secure_intake.sanitization.base import BaseMarkupSanitizer
from secure_intake.sanitization.svg_sanitizer import SvgSanitizer


class SanitizerFactory:
    """Creates the sanitizer for each markup-bearing content type."""

    ADAPTERS: dict[str, type[SvgSanitizer]] = {
        SVG_CONTENT_TYPE: SvgSanitizer,
    }

    @classmethod
    def for_content_type(cls, content_type: str, settings: Settings) -> BaseMarkupSanitizer:
        adapter_cls = cls.ADAPTERS.get(content_type)
        if adapter_cls is None:
            raise ValueError(
                f"No sanitizer for '{content_type}'. Choose from: {list(cls.ADAPTERS)}"
            )
        return adapter_cls(
            timeout_seconds=settings.sanitizer_timeout_seconds,
            max_nodes=settings.sanitizer_max_nodes,
            max_depth=settings.sanitizer_max_depth,
        )

    @classmethod
    def create_all(cls, settings: Settings) -> dict[str, BaseMarkupSanitizer]:
        """Build one configured sanitizer per supported markup type."""
        return {
            content_type: cls.for_content_type(content_type, settings)
            for content_type in cls.ADAPTERS
        }
