from typing import Final

SVG_CONTENT_TYPE: Final = "image/svg+xml"

# Verified content type -> stored file extension. This table is the only
# source of extensions for stored names.
EXTENSIONS: Final[dict[str, str]] = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    SVG_CONTENT_TYPE: "svg",
}

MARKUP_TYPES: Final[frozenset[str]] = frozenset({SVG_CONTENT_TYPE})

# Sniffed types that are variants of an allowed format.
SNIFFED_ALIASES: Final[dict[str, str]] = {
    "image/apng": "image/png",
}

# Non-canonical spellings seen in declared Content-Type headers.
CONTENT_TYPE_ALIASES: Final[dict[str, str]] = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "image/x-png": "image/png",
    "image/svg": SVG_CONTENT_TYPE,
}


def normalize_content_type(value: str | None) -> str:
    """Lower-case a declared content type and drop parameters such as charset."""
    if not value:
        return ""
    base = value.split(";", 1)[0].strip().lower()
    return CONTENT_TYPE_ALIASES.get(base, base)
