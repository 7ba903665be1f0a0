import re
from pathlib import Path

import filetype

from secure_intake.classification.formats import EXTENSIONS, SNIFFED_ALIASES, SVG_CONTENT_TYPE
from secure_intake.classification.models import ClassificationVerdict
from secure_intake.logging.logger import Log

DEFAULT_SNIFF_BYTES = 8 * 1024

_UTF8_BOM = b"\xef\xbb\xbf"

# Optional XML declaration, then comments or an SVG doctype without an
# internal subset, then the <svg> root element.
_SVG_HEADER = re.compile(
    r"\A\s*(?:<\?xml[^>]*\?>\s*)?"
    r"(?:(?:<!--.*?-->|<!DOCTYPE\s+svg[^>\[]*>)\s*)*"
    r"<svg[\s/>]",
    re.IGNORECASE | re.DOTALL,
)


class ContentClassifier:
    """Determines the true content type of an upload from its leading bytes.

    Binary formats are matched by magic number through ``filetype``. SVG has no
    binary signature, so it is recognized by the shape of its textual header.
    The caller's declared content type is never consulted here.

    Only the first ``sniff_bytes`` are inspected, so an SVG whose root element
    sits behind a longer XML declaration or leading comments is rejected.
    """

    def __init__(self, sniff_bytes: int = DEFAULT_SNIFF_BYTES) -> None:
        self._sniff_bytes = sniff_bytes

    def classify(self, data: bytes) -> ClassificationVerdict:
        """Classify a byte prefix. Malformed input yields ``allowed=False``."""
        prefix = bytes(data[: self._sniff_bytes])
        if not prefix:
            return ClassificationVerdict(sniffed_content_type=None, allowed=False)

        sniffed = self._match_signature(prefix)
        if sniffed in EXTENSIONS:
            return ClassificationVerdict(sniffed_content_type=sniffed, allowed=True)

        if self._looks_like_svg(prefix):
            return ClassificationVerdict(sniffed_content_type=SVG_CONTENT_TYPE, allowed=True)

        return ClassificationVerdict(sniffed_content_type=sniffed, allowed=False)

    def classify_file(self, path: Path) -> ClassificationVerdict:
        """Classify a staged file. Read errors propagate as ``OSError``."""
        with path.open("rb") as fh:
            prefix = fh.read(self._sniff_bytes)
        return self.classify(prefix)

    def _match_signature(self, prefix: bytes) -> str | None:
        try:
            kind = filetype.guess(prefix)
        except Exception as exc:
            Log.debug(f"Signature matching failed: {exc}")
            return None
        if kind is None:
            return None
        return SNIFFED_ALIASES.get(kind.mime, kind.mime)

    def _looks_like_svg(self, prefix: bytes) -> bool:
        if b"\x00" in prefix:
            return False
        if prefix.startswith(_UTF8_BOM):
            prefix = prefix[len(_UTF8_BOM):]
        text = prefix.decode("utf-8", errors="replace")
        return _SVG_HEADER.match(text) is not None
