import re
import time
import uuid

from secure_intake.classification.formats import EXTENSIONS
from secure_intake.pipeline.exceptions import NameOrPathError

STAGING_EXTENSION = "part"

_SAFE_NAME = re.compile(r"[A-Za-z0-9-]+(\.[A-Za-z0-9]+)?")


def is_safe_name(name: str) -> bool:
    """Alphanumerics and hyphens, with at most one dot before the extension."""
    return bool(_SAFE_NAME.fullmatch(name)) and ".." not in name


class NameGenerator:
    """Builds storage names from a timestamp and a random UUID.

    Names never contain anything supplied by the uploader: the extension is
    looked up from the verified content type only.
    """

    def new_stem(self) -> str:
        """Return ``<epoch-millis>-<uuid4>`` (122 random bits)."""
        return f"{time.time_ns() // 1_000_000}-{uuid.uuid4()}"

    def staging_name(self, stem: str) -> str:
        return self._checked(f"{stem}.{STAGING_EXTENSION}")

    def generate(self, content_type: str, stem: str | None = None) -> str:
        """Return the stored name for a verified content type.

        Raises:
            NameOrPathError: if ``content_type`` has no registered extension.
        """
        extension = EXTENSIONS.get(content_type)
        if extension is None:
            raise NameOrPathError(f"no extension registered for {content_type!r}")
        return self._checked(f"{stem or self.new_stem()}.{extension}")

    def _checked(self, name: str) -> str:
        if not is_safe_name(name):
            raise NameOrPathError(f"generated name failed validation: {name!r}")
        return name
