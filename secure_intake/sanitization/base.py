from abc import ABC, abstractmethod


class BaseMarkupSanitizer(ABC):
    """Contract for all markup sanitizer adapters."""

    @abstractmethod
    def sanitize(self, data: bytes) -> bytes:
        """Rebuild markup bytes from an allow-listed subset.

        Args:
            data: Raw markup file content.

        Returns:
            Sanitized markup, UTF-8 encoded.

        Raises:
            SanitizationFailed: if the content cannot be safely rebuilt. No
                partial output is ever returned.
        """
