import html
import re
import time

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from secure_intake.pipeline.exceptions import SanitizationFailed
from secure_intake.sanitization.base import BaseMarkupSanitizer

SVG_NAMESPACE = "http://www.w3.org/2000/svg"

_PRESENTATION = ("fill", "fill-rule", "stroke", "stroke-width", "opacity", "transform")

# Element -> attributes that survive. html.parser lower-cases every name, so
# the canonical (camelCase) spelling is restored from these tuples on output.
ALLOWED_ELEMENTS: dict[str, tuple[str, ...]] = {
    "svg": ("width", "height", "viewBox", "xmlns", "version", "preserveAspectRatio", "fill"),
    "g": _PRESENTATION,
    "path": ("d", *_PRESENTATION),
    "circle": ("cx", "cy", "r", *_PRESENTATION),
    "ellipse": ("cx", "cy", "rx", "ry", *_PRESENTATION),
    "rect": ("x", "y", "width", "height", "rx", "ry", *_PRESENTATION),
    "line": ("x1", "y1", "x2", "y2", *_PRESENTATION),
    "polyline": ("points", *_PRESENTATION),
    "polygon": ("points", *_PRESENTATION),
    "title": (),
    "desc": (),
}

# Dropped together with everything inside them.
EXECUTABLE_ELEMENTS: frozenset[str] = frozenset({
    "script",
    "style",
    "iframe",
    "frame",
    "frameset",
    "object",
    "embed",
    "applet",
    "foreignobject",
    "handler",
    "listener",
    "animate",
    "animatemotion",
    "animatetransform",
    "set",
    "use",
    "image",
    "a",
    "base",
    "link",
    "meta",
    "template",
})

_UNSAFE_VALUE = re.compile(r"javascript:|vbscript:|data:|expression\(|url\(|@import")
_IGNORED_IN_VALUES = re.compile(r"[\s\x00-\x1f]+")

_UTF8_BOM = "\ufeff"

# Characters XML 1.0 does not allow anywhere in a document.
_XML_ILLEGAL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")


def _canonical_attributes() -> dict[str, dict[str, str]]:
    return {
        element: {name.lower(): name for name in names}
        for element, names in ALLOWED_ELEMENTS.items()
    }


class SvgSanitizer(BaseMarkupSanitizer):
    """Rebuilds SVG documents from an element and attribute allow-list.

    The input is parsed permissively with BeautifulSoup and a new document is
    written from scratch. Nothing from the source is copied through verbatim:
    text is re-escaped and only allow-listed attributes with inert values are
    emitted. Elements that can execute or load content are discarded with
    their whole subtree; any other unknown element is unwrapped.
    """

    def __init__(
        self,
        timeout_seconds: float = 2.0,
        max_nodes: int = 50_000,
        max_depth: int = 128,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._max_nodes = max_nodes
        self._max_depth = max_depth
        self._attributes = _canonical_attributes()

    def sanitize(self, data: bytes) -> bytes:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SanitizationFailed(f"markup is not valid UTF-8: {exc}") from exc
        text = text.removeprefix(_UTF8_BOM)

        deadline = time.monotonic() + self._timeout_seconds
        self._prescan(text, deadline)
        try:
            soup = BeautifulSoup(text, "html.parser", multi_valued_attributes=None)
        except Exception as exc:
            raise SanitizationFailed(f"markup could not be parsed: {exc}") from exc

        root = next((node for node in soup.contents if isinstance(node, Tag)), None)
        if root is None or root.name != "svg":
            raise SanitizationFailed("markup has no <svg> root element")

        walk = _Walk(
            deadline=deadline,
            max_nodes=self._max_nodes,
            max_depth=self._max_depth,
        )
        parts: list[str] = []
        self._emit_element(root, parts, walk, depth=1)
        output = "".join(parts)
        self._verify(output)
        return output.encode("utf-8")

    def _prescan(self, text: str, deadline: float) -> None:
        """Bound the parser's work before handing it the document.

        Every ``<`` and ``&`` becomes at least one parser event, so their count
        is held to the node budget. Each tag, comment or CDATA section must
        also be closed before the next one opens; html.parser re-scans
        unterminated constructs and would otherwise run in quadratic time.
        """
        if text.count("<") + text.count("&") > self._max_nodes:
            raise SanitizationFailed(f"markup exceeds {self._max_nodes} nodes")

        start = text.find("<")
        while start != -1:
            if text.startswith("<!--", start):
                closer = "-->"
            elif text.startswith("<![CDATA[", start):
                closer = "]]>"
            else:
                closer = ">"
            end = text.find(closer, start + 1)
            if end == -1 or (closer == ">" and text.find("<", start + 1, end) != -1):
                raise SanitizationFailed(f"markup has an unterminated tag at offset {start}")
            start = text.find("<", end + len(closer))
            if time.monotonic() > deadline:
                raise SanitizationFailed("markup sanitization timed out")

    def _emit_element(self, tag: Tag, parts: list[str], walk: "_Walk", depth: int) -> None:
        walk.step(depth)
        name = tag.name
        # prefixed names such as svg:script are judged by their local part
        if name.rsplit(":", 1)[-1] in EXECUTABLE_ELEMENTS:
            return
        allowed = self._attributes.get(name)
        if allowed is None:
            self._emit_children(tag, parts, walk, depth)
            return

        attributes = "".join(
            f' {canonical}="{html.escape(value, quote=True)}"'
            for canonical, value in self._safe_attributes(tag, allowed)
        )
        children: list[str] = []
        self._emit_children(tag, children, walk, depth)
        if children:
            parts.append(f"<{name}{attributes}>")
            parts.extend(children)
            parts.append(f"</{name}>")
        else:
            parts.append(f"<{name}{attributes}/>")

    def _emit_children(self, tag: Tag, parts: list[str], walk: "_Walk", depth: int) -> None:
        for child in tag.children:
            if isinstance(child, Tag):
                self._emit_element(child, parts, walk, depth + 1)
            elif isinstance(child, NavigableString) and not isinstance(child, PreformattedString):
                walk.step(depth)
                text = _XML_ILLEGAL.sub("", child)
                if text:
                    parts.append(html.escape(text, quote=False))

    def _safe_attributes(self, tag: Tag, allowed: dict[str, str]) -> list[tuple[str, str]]:
        kept: list[tuple[str, str]] = []
        for raw_name, raw_value in tag.attrs.items():
            canonical = allowed.get(raw_name.lower())
            if canonical is None:
                continue
            value = raw_value if isinstance(raw_value, str) else " ".join(raw_value)
            if canonical == "xmlns" and value != SVG_NAMESPACE:
                continue
            if _UNSAFE_VALUE.search(_IGNORED_IN_VALUES.sub("", value).lower()):
                continue
            kept.append((canonical, _XML_ILLEGAL.sub("", value)))
        return kept

    def _verify(self, output: str) -> None:
        """Re-parse the rebuilt document and confirm it holds only allow-listed names."""
        soup = BeautifulSoup(output, "html.parser", multi_valued_attributes=None)
        for tag in soup.find_all(True):
            allowed = self._attributes.get(tag.name)
            if allowed is None:
                raise SanitizationFailed(f"rebuilt markup contains <{tag.name}>")
            for attribute in tag.attrs:
                if attribute.lower() not in allowed:
                    raise SanitizationFailed(f"rebuilt markup contains attribute {attribute!r}")


class _Walk:
    """Node, depth and wall-clock budget for one rebuild."""

    def __init__(self, deadline: float, max_nodes: int, max_depth: int) -> None:
        self._deadline = deadline
        self._max_nodes = max_nodes
        self._max_depth = max_depth
        self._nodes = 0

    def step(self, depth: int) -> None:
        self._nodes += 1
        if self._nodes > self._max_nodes:
            raise SanitizationFailed(f"markup exceeds {self._max_nodes} nodes")
        if depth > self._max_depth:
            raise SanitizationFailed(f"markup nesting exceeds depth {self._max_depth}")
        if time.monotonic() > self._deadline:
            raise SanitizationFailed("markup sanitization timed out")
