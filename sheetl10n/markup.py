from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from typing import Union

from sheetl10n.errors import MarkupParseError


VOID_ELEMENTS = frozenset(
    {
        "area",
        "base",
        "br",
        "col",
        "embed",
        "hr",
        "img",
        "input",
        "link",
        "meta",
        "param",
        "source",
        "track",
        "wbr",
    }
)
RAW_TEXT_ELEMENTS = frozenset({"script", "style", "textarea"})

_ATTR_VALUE = r"(?:\"[^\"]*\"|'[^']*'|[^\s\"'=<>`]+)"
_TOKEN_RE = re.compile(
    r"(?P<comment><!--.*?-->)"
    r"|(?P<decl><![^>]*>)"
    r"|(?P<pi><\?.*?\?>)"
    r"|(?P<end></(?P<end_name>[A-Za-z][\w:.-]*)\s*>)"
    r"|(?P<start><(?P<start_name>[A-Za-z][\w:.-]*)"
    rf"(?P<attrs>(?:\s+[^\s\"'<>/=]+(?:\s*=\s*{_ATTR_VALUE})?)*)"
    r"\s*(?P<selfclose>/)?>)",
    flags=re.DOTALL,
)
_ATTR_RE = re.compile(r"([^\s\"'<>/=]+)(?:\s*=\s*(?:\"([^\"]*)\"|'([^']*)'|([^\s\"'=<>`]+)))?")


@dataclass(frozen=True)
class TextNode:
    raw: str

    @property
    def blank(self) -> bool:
        return not self.raw.strip()


@dataclass(frozen=True)
class RawNode:
    """Comment, declaration, processing instruction or raw-text element, kept verbatim."""

    raw: str
    name: str = "#comment"


@dataclass(frozen=True)
class ElementNode:
    name: str
    open_raw: str
    close_raw: str
    attributes: tuple[tuple[str, str | None], ...] = ()
    children: tuple["Node", ...] = ()

    @property
    def raw(self) -> str:
        return self.open_raw + "".join(child.raw for child in self.children) + self.close_raw


Node = Union[TextNode, RawNode, ElementNode]


@dataclass
class _Frame:
    name: str
    open_raw: str
    attributes: tuple[tuple[str, str | None], ...]
    children: list[Node] = field(default_factory=list)


def parse_attributes(raw: str) -> tuple[tuple[str, str | None], ...]:
    out: list[tuple[str, str | None]] = []
    for m in _ATTR_RE.finditer(raw):
        value = next((g for g in m.groups()[1:] if g is not None), None)
        out.append((m.group(1), html.unescape(value) if value is not None else None))
    return tuple(out)


def tag_name(raw_tag: str) -> str:
    m = re.match(r"</?([A-Za-z][\w:.-]*)", raw_tag)
    return m.group(1).lower() if m else ""


def parse_fragment(markup: str) -> tuple[Node, ...]:
    """Parse an HTML-like fragment into an immutable tree.

    Every node keeps the exact slice of input it came from. Raises
    MarkupParseError on unclosed elements, mismatched or stray end tags.
    """
    root: list[Node] = []
    stack: list[_Frame] = []

    def sink() -> list[Node]:
        return stack[-1].children if stack else root

    pos = 0
    while pos < len(markup):
        m = _TOKEN_RE.search(markup, pos)
        if m is None:
            sink().append(TextNode(markup[pos:]))
            break
        if m.start() > pos:
            sink().append(TextNode(markup[pos : m.start()]))
        pos = m.end()

        if m.group("start"):
            name = m.group("start_name").lower()
            attrs = parse_attributes(m.group("attrs") or "")
            if m.group("selfclose") or name in VOID_ELEMENTS:
                sink().append(ElementNode(name, m.group("start"), "", attrs))
                continue
            if name in RAW_TEXT_ELEMENTS:
                end = re.compile(rf"</{re.escape(name)}\s*>", re.IGNORECASE).search(markup, pos)
                if end is None:
                    raise MarkupParseError(f"unterminated <{name}> element")
                sink().append(RawNode(markup[m.start() : end.end()], name))
                pos = end.end()
                continue
            stack.append(_Frame(name, m.group("start"), attrs))
        elif m.group("end"):
            name = m.group("end_name").lower()
            if not stack:
                raise MarkupParseError(f"stray end tag </{name}> at offset {m.start()}")
            if stack[-1].name != name:
                raise MarkupParseError(
                    f"end tag </{name}> at offset {m.start()} does not close <{stack[-1].name}>"
                )
            frame = stack.pop()
            sink().append(
                ElementNode(frame.name, frame.open_raw, m.group("end"), frame.attributes, tuple(frame.children))
            )
        elif m.group("decl"):
            sink().append(RawNode(m.group(0), "#decl"))
        elif m.group("pi"):
            sink().append(RawNode(m.group(0), "#pi"))
        else:
            sink().append(RawNode(m.group(0)))

    if stack:
        raise MarkupParseError(f"unclosed <{stack[-1].name}> element")
    return tuple(root)
