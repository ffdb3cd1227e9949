from __future__ import annotations

import html
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Mapping

from lxml import etree

from sheetl10n.errors import CodecError
from sheetl10n.ir import Finding, SpanEntry
from sheetl10n.markup import parse_attributes, tag_name
from sheetl10n.sentinels import pair_markers, ph_token, span_close, span_code, span_open, tokenize


XLIFF_12_NS = "urn:oasis:names:tc:xliff:document:1.2"
XLIFF_2_NS = "urn:oasis:names:tc:xliff:document:2.0"

_WIRE_TAG_RE = re.compile(
    r"<(?P<close>/)?(?P<name>[A-Za-z_][\w:.-]*)"
    r"(?P<attrs>(?:\s+[^\s=/>]+\s*=\s*(?:\"[^\"]*\"|'[^']*'))*)\s*(?P<empty>/)?>"
)
_WIRE_ATTR_RE = re.compile(r"([^\s=/>]+)\s*=\s*(?:\"([^\"]*)\"|'([^']*)')")

_CTYPES = {
    "b": "bold",
    "strong": "bold",
    "i": "italic",
    "em": "italic",
    "u": "underline",
    "a": "link",
    "br": "lb",
    "img": "image",
}
_CTYPE_TAGS = {"bold": "b", "italic": "i", "underline": "u", "link": "a", "lb": "br", "image": "img"}


def classify(tag: str) -> str:
    return _CTYPES.get(tag.lower(), f"x-{tag.lower().lstrip('#') or 'span'}")


def tag_for_classifier(ctype: str | None) -> str:
    if not ctype:
        return "span"
    if ctype in _CTYPE_TAGS:
        return _CTYPE_TAGS[ctype]
    if ctype.startswith("x-") and len(ctype) > 2:
        return ctype[2:]
    return "span"


def _local_name(name: str) -> str:
    return name.rsplit(":", 1)[-1].split("}", 1)[-1]


def inner_markup(elem: etree._Element) -> str:
    """Serialize an element's content without its own tag or namespace declarations."""
    parts = [html.escape(elem.text or "", quote=False)]
    for child in elem:
        if isinstance(child.tag, str):
            name = etree.QName(child).localname
            attrs = "".join(
                f' {_local_name(k)}="{html.escape(v, quote=True)}"' for k, v in child.attrib.items()
            )
            inner = inner_markup(child)
            if inner:
                parts.append(f"<{name}{attrs}>{inner}</{name}>")
            else:
                parts.append(f"<{name}{attrs}/>")
        parts.append(html.escape(child.tail or "", quote=False))
    return "".join(parts)


def _append_text(elem: etree._Element, text: str) -> None:
    if not text:
        return
    if len(elem):
        last = elem[-1]
        last.tail = (last.tail or "") + text
    else:
        elem.text = (elem.text or "") + text


@dataclass(frozen=True)
class _WireToken:
    kind: str
    name: str = ""
    attrs: dict[str, str] = field(default_factory=dict)
    raw: str = ""
    value: str = ""


@dataclass
class DecodedInline:
    text: str = ""
    spans: dict[int, SpanEntry] = field(default_factory=dict)
    findings: list[Finding] = field(default_factory=list)


def _lex(wire: str) -> list[_WireToken]:
    tokens: list[_WireToken] = []
    pos = 0
    for m in _WIRE_TAG_RE.finditer(wire):
        if m.start() > pos:
            chunk = wire[pos : m.start()]
            tokens.append(_WireToken("text", raw=chunk, value=html.unescape(chunk)))
        attrs = {
            _local_name(a.group(1)): html.unescape(a.group(2) if a.group(2) is not None else a.group(3))
            for a in _WIRE_ATTR_RE.finditer(m.group("attrs") or "")
        }
        kind = "close" if m.group("close") else ("empty" if m.group("empty") else "open")
        tokens.append(_WireToken(kind, _local_name(m.group("name")), attrs, m.group(0)))
        pos = m.end()
    if pos < len(wire):
        tokens.append(_WireToken("text", raw=wire[pos:], value=html.unescape(wire[pos:])))
    return tokens


def _literal(token: _WireToken) -> str:
    return token.value if token.kind == "text" else token.raw


def _matching_close(tokens: list[_WireToken], start: int, end: int, name: str) -> int | None:
    depth = 0
    for i in range(start, end):
        tok = tokens[i]
        if tok.name != name:
            continue
        if tok.kind == "open":
            depth += 1
        elif tok.kind == "close":
            depth -= 1
            if depth == 0:
                return i
    return None


class InlineCodec(ABC):
    """Wire encoding of inline spans and protected tokens for one XLIFF dialect."""

    dialect: str
    namespace: str
    paired_tag: str
    standalone_tag: str

    def qname(self, local: str) -> str:
        return f"{{{self.namespace}}}{local}" if self.namespace else local

    # Per-dialect hooks.

    @abstractmethod
    def encode_span(self, parent: etree._Element, span_id: int, entry: SpanEntry | None) -> etree._Element:
        raise NotImplementedError

    @abstractmethod
    def encode_code(self, parent: etree._Element, span_id: int, entry: SpanEntry | None) -> None:
        raise NotImplementedError

    @abstractmethod
    def encode_protected(self, parent: etree._Element, token: str, literal: str | None) -> None:
        raise NotImplementedError

    @abstractmethod
    def decode_span(self, span_id: int, attrs: dict[str, str], spans: Mapping[int, SpanEntry]) -> SpanEntry | None:
        raise NotImplementedError

    @abstractmethod
    def decode_code(self, span_id: int, attrs: dict[str, str], spans: Mapping[int, SpanEntry]) -> SpanEntry | None:
        raise NotImplementedError

    # Shared traversal.

    def encode_into(
        self,
        parent: etree._Element,
        text: str,
        spans: Mapping[int, SpanEntry],
        protected: Mapping[str, str] | None = None,
    ) -> None:
        tokens = tokenize(text)
        paired = pair_markers(tokens)
        stack = [parent]
        for i, tok in enumerate(tokens):
            if tok.kind == "text":
                _append_text(stack[-1], tok.value)
            elif tok.kind == "io":
                if i in paired:
                    stack.append(self.encode_span(stack[-1], tok.span_id, spans.get(tok.span_id)))
            elif tok.kind == "ic":
                if i in paired:
                    stack.pop()
            elif tok.kind == "is":
                self.encode_code(stack[-1], tok.span_id, spans.get(tok.span_id))
            elif tok.kind == "ph":
                self.encode_protected(stack[-1], tok.value, (protected or {}).get(tok.value))

    def encode(
        self, text: str, spans: Mapping[int, SpanEntry], protected: Mapping[str, str] | None = None
    ) -> str:
        holder = etree.Element(self.qname("source"))
        self.encode_into(holder, text, spans, protected)
        return inner_markup(holder)

    def decode(self, wire: str, spans: Mapping[int, SpanEntry] | None = None) -> DecodedInline:
        """Turn wire markup back into flat text with span and token sentinels.

        Paired markers are matched by nesting depth. An unterminated open
        marker turns itself and the rest of the text into literal text.
        """
        tokens = _lex(wire)
        result = DecodedInline()
        out: list[str] = []
        self._decode_range(tokens, 0, len(tokens), spans or {}, out, result)
        result.text = "".join(out)
        return result

    def _fresh_id(self, spans: Mapping[int, SpanEntry], result: DecodedInline) -> int:
        return max([0, *spans.keys(), *result.spans.keys()]) + 1

    def _span_id(self, attrs: dict[str, str], spans: Mapping[int, SpanEntry], result: DecodedInline) -> int:
        raw = attrs.get("id", "")
        return int(raw) if raw.isdigit() else self._fresh_id(spans, result)

    def _decode_range(
        self,
        tokens: list[_WireToken],
        start: int,
        end: int,
        spans: Mapping[int, SpanEntry],
        out: list[str],
        result: DecodedInline,
    ) -> None:
        i = start
        while i < end:
            tok = tokens[i]
            if tok.kind == "text":
                out.append(tok.value)
                i += 1
            elif tok.name == self.paired_tag:
                if tok.kind == "close":
                    result.findings.append(
                        Finding("structural", "orphan-close-marker", f"close marker without open: {tok.raw}")
                    )
                    out.append(tok.raw)
                    i += 1
                    continue
                span_id = self._span_id(tok.attrs, spans, result)
                entry = self.decode_span(span_id, tok.attrs, spans)
                if entry is not None:
                    result.spans[span_id] = entry
                if tok.kind == "empty":
                    out.append(span_open(span_id) + span_close(span_id))
                    i += 1
                    continue
                close = _matching_close(tokens, i, end, self.paired_tag)
                if close is None:
                    result.findings.append(
                        Finding("structural", "orphan-open-marker", f"unterminated marker: {tok.raw}")
                    )
                    out.extend(_literal(t) for t in tokens[i:end])
                    return
                out.append(span_open(span_id))
                self._decode_range(tokens, i + 1, close, spans, out, result)
                out.append(span_close(span_id))
                i = close + 1
            elif tok.name == self.standalone_tag and tok.kind in ("open", "empty"):
                token_id = tok.attrs.get("id", "")
                if token_id.isdigit():
                    span_id = int(token_id)
                    entry = self.decode_code(span_id, tok.attrs, spans)
                    if entry is not None:
                        result.spans[span_id] = entry
                    out.append(span_code(span_id))
                elif token_id:
                    out.append(ph_token(token_id))
                else:
                    out.append(tok.raw)
                i += 1
                if tok.kind == "open" and i < end and tokens[i].kind == "close" and tokens[i].name == tok.name:
                    i += 1
            elif tok.name == "mrk":
                # Annotation markers added by editing tools: keep their content only.
                i += 1
            else:
                out.append(_literal(tok))
                i += 1


class Xliff21Codec(InlineCodec):
    """Attribute-preserving dialect: literal tags travel on the marker itself."""

    dialect = "2.1"
    namespace = XLIFF_2_NS
    paired_tag = "pc"
    standalone_tag = "ph"

    def encode_span(self, parent: etree._Element, span_id: int, entry: SpanEntry | None) -> etree._Element:
        el = etree.SubElement(parent, self.qname("pc"), id=str(span_id))
        if entry is not None:
            el.set("equivStart", entry.open_literal)
            el.set("equivEnd", entry.close_literal)
        return el

    def encode_code(self, parent: etree._Element, span_id: int, entry: SpanEntry | None) -> None:
        el = etree.SubElement(parent, self.qname("ph"), id=str(span_id))
        if entry is not None:
            el.set("equiv", entry.open_literal)

    def encode_protected(self, parent: etree._Element, token: str, literal: str | None) -> None:
        el = etree.SubElement(parent, self.qname("ph"), id=token)
        if literal is not None:
            el.set("equiv", literal)

    def decode_span(self, span_id: int, attrs: dict[str, str], spans: Mapping[int, SpanEntry]) -> SpanEntry | None:
        start = attrs.get("equivStart")
        if start is None:
            return spans.get(span_id)
        end = attrs.get("equivEnd", "")
        name = tag_name(start)
        attributes = parse_attributes(start[len(name) + 1 : -1]) if name else ()
        return SpanEntry(span_id, "paired", name or "span", attributes, start, end)

    def decode_code(self, span_id: int, attrs: dict[str, str], spans: Mapping[int, SpanEntry]) -> SpanEntry | None:
        equiv = attrs.get("equiv")
        if equiv is None:
            return spans.get(span_id)
        known = spans.get(span_id)
        name = known.tag if known is not None else (tag_name(equiv) or "#code")
        return SpanEntry(span_id, "standalone", name, (), equiv)


class Xliff12Codec(InlineCodec):
    """Compact dialect: markers carry a type classifier, literal tags live in the side map."""

    dialect = "1.2"
    namespace = XLIFF_12_NS
    paired_tag = "g"
    standalone_tag = "x"

    def encode_span(self, parent: etree._Element, span_id: int, entry: SpanEntry | None) -> etree._Element:
        return etree.SubElement(
            parent, self.qname("g"), id=str(span_id), ctype=classify(entry.tag if entry else "span")
        )

    def encode_code(self, parent: etree._Element, span_id: int, entry: SpanEntry | None) -> None:
        etree.SubElement(parent, self.qname("x"), id=str(span_id), ctype=classify(entry.tag if entry else "span"))

    def encode_protected(self, parent: etree._Element, token: str, literal: str | None) -> None:  # noqa: ARG002
        etree.SubElement(parent, self.qname("x"), id=token)

    def decode_span(self, span_id: int, attrs: dict[str, str], spans: Mapping[int, SpanEntry]) -> SpanEntry | None:
        known = spans.get(span_id)
        if known is not None:
            return known
        tag = tag_for_classifier(attrs.get("ctype"))
        return SpanEntry(span_id, "paired", tag, (), f"<{tag}>", f"</{tag}>")

    def decode_code(self, span_id: int, attrs: dict[str, str], spans: Mapping[int, SpanEntry]) -> SpanEntry | None:
        known = spans.get(span_id)
        if known is not None:
            return known
        tag = tag_for_classifier(attrs.get("ctype"))
        return SpanEntry(span_id, "standalone", tag, (), f"<{tag}>")


DIALECTS: dict[str, type[InlineCodec]] = {"2.1": Xliff21Codec, "1.2": Xliff12Codec}


def codec_for(dialect: str) -> InlineCodec:
    key = dialect.strip().lower()
    if key in {"b", "2", "2.0", "xliff2"}:
        key = "2.1"
    elif key in {"a", "1", "xliff1"}:
        key = "1.2"
    try:
        return DIALECTS[key]()
    except KeyError:
        raise CodecError(f"Unknown wire dialect {dialect!r}; expected one of {sorted(DIALECTS)}") from None
