#!/usr/bin/env python3
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Any, Union
import re

try:
    import yaml  # PyYAML
except ImportError as e:
    raise SystemExit(
        "Missing dependency: PyYAML\n"
        "Install with: python -m pip install pyyaml"
    ) from e


# ---------------- Inline nodes -----------------------------------------------


@dataclass(eq=False)
class Link:
    """[[path]] or [[path][description]]"""
    path: str
    description: Optional[str] = None


@dataclass(eq=False)
class MacroCall:
    """{{{name(arg1, arg2)}}}"""
    name: str
    args: list[str] = field(default_factory=list)


@dataclass(eq=False)
class FootnoteReference:
    """
    [fn:label], [fn:label:inline definition] or [fn::anonymous definition].

    Compared by identity: two references to the same label are still two
    occurrences.
    """
    label: str
    inline_definition: Optional[str] = None


# ---------------- Block nodes ------------------------------------------------


@dataclass
class Paragraph:
    text: str


@dataclass
class QuoteBlock:
    children: list["Block"] = field(default_factory=list)
    caption: Optional[str] = None
    name: Optional[str] = None


@dataclass
class VerseBlock:
    lines: list[str] = field(default_factory=list)
    caption: Optional[str] = None
    name: Optional[str] = None


@dataclass
class SpecialBlock:
    """#+begin_<block_type> … #+end_<block_type> for any non-builtin type."""
    block_type: str
    children: list["Block"] = field(default_factory=list)
    caption: Optional[str] = None
    name: Optional[str] = None


@dataclass
class SrcBlock:
    code: str
    language: Optional[str] = None
    caption: Optional[str] = None
    name: Optional[str] = None


@dataclass
class Figure:
    src: str
    alt: Optional[str] = None
    caption: Optional[str] = None
    html_class: Optional[str] = None
    name: Optional[str] = None


@dataclass
class Section:
    title: str
    level: int = 1
    children: list["Block"] = field(default_factory=list)
    tags: Optional[list[str]] = None


@dataclass
class FootnoteDefinition:
    label: str
    children: list["Block"] = field(default_factory=list)


Block = Union[Paragraph, QuoteBlock, VerseBlock, SpecialBlock, SrcBlock, Figure, Section]


@dataclass
class Document:
    """
    A structured outline document.

    `headers` keeps every document keyword lowercased; title, subtitle,
    author and date have convenience fields.
    """
    title: Optional[str] = None
    subtitle: Optional[str] = None
    author: Optional[str] = None
    date: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)
    children: list[Block] = field(default_factory=list)
    footnotes: list[FootnoteDefinition] = field(default_factory=list)


# ---------------- Inline tokenizer -------------------------------------------

_MACRO_RE = re.compile(r"^\s*([A-Za-z][\w-]*)\s*(?:\((.*)\))?\s*$", re.DOTALL)
_FOOTNOTE_LABEL_RE = re.compile(r"^[\w-]*$")


def split_macro_args(raw: str) -> list[str]:
    """
    Split macro arguments on commas; '\\,' stands for a literal comma.
    """
    args: list[str] = []
    current: list[str] = []
    i = 0
    while i < len(raw):
        if raw.startswith("\\,", i):
            current.append(",")
            i += 2
            continue
        if raw[i] == ",":
            args.append("".join(current).strip())
            current = []
            i += 1
            continue
        current.append(raw[i])
        i += 1
    args.append("".join(current).strip())
    return args


def _find_closing_bracket(text: str, start: int) -> int:
    """
    Return the index of the ']' closing the '[' at `start`, or -1.

    Nested brackets (e.g. links inside an inline footnote) are balanced.
    """
    depth = 0
    for j in range(start, len(text)):
        if text[j] == "[":
            depth += 1
        elif text[j] == "]":
            depth -= 1
            if depth == 0:
                return j
    return -1


def tokenize_inline_org_markup(text: str) -> list[tuple[str, Any]]:
    """
    Tokenize inline Org markup into (type, value) spans.

    Supported (minimal):
      *bold*           -> ("bold_text", "bold")
      /italic/         -> ("italic_text", "italic")
      =code= or ~code~ -> ("code", "code")
      [[path]] or [[path][desc]]   -> ("link", Link)
      [fn:x], [fn:x:def], [fn::def] -> ("footnote_reference", FootnoteReference)
      {{{name(a, b)}}} -> ("macro", MacroCall)
      \\\\ before whitespace or end -> ("line_break", "")

    Everything else -> ("plaintext", "...")

    Emphasis is not nested; links, footnotes and macros keep their raw
    inner text for the renderer to handle.
    """
    delimiter_to_type: dict[str, str] = {
        "*": "bold_text",
        "/": "italic_text",
        "=": "code",
        "~": "code",
    }

    tokens: list[tuple[str, Any]] = []
    buffer: list[str] = []

    def flush_plaintext() -> None:
        if buffer:
            tokens.append(("plaintext", "".join(buffer)))
            buffer.clear()

    def is_valid_emphasis_open(pos: int) -> bool:
        # Require some content after delimiter and not immediately whitespace
        if pos + 1 >= len(text):
            return False
        if text[pos + 1].isspace():
            return False
        # Avoid delimiter being part of a word like foo*bar (very rough)
        if pos > 0 and not text[pos - 1].isspace() and text[pos - 1] not in "([{\"'":
            return False
        return True

    def is_valid_emphasis_close(pos: int) -> bool:
        if pos - 1 < 0:
            return False
        if text[pos - 1].isspace():
            return False
        if pos + 1 < len(text) and not text[pos + 1].isspace() and text[pos + 1] not in ".,;:!?)]}\"'":
            return False
        return True

    i = 0
    while i < len(text):
        ch = text[i]

        # --- macros: {{{name(args)}}} ---------------------------------------
        if text.startswith("{{{", i):
            end = text.find("}}}", i + 3)
            if end != -1:
                m = _MACRO_RE.match(text[i + 3 : end])
                if m:
                    flush_plaintext()
                    name = m.group(1).lower()
                    args = split_macro_args(m.group(2)) if m.group(2) is not None else []
                    tokens.append(("macro", MacroCall(name=name, args=args)))
                    i = end + 3
                    continue

        # --- footnote references: [fn:label], [fn:label:def], [fn::def] -----
        if text.startswith("[fn:", i):
            end = _find_closing_bracket(text, i)
            if end != -1:
                inner = text[i + 4 : end]
                if ":" in inner:
                    label, definition = inner.split(":", 1)
                    definition = definition.strip()
                else:
                    label, definition = inner, None
                label = label.strip()
                if (label or definition) and _FOOTNOTE_LABEL_RE.match(label):
                    flush_plaintext()
                    tokens.append(
                        ("footnote_reference", FootnoteReference(label, definition or None))
                    )
                    i = end + 1
                    continue
            # not a footnote -> fall through as plaintext

        # --- Org-style links: [[path]] or [[path][desc]] ---------------------
        if text.startswith("[[", i):
            # balanced, so a description may hold [fn:..] or [[..]] itself
            close = _find_closing_bracket(text, i)
            if close != -1 and text[close - 1] == "]":
                end = close - 1
            else:
                end = text.find("]]", i + 2)
            if end != -1:
                inner = text[i + 2 : end]
                if "][" in inner:
                    path, desc = inner.split("][", 1)
                    desc = desc.strip() or None
                else:
                    path, desc = inner, None

                flush_plaintext()
                tokens.append(("link", Link(path=path.strip(), description=desc)))
                i = end + 2
                continue

        # --- explicit line break: \\ ---------------------------------------
        if text.startswith("\\\\", i) and (i + 2 >= len(text) or text[i + 2].isspace()):
            flush_plaintext()
            tokens.append(("line_break", ""))
            i += 2
            continue

        # --- emphasis / code delimiters ------------------------------------
        if ch in delimiter_to_type and is_valid_emphasis_open(i):
            j = i + 1
            while j < len(text):
                if text[j] == ch and is_valid_emphasis_close(j):
                    flush_plaintext()
                    tokens.append((delimiter_to_type[ch], text[i + 1 : j]))
                    i = j + 1
                    break
                j += 1
            else:
                # no close found -> treat as plaintext
                buffer.append(ch)
                i += 1
        else:
            buffer.append(ch)
            i += 1

    flush_plaintext()
    return tokens


# ---------------- YAML document loader --------------------------------------


def _as_optional_str(value: Any, name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        raise TypeError(f"{name} must be a string")
    return str(value)


def _as_mapping(value: Any, name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise TypeError(f"{name} must be a mapping")
    return value


def _blocks_from(value: Any, name: str, level: int) -> list[Block]:
    """
    Accept either a single string (one paragraph per blank-line-separated
    chunk) or a list of block items.
    """
    if value is None:
        return []
    if isinstance(value, str):
        chunks = [c.strip() for c in re.split(r"\n\s*\n", value)]
        return [Paragraph(" ".join(c.split("\n"))) for c in chunks if c]
    if not isinstance(value, list):
        raise TypeError(f"{name} must be a string or a list of blocks")
    return [_block_from(item, f"{name}[{n}]", level) for n, item in enumerate(value)]


def _block_from(item: Any, name: str, level: int) -> Block:
    if isinstance(item, str):
        return Paragraph(item)

    raw = _as_mapping(item, name)
    if len(raw) != 1:
        raise ValueError(f"{name} must have exactly one block kind, got {sorted(raw)}")
    kind, spec = next(iter(raw.items()))
    kind = str(kind).lower()
    where = f"{name}.{kind}"

    if kind == "paragraph":
        return Paragraph(_as_optional_str(spec, where) or "")

    if kind == "section":
        spec = _as_mapping(spec, where)
        tags = spec.get("tags")
        if tags is not None and not isinstance(tags, list):
            raise TypeError(f"{where}.tags must be a list of strings")
        return Section(
            title=_as_optional_str(spec.get("title"), f"{where}.title") or "",
            level=level,
            children=_blocks_from(spec.get("body"), f"{where}.body", level + 1),
            tags=[str(t) for t in tags] if tags else None,
        )

    if kind == "quote":
        if isinstance(spec, str):
            return QuoteBlock(children=_blocks_from(spec, where, level))
        spec = _as_mapping(spec, where)
        return QuoteBlock(
            children=_blocks_from(spec.get("body"), f"{where}.body", level),
            caption=_as_optional_str(spec.get("caption"), f"{where}.caption"),
            name=_as_optional_str(spec.get("name"), f"{where}.name"),
        )

    if kind == "verse":
        if isinstance(spec, str):
            spec = {"lines": spec}
        spec = _as_mapping(spec, where)
        lines = spec.get("lines", [])
        if isinstance(lines, str):
            lines = lines.rstrip("\n").split("\n")
        if not isinstance(lines, list):
            raise TypeError(f"{where}.lines must be a string or a list of strings")
        return VerseBlock(
            lines=[str(ln) for ln in lines],
            caption=_as_optional_str(spec.get("caption"), f"{where}.caption"),
            name=_as_optional_str(spec.get("name"), f"{where}.name"),
        )

    if kind == "special":
        spec = _as_mapping(spec, where)
        block_type = _as_optional_str(spec.get("type"), f"{where}.type")
        if not block_type:
            raise ValueError(f"{where}.type is required")
        return SpecialBlock(
            block_type=block_type.lower(),
            children=_blocks_from(spec.get("body"), f"{where}.body", level),
            caption=_as_optional_str(spec.get("caption"), f"{where}.caption"),
            name=_as_optional_str(spec.get("name"), f"{where}.name"),
        )

    if kind == "src":
        spec = _as_mapping(spec, where)
        return SrcBlock(
            code=_as_optional_str(spec.get("code"), f"{where}.code") or "",
            language=_as_optional_str(spec.get("language"), f"{where}.language"),
            caption=_as_optional_str(spec.get("caption"), f"{where}.caption"),
            name=_as_optional_str(spec.get("name"), f"{where}.name"),
        )

    if kind == "figure":
        if isinstance(spec, str):
            return Figure(src=spec)
        spec = _as_mapping(spec, where)
        src = _as_optional_str(spec.get("src"), f"{where}.src")
        if not src:
            raise ValueError(f"{where}.src is required")
        return Figure(
            src=src,
            alt=_as_optional_str(spec.get("alt"), f"{where}.alt"),
            caption=_as_optional_str(spec.get("caption"), f"{where}.caption"),
            html_class=_as_optional_str(spec.get("class"), f"{where}.class"),
            name=_as_optional_str(spec.get("name"), f"{where}.name"),
        )

    raise ValueError(f"{name}: unknown block kind {kind!r}")


def document_from_mapping(raw: Any) -> Document:
    """
    Build a Document tree from an already-parsed YAML mapping.

    Top-level keys: title, subtitle, author, date, body, footnotes; any
    other scalar key is kept in `headers`.
    """
    if raw is None:
        raw = {}
    raw = _as_mapping(raw, "Document root")

    headers: dict[str, str] = {}
    for key, value in raw.items():
        if key in {"body", "footnotes"} or value is None:
            continue
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            headers[str(key).lower()] = str(value)

    footnotes_raw = raw.get("footnotes") or {}
    footnotes_raw = _as_mapping(footnotes_raw, "footnotes")
    footnotes = [
        FootnoteDefinition(
            label=str(label),
            children=_blocks_from(body, f"footnotes.{label}", 1),
        )
        for label, body in footnotes_raw.items()
    ]

    return Document(
        title=headers.get("title"),
        subtitle=headers.get("subtitle"),
        author=headers.get("author"),
        date=headers.get("date"),
        headers=headers,
        children=_blocks_from(raw.get("body"), "body", 1),
        footnotes=footnotes,
    )


def load_document(path: Path) -> Document:
    """
    Load a YAML document description and return its Document tree.
    """
    raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    return document_from_mapping(raw)
