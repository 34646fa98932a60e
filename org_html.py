#!/usr/bin/env python3
"""
org_html.py

Small generic Org → HTML exporter used as the host for the Tufte backend.

- HtmlExporter.render() turns a block node into HTML (Block Exporter)
- HtmlExporter.render_inline() turns inline Org text into HTML
  (Inline Text Renderer)
- FootnoteResolver numbers footnote references (Reference Resolver)

Each node type has a transcode_<node> method, so a derived backend only
overrides the pieces it decorates.

Scope (intentionally minimal):
- Sections -> <div class="outline-N"> with <hN>
- Paragraphs -> <p>...</p>
- Quote / verse / special / src blocks, figures
- Footnote references + a footnote section at the bottom
"""
from __future__ import annotations
from typing import Any, Callable, Iterable, Optional
import html
import random
import re

from config_loader import DEFAULT_CONFIG, TufteConfig
from helper import print_event_gray
from org_nodes import (
    Document,
    Figure,
    FootnoteDefinition,
    FootnoteReference,
    Link,
    MacroCall,
    Paragraph,
    QuoteBlock,
    Section,
    SpecialBlock,
    SrcBlock,
    VerseBlock,
    tokenize_inline_org_markup,
)
from tufte_renderer import footnote_definition_id, footnote_reference_id


def escape_html(text: str) -> str:
    """Escape text for HTML output."""
    return html.escape(text, quote=True)


def heading_tag_for_level(level: int) -> str:
    """Map a heading level to an HTML heading tag."""
    safe_level = max(1, min(6, level))
    return f"h{safe_level}"


_URL_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*:")


def normalize_image_src(url: str, prefix: str = "") -> str:
    """
    Turn an Org file link into an image src.

    - 'file:img/foo.png'  -> 'img/foo.png'
    - 'https://…'         -> 'https://…'  (left as-is)

    A relative path gets *prefix* prepended (e.g. '/assets/' when the
    preview app serves documents and their images from different routes).
    """
    if url.startswith("file:"):
        url = url[5:]
    if prefix and not url.startswith("/") and not _URL_SCHEME_RE.match(url):
        url = prefix.rstrip("/") + "/" + url
    return url


def is_image_target(url: str) -> bool:
    """
    Return True if the URL looks like an image file (by extension).
    Query string and fragment are ignored.
    """
    base = url.split("?", 1)[0].split("#", 1)[0]
    base = base.lower()
    return base.endswith((
        ".png",
        ".jpg",
        ".jpeg",
        ".gif",
        ".svg",
        ".webp",
        ".bmp",
    ))


def render_tags(tags: Optional[list[str]]) -> str:
    """Render heading tags as a small suffix."""
    if not tags:
        return ""
    safe = ", ".join(escape_html(t) for t in tags)
    return f"<span class=\"tags\">[{safe}]</span>"


def id_attr(name: Optional[str]) -> str:
    return f' id="{escape_html(name)}"' if name else ""


def _snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class FootnoteResolver:
    """
    Assign stable numbers to footnote references in first-reference order.

    Anonymous footnotes ([fn::…]) are keyed by the reference object itself,
    so every one of them gets its own number.
    """

    def __init__(self, definitions: Iterable[FootnoteDefinition] = ()):
        self._definitions: dict[str, FootnoteDefinition] = {d.label: d for d in definitions}
        self._numbers: dict[Any, int] = {}
        self._first: dict[Any, FootnoteReference] = {}
        self._inline: dict[Any, str] = {}
        self._order: list[Any] = []

    @staticmethod
    def _key(ref: FootnoteReference) -> Any:
        return ref.label if ref.label else ("anonymous", id(ref))

    def number_of(self, ref: FootnoteReference) -> int:
        key = self._key(ref)
        if key not in self._numbers:
            self._numbers[key] = len(self._numbers) + 1
            self._first[key] = ref
            self._order.append(key)
        if ref.inline_definition and key not in self._inline:
            self._inline[key] = ref.inline_definition
        return self._numbers[key]

    def is_first_occurrence(self, ref: FootnoteReference) -> bool:
        self.number_of(ref)
        return self._first[self._key(ref)] is ref

    def definition_of(self, ref: FootnoteReference) -> FootnoteDefinition:
        key = self._key(ref)
        self.number_of(ref)
        if key in self._inline:
            return FootnoteDefinition(ref.label, [Paragraph(self._inline[key])])
        definition = self._definitions.get(ref.label)
        if definition is None:
            raise ValueError(f"Definition not found for footnote {ref.label!r}")
        return definition

    def referenced(self) -> list[tuple[int, FootnoteReference]]:
        """(number, first reference) pairs in numbering order."""
        return [(self._numbers[key], self._first[key]) for key in self._order]


class HtmlExporter:
    """
    Generic block/inline exporter.

    One instance renders one document at a time; `begin()` resets the
    per-document footnote state.
    """

    def __init__(
        self,
        cfg: TufteConfig = DEFAULT_CONFIG,
        *,
        rng: random.Random | None = None,
        trace: bool = False,
        asset_prefix: str = "",
    ):
        self.cfg = cfg
        self.asset_prefix = asset_prefix
        self.rng = rng if rng is not None else random.Random()
        self.trace = trace
        self.macros: dict[str, Callable[[MacroCall], str]] = {}
        self.resolver = FootnoteResolver()
        self._rendering_footnotes: set[str] = set()

    # ---------- setup ----------
    def register_macro(self, name: str, fn: Callable[[MacroCall], str]) -> None:
        """Register an inline macro; `fn` returns HTML for a MacroCall."""
        self.macros[name.lower()] = fn

    def begin(self, footnotes: Iterable[FootnoteDefinition] = ()) -> None:
        self.resolver = FootnoteResolver(footnotes)
        self._rendering_footnotes = set()

    # ---------- dispatch ----------
    def render(self, node: Any) -> str:
        method = getattr(self, f"transcode_{_snake_case(type(node).__name__)}", None)
        if method is None:
            raise TypeError(f"No transcoder for node type {type(node).__name__}")
        if self.trace:
            print_event_gray(f"[org_tufte] {type(node).__name__}")
        return method(node)

    def render_blocks(self, nodes: Iterable[Any]) -> str:
        return "".join(self.render(n) for n in nodes)

    def render_inline(self, text: str) -> str:
        """
        Render inline Org text to HTML.

        A footnote reference directly following another one is told so,
        so the separator can be inserted between them.
        """
        out: list[str] = []
        previous_type: Optional[str] = None
        for token_type, value in tokenize_inline_org_markup(text or ""):
            if token_type == "footnote_reference":
                out.append(
                    self.transcode_footnote_reference(
                        value, preceded_by_footnote=previous_type == "footnote_reference"
                    )
                )
            elif token_type == "plaintext":
                out.append(self.transcode_plaintext(value))
            elif token_type == "bold_text":
                out.append(f"<strong>{escape_html(value)}</strong>")
            elif token_type == "italic_text":
                out.append(f"<em>{escape_html(value)}</em>")
            elif token_type == "code":
                out.append(f"<code>{escape_html(value)}</code>")
            elif token_type == "link":
                out.append(self.transcode_link(value))
            elif token_type == "macro":
                out.append(self.transcode_macro(value))
            elif token_type == "line_break":
                out.append("<br />")
            else:
                # fallback
                out.append(escape_html(str(value)))
            previous_type = token_type
        return "".join(out)

    # ---------- inline transcoders ----------
    def transcode_plaintext(self, text: str) -> str:
        return escape_html(text)

    def transcode_link(self, link: Link) -> str:
        url = link.path

        if is_image_target(url) and link.description is None:
            web_url = normalize_image_src(url, self.asset_prefix)
            return (
                f'<img src="{escape_html(web_url)}" '
                f'alt="{escape_html(url)}" '
                f'class="inline-image" />'
            )
        if url.startswith("file:"):
            url = url[5:]
        if link.description:
            label = self.render_inline(link.description)
        else:
            label = escape_html(url)
        return f'<a href="{escape_html(url)}">{label}</a>'

    def transcode_macro(self, call: MacroCall) -> str:
        fn = self.macros.get(call.name)
        if fn is None:
            raise ValueError(f"Undefined Org macro: {call.name}")
        return fn(call)

    def transcode_footnote_reference(
        self,
        ref: FootnoteReference,
        *,
        preceded_by_footnote: bool = False,
    ) -> str:
        n = self.resolver.number_of(ref)
        id_part = ""
        if self.resolver.is_first_occurrence(ref):
            id_part = f' id="{footnote_reference_id(n)}"'
        prefix = self.cfg.footnote_separator if preceded_by_footnote else ""
        return (
            f"{prefix}<sup><a{id_part} class=\"footref\" "
            f"href=\"#{footnote_definition_id(n)}\" role=\"doc-backlink\">{n}</a></sup>"
        )

    # ---------- block transcoders ----------
    def transcode_paragraph(self, node: Paragraph) -> str:
        text = self.render_inline(node.text)
        if not text.strip():
            return ""
        return f"<p>{text}</p>\n"

    def section_heading(self, node: Section) -> str:
        tag = heading_tag_for_level(node.level + 1)
        return f"<{tag}>{self.render_inline(node.title)}{render_tags(node.tags)}</{tag}>\n"

    def transcode_section(self, node: Section) -> str:
        return (
            f'<div class="outline-{node.level + 1}">\n'
            f"{self.section_heading(node)}"
            f"{self.render_blocks(node.children)}"
            "</div>\n"
        )

    def transcode_quote_block(self, node: QuoteBlock) -> str:
        return f"<blockquote{id_attr(node.name)}>\n{self.render_blocks(node.children)}</blockquote>\n"

    def render_verse_lines(self, lines: list[str]) -> str:
        """Render verse lines while preserving line breaks as <br />."""
        return "<br />\n".join(self.render_inline(ln) for ln in lines)

    def transcode_verse_block(self, node: VerseBlock) -> str:
        return f'<div class="verse"{id_attr(node.name)}>\n{self.render_verse_lines(node.lines)}\n</div>\n'

    def transcode_special_block(self, node: SpecialBlock) -> str:
        return (
            f'<div class="{escape_html(node.block_type)}"{id_attr(node.name)}>\n'
            f"{self.render_blocks(node.children)}"
            "</div>\n"
        )

    def transcode_src_block(self, node: SrcBlock) -> str:
        classes = "src"
        if node.language:
            classes += f" src-{escape_html(node.language)}"
        caption = ""
        if node.caption:
            caption = f'<label class="org-src-name">{self.render_inline(node.caption)}</label>'
        return (
            f"{caption}<pre class=\"{classes}\"{id_attr(node.name)}>"
            f"<code>{escape_html(node.code)}</code></pre>\n"
        )

    def image_html(self, node: Figure) -> str:
        alt = node.alt or node.caption or node.src
        return (
            f'<img src="{escape_html(normalize_image_src(node.src, self.asset_prefix))}" '
            f'alt="{escape_html(alt)}" />'
        )

    def figure_attributes(self, node: Figure) -> str:
        attrs = id_attr(node.name)
        if node.html_class:
            attrs += f' class="{escape_html(node.html_class)}"'
        return attrs

    def transcode_figure(self, node: Figure) -> str:
        caption = ""
        if node.caption:
            caption = f"<figcaption>{self.render_inline(node.caption)}</figcaption>"
        return f"<figure{self.figure_attributes(node)}>{self.image_html(node)}{caption}</figure>\n"

    # ---------- footnotes ----------
    def footnote_definition_html(self, ref: FootnoteReference) -> str:
        """
        Export the definition of `ref` through the block transcoders.

        A footnote whose definition (directly or indirectly) references
        itself raises ValueError instead of recursing forever.
        """
        definition = self.resolver.definition_of(ref)
        key = ref.label or f"anonymous-{id(ref)}"
        if key in self._rendering_footnotes:
            raise ValueError(f"Footnote {ref.label!r} references itself")
        self._rendering_footnotes.add(key)
        try:
            return self.render_blocks(definition.children)
        finally:
            self._rendering_footnotes.discard(key)

    def render_footnote_section(self) -> str:
        """
        Render every referenced footnote as a definition list.

        Rendering a definition may reference further footnotes, so the list
        is re-read until no new numbers appear.
        """
        rows: list[str] = []
        done = 0
        while done < len(self.resolver.referenced()):
            n, ref = self.resolver.referenced()[done]
            done += 1
            body = self.footnote_definition_html(ref)
            rows.append(
                '<div class="footdef">'
                f'<sup><a id="{footnote_definition_id(n)}" class="footnum" '
                f'href="#{footnote_reference_id(n)}" role="doc-backlink">{n}</a></sup> '
                f'<div class="footpara" role="doc-footnote">{body}</div>'
                "</div>\n"
            )
        if not rows:
            return ""
        return (
            '<div id="footnotes">\n'
            '<h2 class="footnotes">Footnotes: </h2>\n'
            '<div id="text-footnotes">\n'
            + "".join(rows)
            + "</div>\n</div>\n"
        )

    # ---------- documents ----------
    def render_body(self, doc: Document) -> str:
        self.begin(doc.footnotes)
        body = self.render_blocks(doc.children)
        return body + self.render_footnote_section()

    def open_html_document(self, doc: Document) -> str:
        """
        Return the HTML prolog, enriched with document metadata.
        """
        safe_title = escape_html(doc.title or "Org Export")

        meta_lines: list[str] = []
        if doc.author and doc.author.strip():
            meta_lines.append(f'  <meta name="author" content="{escape_html(doc.author.strip())}" />\n')
        if doc.date and doc.date.strip():
            meta_lines.append(f'  <meta name="date" content="{escape_html(doc.date.strip())}" />\n')

        for key, value in doc.headers.items():
            if key in {"title", "subtitle", "author", "date"}:
                continue
            if key.strip() and value.strip():
                meta_lines.append(
                    f'  <meta name="x-org-{escape_html(key.strip())}" content="{escape_html(value.strip())}" />\n'
                )

        return (
            "<!doctype html>\n"
            "<html lang=\"en\">\n"
            "<head>\n"
            "  <meta charset=\"utf-8\" />\n"
            f"  <title>{safe_title}</title>\n"
            "  <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\" />\n"
            + "".join(meta_lines)
            + self.stylesheet_links()
            + "</head>\n"
            "<body>\n"
        )

    def stylesheet_links(self) -> str:
        return ""

    def close_html_document(self) -> str:
        """Return the HTML epilog."""
        return "</body>\n</html>\n"

    def render_document(self, doc: Document) -> str:
        """Render a complete HTML document."""
        body = self.render_body(doc)
        return self.open_html_document(doc) + body + self.close_html_document()
