#!/usr/bin/env python3
"""
org_tufte.py

Tufte-CSS backend on top of the generic HtmlExporter:

- footnote references  -> numbered sidenotes
- [[mn:tag][text]]     -> margin notes
- {{{marginnote(...)}}} -> margin notes (args joined with line breaks)
- #+begin_marginnote   -> margin notes holding a whole block (e.g. a figure)
- quote / verse / special block captions -> <footer> before the closing tag
- figures              -> caption as margin note, or <figcaption> for fullwidth
- sections             -> <section>, document -> <article>

All three margin-note syntaxes build an AnnotationRequest and go through
tufte_renderer.render_annotation.
"""
from __future__ import annotations
from pathlib import Path
from typing import Callable, Optional
import argparse
import random
import re
import sys

from config_loader import DEFAULT_CONFIG, TufteConfig, load_config
from helper import next_id, strip_paragraph_tags
from org_html import HtmlExporter, escape_html, id_attr
from org_nodes import (
    Document,
    Figure,
    FootnoteReference,
    Link,
    MacroCall,
    QuoteBlock,
    Section,
    SpecialBlock,
    SrcBlock,
    VerseBlock,
    load_document,
)
from tufte_renderer import (
    AnnotationRequest,
    BlockWithCaption,
    FootnoteOccurrence,
    render_annotation,
    render_footnote,
)

ORG_LINE_BREAK = "\\\\\n"

_SINGLE_FIGURE_RE = re.compile(r"^\s*<figure\b.*</figure>\s*$", re.IGNORECASE | re.DOTALL)
_BLOCK_TAG_RE = re.compile(r"<(blockquote|div|pre|figure|ul|ol|dl|table|section|h[1-6])\b", re.IGNORECASE)


# ---------------- Adapters: syntax -> AnnotationRequest ----------------------


def link_to_request(
    link: Link,
    render_inline: Callable[[str], str],
    cfg: TufteConfig = DEFAULT_CONFIG,
) -> Optional[AnnotationRequest]:
    """
    [[mn:tag][text]] -> request with raw_text=text, placement_tag=tag.

    Returns None for links that are not margin notes.
    """
    prefix = f"{cfg.marginnote_link_prefix}:"
    if not link.path.startswith(prefix):
        return None
    tag = link.path[len(prefix):].strip() or None
    text_html = render_inline(link.description or "")
    return AnnotationRequest.from_inline_html(
        text_html, tag, paragraph_tag_re=cfg.paragraph_tag_re
    )


def special_block_to_request(
    node: SpecialBlock,
    body_html: str,
    cfg: TufteConfig = DEFAULT_CONFIG,
) -> Optional[AnnotationRequest]:
    """
    #+begin_marginnote … #+end_marginnote -> request.

    A body that is exactly one <figure> is used verbatim as content. Other
    block-level bodies (quotes, lists, code) are wrapped in a
    <div class="marginnote"> so no block tag ends up inside a <span>;
    paragraph-only bodies are flattened into an inline margin note.
    """
    if node.block_type.lower() != cfg.marginnote_block_name:
        return None
    body = body_html.strip()
    if _SINGLE_FIGURE_RE.match(body) and len(re.findall(r"<figure\b", body, re.IGNORECASE)) == 1:
        return AnnotationRequest(content=body, placement_tag=node.name or None)
    if _BLOCK_TAG_RE.search(body):
        return AnnotationRequest(
            content=f'<div class="marginnote">\n{body}\n</div>',
            placement_tag=node.name or None,
        )
    return AnnotationRequest.from_inline_html(
        body, node.name, paragraph_tag_re=cfg.paragraph_tag_re
    )


def macro_to_request(
    call: MacroCall,
    render_inline: Callable[[str], str],
    cfg: TufteConfig = DEFAULT_CONFIG,
) -> Optional[AnnotationRequest]:
    """
    {{{marginnote(a, b)}}} -> request with the args joined by line breaks.

    With expressive_inline_marginnotes off the args are escaped verbatim
    instead of being rendered as Org markup.
    """
    if call.name.lower() != cfg.marginnote_macro_name:
        return None
    if cfg.expressive_inline_marginnotes:
        text_html = render_inline(ORG_LINE_BREAK.join(call.args))
    else:
        text_html = "<br />".join(escape_html(a) for a in call.args)
    return AnnotationRequest.from_inline_html(
        text_html, None, paragraph_tag_re=cfg.paragraph_tag_re
    )


# ---------------- Exporter ---------------------------------------------------


class TufteExporter(HtmlExporter):
    def __init__(
        self,
        cfg: TufteConfig = DEFAULT_CONFIG,
        *,
        rng: random.Random | None = None,
        trace: bool = False,
        asset_prefix: str = "",
    ):
        super().__init__(cfg, rng=rng, trace=trace, asset_prefix=asset_prefix)
        self.register_macro(cfg.marginnote_macro_name, self._marginnote_macro)

    def annotation(self, request: AnnotationRequest) -> str:
        return render_annotation(
            request,
            self.cfg.margin_note_symbol,
            limit=self.cfg.randid_limit,
            rng=self.rng,
        )

    def footer(self, caption: Optional[str]) -> str:
        if not caption:
            return ""
        return f"<footer>{self.render_inline(caption)}</footer>"

    # ---------- inline ----------
    def transcode_link(self, link: Link) -> str:
        request = link_to_request(link, self.render_inline, self.cfg)
        if request is None:
            return super().transcode_link(link)
        return self.annotation(request)

    def _marginnote_macro(self, call: MacroCall) -> str:
        request = macro_to_request(call, self.render_inline, self.cfg)
        return self.annotation(request) if request is not None else ""

    def transcode_footnote_reference(
        self,
        ref: FootnoteReference,
        *,
        preceded_by_footnote: bool = False,
    ) -> str:
        occurrence = FootnoteOccurrence(
            sequence_number=self.resolver.number_of(ref),
            is_first_reference=self.resolver.is_first_occurrence(ref),
            nonce=str(next_id(self.cfg.randid_limit, self.rng)),
            definition_html=self.footnote_definition_html(ref),
        )
        return render_footnote(
            occurrence,
            preceded_by_footnote,
            separator=self.cfg.footnote_separator,
            paragraph_tag_re=self.cfg.paragraph_tag_re,
        )

    # ---------- blocks ----------
    def transcode_quote_block(self, node: QuoteBlock) -> str:
        exported = super().transcode_quote_block(node)
        return BlockWithCaption(exported, self.footer(node.caption)).render("</blockquote>")

    def transcode_verse_block(self, node: VerseBlock) -> str:
        exported = super().transcode_verse_block(node)
        return BlockWithCaption(exported, self.footer(node.caption)).render("</div>")

    def transcode_special_block(self, node: SpecialBlock) -> str:
        if node.block_type.lower() == self.cfg.marginnote_block_name:
            body = self.render_blocks(node.children)
            return self.annotation(special_block_to_request(node, body, self.cfg)) + "\n"
        exported = super().transcode_special_block(node)
        return BlockWithCaption(exported, self.footer(node.caption)).render("</div>")

    def transcode_src_block(self, node: SrcBlock) -> str:
        note = ""
        if node.caption:
            note = self.annotation(
                AnnotationRequest.from_inline_html(
                    self.render_inline(node.caption),
                    paragraph_tag_re=self.cfg.paragraph_tag_re,
                )
            )
        return (
            f"{note}<pre class=\"code\"{id_attr(node.name)}>"
            f"<code>{escape_html(node.code)}</code></pre>\n"
        )

    def transcode_figure(self, node: Figure) -> str:
        classes = (node.html_class or "").split()
        if "fullwidth" in classes:
            exported = f"<figure{self.figure_attributes(node)}>{self.image_html(node)}</figure>\n"
            caption = ""
            if node.caption:
                caption = f"<figcaption>{self.render_inline(node.caption)}</figcaption>"
            return BlockWithCaption(exported, caption).render("</figure>")

        note = ""
        if node.caption:
            note = self.annotation(
                AnnotationRequest.from_inline_html(
                    self.render_inline(node.caption),
                    node.name,
                    paragraph_tag_re=self.cfg.paragraph_tag_re,
                )
            )
        return f"<figure{self.figure_attributes(node)}>{note}{self.image_html(node)}</figure>\n"

    def transcode_section(self, node: Section) -> str:
        return (
            "<section>\n"
            f"{self.section_heading(node)}"
            f"{self.render_blocks(node.children)}"
            "</section>\n"
        )

    # ---------- documents ----------
    def render_body(self, doc: Document) -> str:
        self.begin(doc.footnotes)
        body = self.render_blocks(doc.children)
        if self.cfg.include_footnotes_at_bottom:
            body += self.render_footnote_section()
        return body

    def stylesheet_links(self) -> str:
        return f'  <link rel="stylesheet" href="{escape_html(self.cfg.stylesheet)}" />\n'

    def title_block(self, doc: Document) -> str:
        out = ""
        if doc.title:
            out += f'<h1 class="title">{self.render_inline(doc.title)}</h1>\n'
        if doc.subtitle:
            out += f'<p class="subtitle">{self.render_inline(doc.subtitle)}</p>\n'
        return out

    def render_document(self, doc: Document) -> str:
        body = self.render_body(doc)
        title = self.title_block(doc)
        return (
            self.open_html_document(doc)
            + "<article>\n"
            + title
            + body
            + "</article>\n"
            + self.close_html_document()
        )


def make_exporter(
    cfg: TufteConfig = DEFAULT_CONFIG,
    *,
    seed: Optional[int] = None,
    trace: bool = False,
    asset_prefix: str = "",
) -> TufteExporter:
    rng = random.Random(seed) if seed is not None else None
    return TufteExporter(cfg, rng=rng, trace=trace, asset_prefix=asset_prefix)


def export_fragment(
    text: str,
    cfg: TufteConfig = DEFAULT_CONFIG,
    *,
    seed: Optional[int] = None,
) -> str:
    """
    Render one paragraph of inline Org text, paragraph tags stripped.
    """
    exporter = make_exporter(cfg, seed=seed)
    exporter.begin()
    return strip_paragraph_tags(exporter.render_inline(text), cfg.paragraph_tag_re)


def export_document(
    doc: Document,
    cfg: TufteConfig = DEFAULT_CONFIG,
    *,
    seed: Optional[int] = None,
    trace: bool = False,
) -> str:
    """Render a Document into a complete Tufte HTML page."""
    return make_exporter(cfg, seed=seed, trace=trace).render_document(doc)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="org_tufte.py",
        description="Export a structured outline document to Tufte-CSS HTML.",
    )
    parser.add_argument("input", help="YAML document description")
    parser.add_argument(
        "-o",
        "--output",
        default="-",
        help="Output HTML file, '-' for stdout (default: -)",
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Config YAML file (default: config.yml if present)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for margin-note ids, for reproducible output",
    )
    parser.add_argument(
        "--footnotes-at-bottom",
        action="store_true",
        help="Also emit the footnote section at the end of the document",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Trace every exported node on stderr",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)

    try:
        if args.config is not None:
            cfg = load_config(Path(args.config))
        elif Path("config.yml").exists():
            cfg = load_config(Path("config.yml"))
        else:
            cfg = DEFAULT_CONFIG
        if args.footnotes_at_bottom:
            cfg = cfg.with_overrides(include_footnotes_at_bottom=True)
    except Exception as e:
        print(f"[org_tufte] Failed to load config: {e}", file=sys.stderr)
        return 2

    try:
        doc = load_document(Path(args.input))
    except Exception as e:
        print(f"[org_tufte] Invalid input document: {e}", file=sys.stderr)
        return 2

    try:
        html_out = export_document(doc, cfg, seed=args.seed, trace=args.verbose)
    except Exception as e:
        print(f"[org_tufte] Error while exporting: {e}", file=sys.stderr)
        return 1

    if args.output == "-":
        sys.stdout.write(html_out)
    else:
        Path(args.output).write_text(html_out, encoding="utf-8")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
