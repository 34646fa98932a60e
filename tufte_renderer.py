"""
tufte_renderer.py

Toggle-revealed annotations in the Tufte-CSS idiom.

A margin note or sidenote is three flat siblings:

    <label for=ID class=margin-toggle>SYMBOL</label>
    <input type=checkbox id=ID class=margin-toggle>
    <span class=marginnote>TEXT</span>

The hidden checkbox controls the visibility of the sibling content on narrow
screens, so no scripting is needed. Everything here is a pure string
transform except for the random nonce drawn for DOM ids.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import html
import random
import re

from helper import PARAGRAPH_TAG_RE, next_id, strip_paragraph_tags

DEFAULT_SYMBOL = "&#8853;"
DEFAULT_ID_LIMIT = 10_000_000
DEFAULT_FOOTNOTE_SEPARATOR = "<sup>, </sup>"


def _attr(value: str) -> str:
    return html.escape(value, quote=True)


@dataclass(frozen=True)
class AnnotationRequest:
    """
    What to show in the margin and where it anchors.

    Exactly one of `content` / `raw_text` is set:
      - raw_text: inline HTML, wrapped as <span class="marginnote">
      - content:  pre-rendered block (e.g. a <figure>), used verbatim
    placement_tag names the id; None means "auto".
    """
    content: Optional[str] = None
    raw_text: Optional[str] = None
    placement_tag: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.content is None) == (self.raw_text is None):
            raise ValueError("AnnotationRequest needs exactly one of content / raw_text")

    @classmethod
    def from_inline_html(
        cls,
        inline_html: str,
        placement_tag: Optional[str] = None,
        *,
        paragraph_tag_re: re.Pattern = PARAGRAPH_TAG_RE,
    ) -> "AnnotationRequest":
        """Build a raw_text request, stripping paragraph wrappers first."""
        return cls(
            raw_text=strip_paragraph_tags(inline_html, paragraph_tag_re),
            placement_tag=placement_tag or None,
        )


@dataclass(frozen=True)
class FootnoteOccurrence:
    sequence_number: int
    is_first_reference: bool
    nonce: str
    definition_html: str

    def __post_init__(self) -> None:
        if self.sequence_number <= 0:
            raise ValueError("sequence_number must be positive")


@dataclass(frozen=True)
class BlockWithCaption:
    body_html: str
    caption_html: str = ""

    def render(self, closing_tag: str) -> str:
        return with_caption(self.body_html, self.caption_html, closing_tag)


def make_toggle_id(
    placement_tag: Optional[str],
    limit: int = DEFAULT_ID_LIMIT,
    rng: random.Random | None = None,
) -> str:
    """
    Return 'mn-{tag}.{nonce}', tag defaulting to 'auto'.

    Whitespace runs in the tag become '-'; an id may not contain spaces.
    """
    tag = re.sub(r"\s+", "-", (placement_tag or "").strip()) or "auto"
    return f"mn-{tag}.{next_id(limit, rng)}"


def render_annotation(
    request: AnnotationRequest,
    symbol_glyph: str = DEFAULT_SYMBOL,
    *,
    limit: int = DEFAULT_ID_LIMIT,
    rng: random.Random | None = None,
) -> str:
    """
    Render label + checkbox + content as three flat siblings.

    The caller decides where the sequence is placed; nothing wraps it.
    `symbol_glyph` is inserted as-is so HTML entities keep working.
    """
    toggle_id = _attr(make_toggle_id(request.placement_tag, limit, rng))

    if request.raw_text is not None:
        content_html = f"<span class='marginnote'>{request.raw_text}</span>"
    else:
        content_html = request.content or ""

    return (
        f"<label for='{toggle_id}' class='margin-toggle'>{symbol_glyph}</label>"
        f"<input type='checkbox' id='{toggle_id}' class='margin-toggle'>"
        f"{content_html}"
    )


def footnote_reference_id(sequence_number: int) -> str:
    """
    Anchor of the first reference to a footnote.

    Footnote definition lists link back to '#fnr.N', so this must stay in
    sync with the back-links emitted for the footnote section.
    """
    return f"fnr.{sequence_number}"


def footnote_definition_id(sequence_number: int) -> str:
    return f"fn.{sequence_number}"


def render_footnote(
    occurrence: FootnoteOccurrence,
    preceded_by_footnote: bool = False,
    *,
    separator: str = DEFAULT_FOOTNOTE_SEPARATOR,
    paragraph_tag_re: re.Pattern = PARAGRAPH_TAG_RE,
) -> str:
    """
    Render a numbered sidenote.

    The first reference carries the canonical 'fnr.N' id; later references
    to the same footnote append the nonce so ids stay unique.
    """
    n = occurrence.sequence_number
    if occurrence.is_first_reference:
        label_id = footnote_reference_id(n)
    else:
        label_id = f"{footnote_reference_id(n)}.{occurrence.nonce}"
    input_id = f"fnr-in.{n}.{occurrence.nonce}"

    definition = strip_paragraph_tags(occurrence.definition_html, paragraph_tag_re).strip()

    prefix = separator if preceded_by_footnote else ""
    return (
        f"{prefix}"
        f"<label id='{_attr(label_id)}' for='{_attr(input_id)}' "
        f"class='margin-toggle sidenote-number'><sup class='numeral'>{n}</sup></label>"
        f"<input type='checkbox' id='{_attr(input_id)}' class='margin-toggle'>"
        f"<span class='sidenote'><sup class='numeral'>{n}</sup>{definition}</span>"
    )


def with_caption(exported_block_html: str, caption_html: str, closing_tag: str) -> str:
    """
    Splice `caption_html` right before the LAST `closing_tag` in the block.

    Returns the input unchanged if the caption is empty or the closing tag
    is missing (the caption is dropped rather than corrupting markup).
    """
    if not caption_html:
        return exported_block_html

    matches = list(re.finditer(re.escape(closing_tag), exported_block_html, re.IGNORECASE))
    if not matches:
        return exported_block_html

    pos = matches[-1].start()
    return exported_block_html[:pos] + caption_html + exported_block_html[pos:]
