# config_loader.py
from __future__ import annotations

from pathlib import Path
from typing import Any
import re

try:
    import yaml  # PyYAML
except ImportError as e:
    raise SystemExit(
        "Missing dependency: PyYAML\n"
        "Install with: python -m pip install pyyaml"
    ) from e


class TufteConfig:
    """
    Immutable container for Tufte export settings.

    Read at render time; never mutated during an export. Use
    `with_overrides()` to get a modified copy for a single export.
    """

    __slots__ = (
        "margin_note_symbol",
        "randid_limit",
        "include_footnotes_at_bottom",
        "expressive_inline_marginnotes",
        "footnote_separator",
        "marginnote_link_prefix",
        "marginnote_block_name",
        "marginnote_macro_name",
        "stylesheet",
        "paragraph_tag_re",
    )

    def __init__(
        self,
        *,
        margin_note_symbol: str,
        randid_limit: int,
        include_footnotes_at_bottom: bool,
        expressive_inline_marginnotes: bool,
        footnote_separator: str,
        marginnote_link_prefix: str,
        marginnote_block_name: str,
        marginnote_macro_name: str,
        stylesheet: str,
        paragraph_tag_re: re.Pattern,
    ):
        if randid_limit <= 0:
            raise ValueError("randid_limit must be a positive integer")
        set_ = object.__setattr__
        set_(self, "margin_note_symbol", margin_note_symbol)
        set_(self, "randid_limit", randid_limit)
        set_(self, "include_footnotes_at_bottom", include_footnotes_at_bottom)
        set_(self, "expressive_inline_marginnotes", expressive_inline_marginnotes)
        set_(self, "footnote_separator", footnote_separator)
        set_(self, "marginnote_link_prefix", marginnote_link_prefix)
        set_(self, "marginnote_block_name", marginnote_block_name.lower())
        set_(self, "marginnote_macro_name", marginnote_macro_name.lower())
        set_(self, "stylesheet", stylesheet)
        set_(self, "paragraph_tag_re", paragraph_tag_re)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"TufteConfig is immutable (tried to set {name!r})")

    def as_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.__slots__}

    def with_overrides(self, **changes: Any) -> "TufteConfig":
        """
        Return a copy with some settings replaced, e.g. for one export run.
        """
        unknown = set(changes) - set(self.__slots__)
        if unknown:
            raise TypeError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        values = self.as_dict()
        values.update(changes)
        return TufteConfig(**values)

    def __repr__(self) -> str:
        return f"TufteConfig({self.as_dict()!r})"


# ---------------- Defaults ---------------------------------------------------

DEFAULT_CONFIG = TufteConfig(
    margin_note_symbol="&#8853;",
    randid_limit=10_000_000,
    include_footnotes_at_bottom=False,
    expressive_inline_marginnotes=True,
    footnote_separator="<sup>, </sup>",
    marginnote_link_prefix="mn",
    marginnote_block_name="marginnote",
    marginnote_macro_name="marginnote",
    stylesheet="tufte.css",
    paragraph_tag_re=re.compile(r"</?p(\s[^>]*)?>", re.IGNORECASE),
)

# ---------------- Loader -----------------------------------------------------


def _as_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"{name} must be true or false")
    return value


def _as_str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string")
    return value


def _as_positive_int(value: Any, name: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer")
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer")
    return value


def config_from_mapping(raw: Any) -> TufteConfig:
    """
    Build a TufteConfig from an already-parsed YAML mapping.

    Missing keys fall back to DEFAULT_CONFIG.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise TypeError("Config root must be a mapping")

    regex = raw.get("regex", {}) or {}
    if not isinstance(regex, dict):
        raise TypeError("regex must be a mapping")

    d = DEFAULT_CONFIG
    return TufteConfig(
        margin_note_symbol=_as_str(
            raw.get("margin_note_symbol", d.margin_note_symbol), "margin_note_symbol"
        ),
        randid_limit=_as_positive_int(
            raw.get("randid_limit", d.randid_limit), "randid_limit"
        ),
        include_footnotes_at_bottom=_as_bool(
            raw.get("include_footnotes_at_bottom", d.include_footnotes_at_bottom),
            "include_footnotes_at_bottom",
        ),
        expressive_inline_marginnotes=_as_bool(
            raw.get("expressive_inline_marginnotes", d.expressive_inline_marginnotes),
            "expressive_inline_marginnotes",
        ),
        footnote_separator=_as_str(
            raw.get("footnote_separator", d.footnote_separator), "footnote_separator"
        ),
        marginnote_link_prefix=_as_str(
            raw.get("marginnote_link_prefix", d.marginnote_link_prefix),
            "marginnote_link_prefix",
        ),
        marginnote_block_name=_as_str(
            raw.get("marginnote_block_name", d.marginnote_block_name),
            "marginnote_block_name",
        ),
        marginnote_macro_name=_as_str(
            raw.get("marginnote_macro_name", d.marginnote_macro_name),
            "marginnote_macro_name",
        ),
        stylesheet=_as_str(raw.get("stylesheet", d.stylesheet), "stylesheet"),
        paragraph_tag_re=re.compile(
            regex.get("paragraph_tag_re", d.paragraph_tag_re.pattern),
            re.IGNORECASE,
        ),
    )


def load_config(path: Path) -> TufteConfig:
    """
    Load YAML config and return a TufteConfig instance.
    """
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    return config_from_mapping(raw)
