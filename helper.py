from __future__ import annotations

import random
import re
import sys

PARAGRAPH_TAG_RE = re.compile(r"</?p(\s[^>]*)?>", re.IGNORECASE)


def print_event_gray(text: str) -> None:
    """
    Print event/debug output in gray using ANSI escape codes.
    """
    GRAY = "\033[90m"
    RESET = "\033[0m"
    print(f"{GRAY}{text}{RESET}", file=sys.stderr)


def next_id(limit: int, rng: random.Random | None = None) -> int:
    """
    Draw a uniformly distributed integer in [0, limit).

    Used as the numeric suffix of DOM ids. Draws are independent, so ids are
    only unique with high probability: with the default limit of 10,000,000
    and 200 annotations in one document the chance of any collision is
    about 0.2%. Pass a seeded `random.Random` for reproducible output.
    """
    if limit <= 0:
        raise ValueError(f"limit must be a positive integer, got {limit}")
    if rng is None:
        return random.randrange(limit)
    return rng.randrange(limit)


def strip_paragraph_tags(html: str, pattern: re.Pattern = PARAGRAPH_TAG_RE) -> str:
    """
    Remove every opening or closing <p> tag, leaving other markup untouched.

    Matches case-insensitively and tolerates attributes (<p class="x">).
    Only simple open/close pairs are handled; malformed nesting is passed
    through as whatever the regex leaves behind.
    """
    return pattern.sub("", html)
