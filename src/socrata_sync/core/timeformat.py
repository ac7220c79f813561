"""Translate reference-layout time patterns into strptime patterns.

Schema files describe dates with reference layouts built from the fixed
instant ``Mon Jan 2 15:04:05 MST 2006``: ``01/02/2006`` means month/day/year
and ``0304pm`` means a 12-hour clock with minutes and a meridiem marker.
Patterns that already contain ``%`` are treated as strptime patterns and used
unchanged.
"""

import re
from datetime import datetime
from functools import lru_cache

# Checked in order at each position; longer tokens precede their prefixes.
_LAYOUT_TOKENS: tuple[tuple[str, str], ...] = (
    ("January", "%B"),
    ("Jan", "%b"),
    ("Monday", "%A"),
    ("Mon", "%a"),
    ("MST", "%Z"),
    ("2006", "%Y"),
    ("002", "%j"),
    ("01", "%m"),
    ("02", "%d"),
    ("03", "%I"),
    ("04", "%M"),
    ("05", "%S"),
    ("06", "%y"),
    ("15", "%H"),
    ("_2", "%d"),
    ("Z07:00", "%z"),
    ("-07:00", "%z"),
    ("-0700", "%z"),
    ("PM", "%p"),
    ("pm", "%p"),
    ("1", "%m"),
    ("2", "%d"),
    ("3", "%I"),
    ("4", "%M"),
    ("5", "%S"),
)

_FRACTION = re.compile(r"[.,][09]+(?![0-9])")


@lru_cache(maxsize=256)
def to_strptime(layout: str) -> str:
    """Return the strptime pattern equivalent to ``layout``."""
    if "%" in layout:
        return layout
    out: list[str] = []
    i = 0
    while i < len(layout):
        fraction = _FRACTION.match(layout, i)
        if fraction:
            out.append(".%f")
            i = fraction.end()
            continue
        for token, directive in _LAYOUT_TOKENS:
            if layout.startswith(token, i):
                out.append(directive)
                i += len(token)
                break
        else:
            out.append(layout[i])
            i += 1
    return "".join(out)


def parse(value: str, layout: str) -> datetime:
    """Parse ``value`` with a reference layout or strptime pattern.

    Raises:
        ValueError: If the value does not match.
    """
    return datetime.strptime(value, to_strptime(layout))
