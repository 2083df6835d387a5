from __future__ import annotations

import re

"""Instrument -> base symbol extraction.

Exports name the traded contract ("ES SEP25", "NQ 03-25", "MES DEC25"); trades
are stored under the root symbol so that every expiry of the same product
lands in one bucket.
"""

__all__ = [
    "INSTRUMENT_ALIASES",
    "extract_symbol",
]

# Known roots map to themselves; aliases cover vendor spellings of the same root.
INSTRUMENT_ALIASES: dict[str, str] = {
    root: root
    for root in (
        "ES", "MES", "NQ", "MNQ", "RTY", "M2K", "YM", "MYM", "CL", "MCL", "GC", "MGC",
        "SI", "ZB", "ZN", "ZF", "ZC", "ZS", "ZW", "NG", "6E", "6J", "6B",
    )
}
INSTRUMENT_ALIASES.update({
    "EMD": "ES",  # legacy mini S&P ticker used by some feeds
    "ENQ": "NQ",
})

_MONTH_CODE_RE = re.compile(
    r"^([A-Z0-9]+)\s+(?:JAN|FEB|MAR|APR|MAY|JUN|JUL|AUG|SEP|OCT|NOV|DEC)\d{2}\b"
)
_LEGACY_EXPIRY_RE = re.compile(r"^([A-Z0-9]+)\s+\d{2}-\d{2}\b")
_SEPARATOR_RE = re.compile(r"[\s\-_]")


def extract_symbol(instrument: str | None) -> str:
    """Strip contract month/year suffixes from an instrument string.

    >>> extract_symbol("ES SEP25")
    'ES'
    >>> extract_symbol("nq 03-25")
    'NQ'
    >>> extract_symbol("")
    ''
    """
    if not instrument:
        return ""
    clean = instrument.strip().upper()
    if not clean:
        return ""
    if clean in INSTRUMENT_ALIASES:
        return INSTRUMENT_ALIASES[clean]

    for pattern in (_MONTH_CODE_RE, _LEGACY_EXPIRY_RE):
        m = pattern.match(clean)
        if m:
            root = m.group(1)
            return INSTRUMENT_ALIASES.get(root, root)

    base = _SEPARATOR_RE.split(clean)[0]
    return INSTRUMENT_ALIASES.get(base, base)
