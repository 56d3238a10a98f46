"""
Filesystem-safe encoding of stratum names.

Cell-type labels contain spaces, slashes, parentheses and plus/minus signs
("CD4+ Activated Fos-hi", "WNT2B+ Fos-lo 1"). Per-stratum result files are
named by an encoded key that decodes back to the exact label.

Escape scheme:
    - ASCII letters, digits and "." are kept (a leading "." is escaped).
    - A space becomes "_".
    - Characters with a named escape become "~name~", e.g. "+" -> "~plus~".
    - Any other character becomes "~uXXXX~" with its hex code point.

Example:
    >>> encode_stratum("CD4+ Activated Fos-hi")
    'CD4~plus~_Activated_Fos~minus~hi'
    >>> decode_stratum("CD4~plus~_Activated_Fos~minus~hi")
    'CD4+ Activated Fos-hi'
"""

from __future__ import annotations

import re
import string

_SAFE = frozenset(string.ascii_letters + string.digits + ".")

NAMED_ESCAPES: dict[str, str] = {
    "_": "us",
    "/": "slash",
    "+": "plus",
    "-": "minus",
    "(": "lp",
    ")": "rp",
    "~": "tilde",
    ",": "comma",
    "&": "amp",
    ":": "colon",
    "'": "apos",
}
_NAMED_UNESCAPES = {token: ch for ch, token in NAMED_ESCAPES.items()}

_TOKEN = re.compile(r"~([a-z0-9]+)~")
_CODEPOINT = re.compile(r"u[0-9a-f]{4,6}")


def encode_stratum(name: str) -> str:
    """
    Encode a stratum name as a filesystem-safe key.

    Args:
        name: Stratum label (non-empty).

    Returns:
        Encoded key usable as a file stem.
    """
    if not name:
        raise ValueError("Stratum name must be a non-empty string")

    parts = []
    for i, ch in enumerate(name):
        if ch == " ":
            parts.append("_")
        elif ch in _SAFE and not (i == 0 and ch == "."):
            parts.append(ch)
        elif ch in NAMED_ESCAPES:
            parts.append(f"~{NAMED_ESCAPES[ch]}~")
        else:
            parts.append(f"~u{ord(ch):04x}~")
    return "".join(parts)


def decode_stratum(key: str) -> str:
    """
    Decode a key produced by :func:`encode_stratum`.

    Args:
        key: Encoded stratum key.

    Returns:
        Original stratum label.

    Raises:
        ValueError: If the key is not a valid encoding.
    """
    if not key:
        raise ValueError("Stratum key must be a non-empty string")

    out = []
    pos = 0
    while pos < len(key):
        ch = key[pos]
        if ch == "_":
            out.append(" ")
            pos += 1
        elif ch == "~":
            match = _TOKEN.match(key, pos)
            if match is None:
                raise ValueError(f"Unterminated escape in stratum key {key!r} at {pos}")
            token = match.group(1)
            if token in _NAMED_UNESCAPES:
                out.append(_NAMED_UNESCAPES[token])
            elif _CODEPOINT.fullmatch(token):
                out.append(chr(int(token[1:], 16)))
            else:
                raise ValueError(f"Unknown escape ~{token}~ in stratum key {key!r}")
            pos = match.end()
        elif ch in _SAFE:
            out.append(ch)
            pos += 1
        else:
            raise ValueError(f"Unexpected character {ch!r} in stratum key {key!r}")
    return "".join(out)
