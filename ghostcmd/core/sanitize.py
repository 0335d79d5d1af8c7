from __future__ import annotations

import re

_CSI_PATTERN = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
_CONTROL_PATTERN = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")
_EDGE_WHITESPACE = " \t\n"


def sanitize(text: str) -> str:
    """Strip terminal escapes and control bytes from untrusted text.

    CSI sequences are removed before stray ESC bytes so that a sequence is
    never left half-stripped. Tabs survive; every other control byte,
    including newlines and carriage returns, is dropped.
    """
    if not text:
        return ""
    cleaned = text
    while True:
        stripped = _CSI_PATTERN.sub("", cleaned)
        if stripped == cleaned:
            break
        cleaned = stripped
    cleaned = cleaned.replace("\x1b", "")
    cleaned = _CONTROL_PATTERN.sub("", cleaned)
    return cleaned.strip(_EDGE_WHITESPACE)
