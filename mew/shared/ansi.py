"""Terminal escape-sequence stripping for rendering pty output."""
from __future__ import annotations

import re

ANSI_CSI_PATTERN = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
ANSI_OSC_PATTERN = re.compile(r"\x1b\][^\x07]*(?:\x07|\x1b\\)")


def strip_ansi(text: str) -> str:
    """Remove CSI (colours, cursor moves) and OSC (titles, links) sequences."""
    return ANSI_OSC_PATTERN.sub("", ANSI_CSI_PATTERN.sub("", text))
