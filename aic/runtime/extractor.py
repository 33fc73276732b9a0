"""Staged extraction of answer text from raw CLI-agent terminal output.

Every stage is a pure ``str -> str`` transform and can be tested alone.
Order matters: control sequences must be gone before any line pattern runs,
otherwise an embedded colour code defeats the match.

1. ``strip_control_sequences`` / ``strip_spinners``
2. ``strip_box_drawing``
3. ``strip_chrome_lines`` (adapter-specific patterns)
4. ``extract_marked_blocks`` (adapter-specific answer marker)
5. ``collapse_blank_lines``
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

# ── Control sequences ─────────────────────────────────────────────────────────

ANSI_FULL_RE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"  # CSI
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"  # OSC
    r"|\x1bP[^\x1b]*\x1b\\"  # DCS
    r"|\x1b[()*+][0-9A-Za-z]"  # charset select
    r"|\x1b[ -~]"  # two-byte escapes (ESC 7, ESC =, ...)
)
# Keep \t and \n; \r is normalized before this runs.
CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")

# Braille spinner frames (⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏ and variants)
SPINNER_RE = re.compile(r"[⠀-⣿]")

# ── Box drawing ───────────────────────────────────────────────────────────────

BOX_CHAR_RE = re.compile(r"[─-╿]")
# Lines made only of box-drawing or block elements (borders, Gemini logo)
BOX_LINE_RE = re.compile(r"[\s─-╿▀-▟]+")

BLANK_RUN_RE = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class ExtractionRules:
    """Adapter-specific inputs for stages 3 and 4."""

    chrome_patterns: tuple[re.Pattern[str], ...] = ()
    marker: str | None = None


def strip_control_sequences(text: str) -> str:
    """Remove CSI/OSC/DCS sequences and stray control characters."""
    cleaned = ANSI_FULL_RE.sub("", text)
    cleaned = cleaned.replace("\r\n", "\n").replace("\r", "\n")
    return CONTROL_CHAR_RE.sub("", cleaned)


def strip_spinners(text: str) -> str:
    """Remove spinner glyphs wherever they appear."""
    return SPINNER_RE.sub("", text)


def strip_box_drawing(text: str) -> str:
    """Drop border-only lines and box-drawing glyphs inside other lines."""
    kept: list[str] = []
    for line in text.split("\n"):
        if line.strip() and BOX_LINE_RE.fullmatch(line):
            continue
        kept.append(BOX_CHAR_RE.sub("", line))
    return "\n".join(kept)


def strip_chrome_lines(text: str, patterns: Iterable[re.Pattern[str]]) -> str:
    """Drop every line matched by one of the chrome patterns."""
    compiled = tuple(patterns)
    if not compiled:
        return text
    return "\n".join(
        line for line in text.split("\n") if not any(p.search(line) for p in compiled)
    )


def extract_marked_blocks(text: str, marker: str | None) -> str:
    """Keep only the blocks that start at a marker line.

    A block runs from a line starting with ``marker`` up to the next such line
    or the end of the text. Blank lines inside a block are kept as paragraph
    breaks. Without any marker line the text is returned unchanged.
    """
    if not marker:
        return text

    lead_re = re.compile(rf"^(?:{re.escape(marker)}\s*)+")
    blocks: list[list[str]] = []
    current: list[str] | None = None

    for line in text.split("\n"):
        stripped = line.strip()
        if stripped.startswith(marker):
            current = [lead_re.sub("", stripped)]
            blocks.append(current)
        elif current is not None:
            current.append(line if stripped else "")

    if not blocks:
        return text
    return "\n\n".join("\n".join(block).strip("\n") for block in blocks)


def collapse_blank_lines(text: str) -> str:
    """Empty whitespace-only lines, squeeze blank runs, trim the ends."""
    lines = [line.rstrip() for line in text.split("\n")]
    return BLANK_RUN_RE.sub("\n\n", "\n".join(lines)).strip()


def visible_line(line: str) -> str:
    """Text a user would see on one terminal line, without frame glyphs."""
    return BOX_CHAR_RE.sub("", strip_spinners(strip_control_sequences(line))).strip()


def clean_response(raw: str | bytes, rules: ExtractionRules | None = None) -> str:
    """Run the full pipeline. Never raises; idempotent on its own output."""
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8", errors="replace")
    rules = rules or ExtractionRules()

    text = strip_control_sequences(raw)
    text = strip_spinners(text)
    text = strip_box_drawing(text)
    text = strip_chrome_lines(text, rules.chrome_patterns)
    text = extract_marked_blocks(text, rules.marker)
    # A block's first line only becomes visible to the chrome patterns once
    # its marker is gone.
    text = strip_chrome_lines(text, rules.chrome_patterns)
    return collapse_blank_lines(text)
