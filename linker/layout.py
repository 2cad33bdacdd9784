"""
Page Layout
===========
Turns positioned text fragments into ordered lines, finds the
"Question #N" anchors that split a page into bands, and rebuilds the
paragraphs of each band.
"""

from __future__ import annotations

import logging
import math
import re
from collections import defaultdict
from typing import Iterable, Optional

from .models import QuestionAnchor, TextBlock, TextFragment, TextLine

logger = logging.getLogger(__name__)

DEFAULT_LINE_BUCKET = 2.0
DEFAULT_PARAGRAPH_GAP = 18.0

# ─── Patterns ─────────────────────────────────────────────────────────────────

# "Question #12" anywhere in a line
QUESTION_ANCHOR_PATTERN = re.compile(r"Question\s*#\s*(\d+)", re.IGNORECASE)

# Lines that never belong to a paragraph
NOISE_PATTERNS = [
    re.compile(r"^Question\s*#\s*\d+", re.IGNORECASE),
    re.compile(r"^Topic\s*\d+", re.IGNORECASE),
    re.compile(r"^Most\s+Voted", re.IGNORECASE),
    re.compile(r"^Correct\s+Answer\s*:", re.IGNORECASE),
]

# "A. ...", "H) ..." - answer options end the question stem
OPTION_PATTERN = re.compile(r"^[A-H][.)](?:\s|$)")

_WHITESPACE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def is_noise_line(text: str) -> bool:
    stripped = text.strip()
    return any(p.match(stripped) for p in NOISE_PATTERNS)


def is_option_line(text: str) -> bool:
    return bool(OPTION_PATTERN.match(text.strip()))


# ─── Line Grouping ────────────────────────────────────────────────────────────


def _bucket(y: float, size: float) -> float:
    # Round half up so a fragment at exactly half a bucket is stable
    return math.floor(y / size + 0.5) * size


def group_lines(
    fragments: Iterable[TextFragment],
    bucket: float = DEFAULT_LINE_BUCKET,
) -> list[TextLine]:
    """
    Cluster fragments into lines ordered top to bottom.

    Fragments whose y rounds to the same bucket form one line, joined
    left to right with single spaces.
    """
    buckets: dict[float, list[TextFragment]] = defaultdict(list)
    for fragment in fragments:
        buckets[_bucket(fragment.y, bucket)].append(fragment)

    lines: list[TextLine] = []
    for y, members in buckets.items():
        members.sort(key=lambda f: f.x)
        text = normalize_whitespace(" ".join(f.text for f in members))
        if not text:
            continue
        lines.append(TextLine(text=text, x=members[0].x, y=y))

    lines.sort(key=lambda line: -line.y)
    return lines


# ─── Anchors ──────────────────────────────────────────────────────────────────


def parse_question_number(text: str) -> Optional[int]:
    """Question number of an anchor line, or None."""
    match = QUESTION_ANCHOR_PATTERN.search(text)
    if not match:
        return None
    try:
        return int(match.group(1))
    except ValueError:
        return None


def locate_anchors(lines: list[TextLine]) -> list[QuestionAnchor]:
    """Find question anchors in already ordered lines."""
    anchors: list[QuestionAnchor] = []
    seen: set[int] = set()

    for index, line in enumerate(lines):
        number = parse_question_number(line.text)
        if number is None:
            continue
        if number in seen:
            logger.debug(
                f"Question #{number} repeated at y={line.y:.1f}, ignoring"
            )
            continue
        seen.add(number)
        anchors.append(QuestionAnchor(
            question_number=number,
            y=line.y,
            line_index=index,
        ))

    return anchors


def band_bounds(
    anchors: list[QuestionAnchor], index: int, line_count: int
) -> tuple[int, int]:
    """Line index range [start, end) of the band after anchor `index`."""
    start = anchors[index].line_index + 1
    if index + 1 < len(anchors):
        end = anchors[index + 1].line_index
    else:
        end = line_count
    return start, end


# ─── Paragraphs ───────────────────────────────────────────────────────────────


class ParagraphBuilder:
    """
    Merges the lines of a band into paragraphs.

    Consecutive lines stay in one paragraph while the vertical gap to the
    previous band line, noise lines included, is at most `gap`. Scanning
    stops at the first option line.
    """

    def __init__(self, gap: float = DEFAULT_PARAGRAPH_GAP):
        self.gap = gap

    def build(
        self, lines: list[TextLine], start: int, end: int
    ) -> list[TextBlock]:
        paragraphs: list[TextBlock] = []
        current: list[TextLine] = []
        previous_y: Optional[float] = None

        for line in lines[start:end]:
            if is_option_line(line.text):
                break
            # Noise lines are dropped from the text but still count as the
            # previous line for gap measurement
            gap = None if previous_y is None else previous_y - line.y
            previous_y = line.y
            if is_noise_line(line.text):
                continue
            if current and gap > self.gap:
                paragraphs.append(self._flush(current))
                current = []
            current.append(line)

        if current:
            paragraphs.append(self._flush(current))

        return paragraphs

    def _flush(self, lines: list[TextLine]) -> TextBlock:
        text = normalize_whitespace(" ".join(line.text for line in lines))
        return TextBlock(y=lines[0].y, text=text)
