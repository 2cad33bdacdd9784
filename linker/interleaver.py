"""
Block Interleaver
=================
Merges a band's paragraphs and linked images into one top-to-bottom
sequence and renders it as HTML.
"""

from __future__ import annotations

import html
from pathlib import PurePosixPath
from typing import Sequence

from .models import ImageBlock, OrderedBlock, TextBlock


def image_relative_path(
    document_name: str,
    question_number: int,
    page_number: int,
    ordinal: int,
    images_dir: str = "images",
) -> str:
    """Path of a linked image relative to the output JSON directory."""
    filename = f"q{question_number}_p{page_number}_{ordinal}.png"
    return str(PurePosixPath(images_dir) / document_name / filename)


def image_alt_text(question_number: int, ordinal: int) -> str:
    return f"Question {question_number} image {ordinal}"


def interleave(
    paragraphs: Sequence[TextBlock],
    images: Sequence[ImageBlock],
) -> list[OrderedBlock]:
    """Order blocks by descending y; on equal y text comes first."""
    blocks: list[OrderedBlock] = [*paragraphs, *images]
    blocks.sort(key=lambda block: -block.y)
    return blocks


def render_block(block: OrderedBlock) -> str:
    if isinstance(block, ImageBlock):
        src = html.escape(block.relative_path)
        alt = html.escape(block.alt_text)
        return f'<p><img src="{src}" alt="{alt}" /></p>'
    return f"<p>{html.escape(block.text)}</p>"


def render_html(blocks: Sequence[OrderedBlock]) -> str:
    return "".join(render_block(block) for block in blocks)
