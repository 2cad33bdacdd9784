"""
Region Assigner
===============
Maps each extracted image to the question band that contains its
vertical origin.

Anchor i owns the half-open range (anchor[i+1].y, anchor[i].y]; the last
anchor owns everything below it. An image outside every band goes to
the closest anchor above it, or failing that the closest anchor overall.
"""

from __future__ import annotations

import logging
from typing import Optional

from .models import ExtractedImage, QuestionAnchor

logger = logging.getLogger(__name__)


def containing_band(y: float, anchors: list[QuestionAnchor]) -> Optional[int]:
    """Index of the anchor whose band contains `y`, or None."""
    for i, anchor in enumerate(anchors):
        lower = anchors[i + 1].y if i + 1 < len(anchors) else float("-inf")
        if lower < y <= anchor.y:
            return i
    return None


def nearest_anchor(y: float, anchors: list[QuestionAnchor]) -> Optional[int]:
    """Closest anchor at or above `y`, else the closest one below."""
    best_above: Optional[int] = None
    best_any: Optional[int] = None

    for i, anchor in enumerate(anchors):
        distance = anchor.y - y
        if distance >= 0 and (
            best_above is None or distance < anchors[best_above].y - y
        ):
            best_above = i
        if best_any is None or abs(distance) < abs(anchors[best_any].y - y):
            best_any = i

    return best_above if best_above is not None else best_any


def assign_anchor(y: float, anchors: list[QuestionAnchor]) -> Optional[int]:
    """Anchor index an image at height `y` belongs to."""
    if not anchors:
        return None
    index = containing_band(y, anchors)
    if index is None:
        index = nearest_anchor(y, anchors)
        logger.debug(f"Image at y={y:.1f} outside every band, using anchor {index}")
    return index


def assign_images(
    images: list[ExtractedImage],
    anchors: list[QuestionAnchor],
) -> dict[int, list[ExtractedImage]]:
    """
    Group images by the index of the anchor they belong to.
    Images on a page without anchors are left out.
    """
    assigned: dict[int, list[ExtractedImage]] = {}
    for image in images:
        index = assign_anchor(image.y, anchors)
        if index is None:
            continue
        assigned.setdefault(index, []).append(image)
    return assigned
