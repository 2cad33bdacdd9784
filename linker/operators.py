"""
Operator Stream Interpreter
===========================
Walks a page's recorded drawing operators, tracks the current transform
and collects every image paint large enough to be content.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Protocol

from .errors import ImageResolutionError
from .models import (
    ExtractedImage,
    Operator,
    OperatorKind,
    PAINT_KINDS,
    RawImage,
)
from .pixels import encode_png
from .transform import TransformStack, origin, to_matrix

logger = logging.getLogger(__name__)


class ImageResolver(Protocol):
    """Looks up named image objects for a page."""

    def resolve(self, name: str) -> RawImage:
        """Return decoded pixels or raise ImageResolutionError."""
        ...


class ObjectTable:
    """
    Name lookup over page-local objects first, then a shared table.
    Shared entries survive across pages of the same document.
    """

    def __init__(
        self,
        local: Optional[dict[str, RawImage]] = None,
        shared: Optional[dict[str, RawImage]] = None,
    ):
        self.local = local if local is not None else {}
        self.shared = shared if shared is not None else {}

    def resolve(self, name: str) -> RawImage:
        if name in self.local:
            return self.local[name]
        if name in self.shared:
            return self.shared[name]
        raise ImageResolutionError(f"Unknown image object: {name}")


class OperatorInterpreter:
    """Interprets one page's operator stream into ExtractedImages."""

    def __init__(self, min_width: int = 80, min_height: int = 80):
        self.min_width = min_width
        self.min_height = min_height

    def run(
        self,
        operators: Iterable[Operator],
        resolver: Optional[ImageResolver] = None,
    ) -> list[ExtractedImage]:
        """
        Interpret operators in order.

        Unresolvable image names are skipped. Any other error raised
        while iterating the stream propagates to the caller.
        """
        stack = TransformStack()
        images: list[ExtractedImage] = []

        for op in operators:
            if op.kind == OperatorKind.SAVE:
                stack.save()
            elif op.kind == OperatorKind.RESTORE:
                stack.restore()
            elif op.kind == OperatorKind.TRANSFORM:
                stack.apply(to_matrix(op.args))
            elif op.kind in PAINT_KINDS:
                image = self._paint(op, resolver, stack)
                if image is not None:
                    images.append(image)

        return images

    def _paint(
        self,
        op: Operator,
        resolver: Optional[ImageResolver],
        stack: TransformStack,
    ) -> Optional[ExtractedImage]:
        name = str(op.args[0]) if op.args else ""

        if op.payload is not None:
            raw = op.payload
        else:
            if resolver is None:
                logger.debug(f"No resolver for image {name!r}, skipping")
                return None
            try:
                raw = resolver.resolve(name)
            except ImageResolutionError as e:
                logger.debug(f"Skipping image paint: {e}")
                return None

        if raw.width < self.min_width or raw.height < self.min_height:
            return None

        png = encode_png(raw.data, raw.width, raw.height)
        if png is None:
            return None

        x, y = origin(stack.current)
        return ExtractedImage(
            png=png,
            width=raw.width,
            height=raw.height,
            x=x,
            y=y,
            name=name,
        )
