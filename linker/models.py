"""
Data Models
===========
Pydantic models for page geometry, extracted content and run reports.
Coordinates are PDF user space: y grows upward, so a larger y is higher
on the page.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field


# ─── Enums ────────────────────────────────────────────────────────────────────


class BlockType(str, Enum):
    """Type of an ordered content block."""
    TEXT = "text"
    IMAGE = "image"


class OperatorKind(str, Enum):
    """Drawing operators the interpreter understands."""
    SAVE = "save"
    RESTORE = "restore"
    TRANSFORM = "transform"
    PAINT_IMAGE = "paint_image"
    PAINT_INLINE_IMAGE = "paint_inline_image"
    PAINT_JPEG_IMAGE = "paint_jpeg_image"
    OTHER = "other"


PAINT_KINDS = frozenset({
    OperatorKind.PAINT_IMAGE,
    OperatorKind.PAINT_INLINE_IMAGE,
    OperatorKind.PAINT_JPEG_IMAGE,
})


# ─── Operator Stream ──────────────────────────────────────────────────────────


class RawImage(BaseModel):
    """Decoded pixel payload of an image object, row-major."""
    width: int
    height: int
    data: bytes = Field(description="RGB24 or RGBA32 samples")


class Operator(BaseModel):
    """
    One recorded drawing operation.

    `args` holds the six matrix values for TRANSFORM and the object name
    for named paints. Inline images carry their pixels in `payload`.
    """
    kind: OperatorKind
    args: tuple[Any, ...] = ()
    payload: Optional[RawImage] = None


# ─── Page Geometry ────────────────────────────────────────────────────────────


class TextFragment(BaseModel):
    """A positioned run of text as painted on the page."""
    text: str
    x: float
    y: float


class TextLine(BaseModel):
    """Fragments sharing one vertical bucket, joined left to right."""
    text: str
    x: float
    y: float


class QuestionAnchor(BaseModel):
    """A "Question #N" line marking the start of a question band."""
    question_number: int
    y: float
    line_index: int = Field(ge=0)


class ExtractedImage(BaseModel):
    """A qualifying image paint, already encoded as PNG."""
    png: bytes = Field(repr=False)
    width: int
    height: int
    x: float
    y: float
    name: str = ""


# ─── Ordered Blocks ───────────────────────────────────────────────────────────


class TextBlock(BaseModel):
    """A reconstructed paragraph."""
    type: Literal[BlockType.TEXT] = BlockType.TEXT
    y: float
    text: str


class ImageBlock(BaseModel):
    """A linked image, referenced by its path relative to the output JSON."""
    type: Literal[BlockType.IMAGE] = BlockType.IMAGE
    y: float
    relative_path: str
    alt_text: str = ""


OrderedBlock = Annotated[
    Union[TextBlock, ImageBlock], Field(discriminator="type")
]


# ─── Questions ────────────────────────────────────────────────────────────────


class QuestionRecord(BaseModel):
    """
    The two fields of a question entry this tool reads and writes.
    Everything else in the entry is passed through untouched.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    question_number: int = Field(alias="questionNumber")
    content: Optional[str] = None


# ─── Results ──────────────────────────────────────────────────────────────────


class ImageFile(BaseModel):
    """A PNG to be written for a linked image."""
    question_number: int
    ordinal: int = Field(ge=1)
    relative_path: str
    data: bytes = Field(repr=False)


class PageOutcome(BaseModel):
    """
    Everything one page contributes to the document.
    Produced without side effects and merged after the page succeeds.
    Which image files count as linked depends on the question JSON and is
    decided when the outcome is committed.
    """
    page_number: int = Field(ge=1)
    images_extracted: int = 0
    updates: dict[int, str] = Field(default_factory=dict)
    image_files: list[ImageFile] = Field(default_factory=list)
    ordinals: dict[int, int] = Field(default_factory=dict)


class LinkReport(BaseModel):
    """Summary of a full document run."""
    source_pdf: str = ""
    output_json: str = ""
    document_name: str = ""
    total_pages: int = 0
    pages_processed: int = 0
    failed_pages: list[int] = Field(default_factory=list)
    images_extracted: int = 0
    images_linked: int = 0
    updated_questions: list[int] = Field(default_factory=list)
    elapsed_seconds: float = 0.0

    @computed_field
    @property
    def updated_count(self) -> int:
        return len(self.updated_questions)
