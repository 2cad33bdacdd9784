"""
PDF Page Source
===============
Adapts a PDF file into what the linker consumes per page: an operator
stream, positioned text fragments and an image resolver.

pikepdf parses the content streams; PyMuPDF (fitz) decodes image pixels
and extracts text. Both report PDF user-space coordinates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional, Protocol

import fitz  # PyMuPDF
import pikepdf

from .errors import ImageResolutionError
from .models import Operator, OperatorKind, RawImage, TextFragment
from .operators import ImageResolver, ObjectTable

logger = logging.getLogger(__name__)

# Nested Form XObjects deeper than this are not followed
MAX_FORM_DEPTH = 16


@dataclass
class PageContent:
    """The inputs of one page."""
    page_number: int
    operators: Iterable[Operator]
    fragments: list[TextFragment] = field(default_factory=list)
    resolver: Optional[ImageResolver] = None


class PageSource(Protocol):
    """Anything that can hand out pages one at a time."""

    @property
    def page_count(self) -> int:
        ...

    def load_page(self, page_number: int) -> PageContent:
        ...


# ─── Pixel Decoding ───────────────────────────────────────────────────────────


def pixmap_to_raw(pix: fitz.Pixmap) -> RawImage:
    """Normalize a pixmap to RGB / RGBA samples."""
    if pix.colorspace is None:
        raise ImageResolutionError("Image has no colour space (stencil mask)")
    if pix.colorspace.n != 3:
        pix = fitz.Pixmap(fitz.csRGB, pix)
    return RawImage(width=pix.width, height=pix.height, data=pix.samples)


def pil_to_raw(image) -> RawImage:
    rgba = image.convert("RGBA")
    return RawImage(width=rgba.width, height=rgba.height, data=rgba.tobytes())


def _is_jpeg(xobj: pikepdf.Object) -> bool:
    filters = xobj.get("/Filter")
    if filters is None:
        return False
    if isinstance(filters, pikepdf.Array):
        return any(str(f) == "/DCTDecode" for f in filters)
    return str(filters) == "/DCTDecode"


def shared_image_name(objnum: int) -> str:
    """Document-wide name of an image stored as an indirect object."""
    return f"obj{objnum}"


class PdfImageResolver(ObjectTable):
    """
    Resolves image names for one page.

    Images that are indirect objects are named after their object number
    and decoded into the document-wide shared table, so a logo repeated on
    every page is decoded once. Direct image objects only live in the
    page-local table under their scoped resource name.
    """

    def __init__(self, doc: fitz.Document, shared: dict[str, RawImage]):
        super().__init__(shared=shared)
        self._doc = doc
        self._pending: dict[str, pikepdf.Object] = {}

    def register(self, xobj: pikepdf.Object, scoped: str) -> str:
        """Record an image XObject and return the name to paint it by."""
        objnum = xobj.objgen[0]
        name = shared_image_name(objnum) if objnum else scoped
        if name not in self.local and name not in self.shared:
            self._pending[name] = xobj
        return name

    def resolve(self, name: str) -> RawImage:
        xobj = self._pending.pop(name, None)
        if xobj is not None:
            self._decode(name, xobj)
        return super().resolve(name)

    def _decode(self, name: str, xobj: pikepdf.Object):
        objnum = xobj.objgen[0]
        try:
            if objnum:
                raw = pixmap_to_raw(fitz.Pixmap(self._doc, objnum))
            else:
                raw = pil_to_raw(pikepdf.PdfImage(xobj).as_pil_image())
        except ImageResolutionError:
            raise
        except Exception as e:
            raise ImageResolutionError(f"Cannot decode image {name}: {e}") from e

        table = self.shared if objnum else self.local
        table[name] = raw


# ─── Text ─────────────────────────────────────────────────────────────────────


def extract_fragments(page: fitz.Page) -> list[TextFragment]:
    """Text spans with their baseline origin in PDF user space."""
    to_pdf = ~page.transformation_matrix
    fragments: list[TextFragment] = []

    page_dict = page.get_text("dict", flags=fitz.TEXT_PRESERVE_WHITESPACE)
    for block in page_dict.get("blocks", []):
        if block["type"] != 0:
            continue
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                text = span.get("text", "")
                if not text.strip():
                    continue
                point = fitz.Point(span["origin"]) * to_pdf
                fragments.append(TextFragment(text=text, x=point.x, y=point.y))

    return fragments


# ─── Source ───────────────────────────────────────────────────────────────────


class PdfPageSource:
    """PageSource over a PDF file on disk."""

    def __init__(self, pdf_path: str):
        self.pdf_path = pdf_path
        self._doc = fitz.open(pdf_path)
        self._pdf = pikepdf.open(pdf_path)
        self._shared: dict[str, RawImage] = {}

    @property
    def page_count(self) -> int:
        return self._doc.page_count

    def load_page(self, page_number: int) -> PageContent:
        """Load a page by 1-indexed number. Operators are produced lazily."""
        fitz_page = self._doc[page_number - 1]
        pike_page = self._pdf.pages[page_number - 1]

        resolver = PdfImageResolver(self._doc, self._shared)
        operators = self._walk(
            pike_page.obj,
            pike_page.resources,
            resolver,
            scope="",
            depth=0,
        )
        return PageContent(
            page_number=page_number,
            operators=operators,
            fragments=extract_fragments(fitz_page),
            resolver=resolver,
        )

    def close(self):
        self._doc.close()
        self._pdf.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _walk(
        self,
        container: pikepdf.Object,
        resources: pikepdf.Object,
        resolver: PdfImageResolver,
        scope: str,
        depth: int,
    ) -> Iterator[Operator]:
        xobjects = resources.get("/XObject", {}) if resources is not None else {}

        for inst in pikepdf.parse_content_stream(container):
            if isinstance(inst, pikepdf.ContentStreamInlineImage):
                op = self._inline(inst.iimage)
                if op is not None:
                    yield op
                continue

            name = str(inst.operator)
            if name == "q":
                yield Operator(kind=OperatorKind.SAVE)
            elif name == "Q":
                yield Operator(kind=OperatorKind.RESTORE)
            elif name == "cm":
                yield Operator(
                    kind=OperatorKind.TRANSFORM,
                    args=tuple(float(v) for v in inst.operands),
                )
            elif name == "Do" and inst.operands:
                key = str(inst.operands[0])
                scoped = f"{scope}{key.lstrip('/')}"
                xobj = xobjects.get(key)
                if xobj is None:
                    yield Operator(kind=OperatorKind.PAINT_IMAGE, args=(scoped,))
                    continue

                subtype = str(xobj.get("/Subtype", ""))
                if subtype == "/Image":
                    image_name = resolver.register(xobj, scoped)
                    kind = (
                        OperatorKind.PAINT_JPEG_IMAGE if _is_jpeg(xobj)
                        else OperatorKind.PAINT_IMAGE
                    )
                    yield Operator(kind=kind, args=(image_name,))
                elif subtype == "/Form":
                    yield from self._form(xobj, resources, resolver, scoped, depth)

    def _form(
        self,
        xobj: pikepdf.Object,
        parent_resources: pikepdf.Object,
        resolver: PdfImageResolver,
        scoped: str,
        depth: int,
    ) -> Iterator[Operator]:
        if depth >= MAX_FORM_DEPTH:
            logger.warning(f"Form XObject {scoped} nested too deep, skipping")
            return

        yield Operator(kind=OperatorKind.SAVE)
        matrix = xobj.get("/Matrix")
        if matrix is not None:
            yield Operator(
                kind=OperatorKind.TRANSFORM,
                args=tuple(float(v) for v in matrix),
            )
        yield from self._walk(
            xobj,
            xobj.get("/Resources", parent_resources),
            resolver,
            scope=f"{scoped}/",
            depth=depth + 1,
        )
        yield Operator(kind=OperatorKind.RESTORE)

    def _inline(self, iimage) -> Optional[Operator]:
        try:
            raw = pil_to_raw(iimage.as_pil_image())
        except Exception as e:
            logger.warning(f"Failed decoding inline image: {e}")
            return None
        return Operator(kind=OperatorKind.PAINT_INLINE_IMAGE, payload=raw)
