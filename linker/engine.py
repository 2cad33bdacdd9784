"""
Linker Engine
=============
Main orchestrator: walks a PDF page by page, rebuilds each question band
as ordered HTML and writes the results back into the question JSON.

Usage:
    engine = LinkerEngine(config)
    report = engine.link("exam.pdf", "questions.json")

Architecture:
    Page → OperatorInterpreter → ExtractedImages ─┐
    Page → group_lines → locate_anchors ──────────┼→ assign_images →
    ParagraphBuilder → interleave → HTML → PageOutcome → DocumentState
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from .interleaver import (
    image_alt_text,
    image_relative_path,
    interleave,
    render_html,
)
from .layout import (
    DEFAULT_LINE_BUCKET,
    DEFAULT_PARAGRAPH_GAP,
    ParagraphBuilder,
    band_bounds,
    group_lines,
    locate_anchors,
)
from .models import ImageBlock, ImageFile, LinkReport, PageOutcome
from .operators import OperatorInterpreter
from .pdf_source import PageContent, PageSource, PdfPageSource
from .regions import assign_images
from .storage import (
    load_question_bank,
    sanitize_name,
    save_question_bank,
    write_image,
)
from .validator import QuestionBankValidator, log_report

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class LinkerConfig:
    """Configuration for the linker engine."""

    # Image filtering
    min_image_width: int = 80
    min_image_height: int = 80

    # Layout heuristics
    line_bucket: float = DEFAULT_LINE_BUCKET
    paragraph_gap: float = DEFAULT_PARAGRAPH_GAP

    # Output
    document_name: Optional[str] = None
    images_dir: str = "images"
    require_images: bool = False

    # Processing
    page_range: Optional[tuple[int, int]] = None

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


def configure_logging(
    level: str = "INFO", log_file: Optional[str] = None
) -> logging.Logger:
    """
    Attach a console handler and an optional file handler to the package
    logger.

    Repeated calls re-level the existing handlers instead of stacking new
    ones, and a given log file is attached at most once.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    package_logger = logging.getLogger("linker")
    package_logger.setLevel(log_level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers = list(package_logger.handlers)
    if not any(type(h) is logging.StreamHandler for h in handlers):
        handlers.append(logging.StreamHandler())

    if log_file:
        log_path = os.path.abspath(log_file)
        attached = {
            h.baseFilename for h in handlers
            if isinstance(h, logging.FileHandler)
        }
        if log_path not in attached:
            Path(log_path).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        if handler not in package_logger.handlers:
            package_logger.addHandler(handler)

    return package_logger


class PageLinker:
    """
    Builds the PageOutcome of a single page.

    Has no side effects: the ordinal counters it receives are read, never
    written, and nothing touches the filesystem.
    """

    def __init__(self, config: LinkerConfig, document_name: str):
        self.config = config
        self.document_name = document_name
        self.interpreter = OperatorInterpreter(
            min_width=config.min_image_width,
            min_height=config.min_image_height,
        )
        self.paragraphs = ParagraphBuilder(gap=config.paragraph_gap)

    def process(
        self, page: PageContent, ordinals: Mapping[int, int]
    ) -> PageOutcome:
        images = self.interpreter.run(page.operators, page.resolver)
        lines = group_lines(page.fragments, bucket=self.config.line_bucket)
        anchors = locate_anchors(lines)
        assigned = assign_images(images, anchors)

        outcome = PageOutcome(
            page_number=page.page_number,
            images_extracted=len(images),
        )
        if images and not anchors:
            logger.info(
                f"Page {page.page_number}: {len(images)} image(s) "
                f"but no question anchors, leaving them unlinked"
            )

        counters = dict(ordinals)
        for index, anchor in enumerate(anchors):
            number = anchor.question_number
            start, end = band_bounds(anchors, index, len(lines))
            paragraphs = self.paragraphs.build(lines, start, end)

            image_blocks: list[ImageBlock] = []
            for image in assigned.get(index, []):
                ordinal = counters.get(number, 0) + 1
                counters[number] = ordinal
                rel_path = image_relative_path(
                    self.document_name,
                    number,
                    page.page_number,
                    ordinal,
                    images_dir=self.config.images_dir,
                )
                outcome.image_files.append(ImageFile(
                    question_number=number,
                    ordinal=ordinal,
                    relative_path=rel_path,
                    data=image.png,
                ))
                image_blocks.append(ImageBlock(
                    y=image.y,
                    relative_path=rel_path,
                    alt_text=image_alt_text(number, ordinal),
                ))

            if self.config.require_images and not image_blocks:
                continue

            html = render_html(interleave(paragraphs, image_blocks))
            if html:
                outcome.updates[number] = html

        outcome.ordinals = {
            n: c for n, c in counters.items() if c != ordinals.get(n, 0)
        }
        return outcome


class DocumentState:
    """Everything that survives from one page to the next."""

    def __init__(self):
        self.ordinals: dict[int, int] = {}
        self.updated: set[int] = set()
        self.images_extracted = 0
        self.images_linked = 0
        self.pages_processed = 0
        self.failed_pages: list[int] = []

    def merge(self, outcome: PageOutcome, linked: int, updated: set[int]):
        self.ordinals.update(outcome.ordinals)
        self.updated |= updated
        self.images_extracted += outcome.images_extracted
        self.images_linked += linked
        self.pages_processed += 1


class LinkerEngine:
    """
    Links PDF images into question content.

    Pages are processed strictly in order. A page that raises is logged
    and skipped; the JSON is flushed after every page that yielded images.
    """

    def __init__(self, config: Optional[LinkerConfig] = None):
        self.config = config or LinkerConfig()
        configure_logging(self.config.log_level, self.config.log_file)

    def link(
        self,
        pdf_path: str,
        questions_path: str,
        output_path: Optional[str] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> LinkReport:
        """
        Link the images of a PDF into a question JSON file.

        Args:
            pdf_path: Source PDF.
            questions_path: Question JSON to read.
            output_path: Where to write the result (defaults to questions_path).
            progress_callback: Callback(done, total) called after each page.

        Returns:
            LinkReport for the run.

        Raises:
            FileNotFoundError: If the PDF or the JSON does not exist.
            InputContractError: If the JSON has no questions array.
        """
        pdf_path = os.path.abspath(pdf_path)
        if not os.path.exists(pdf_path):
            raise FileNotFoundError(f"PDF not found: {pdf_path}")

        output_path = os.path.abspath(output_path or questions_path)
        data = load_question_bank(questions_path)
        document_name = self.config.document_name or sanitize_name(
            Path(pdf_path).stem
        )

        logger.info(f"Linking images from: {pdf_path}")
        with PdfPageSource(pdf_path) as source:
            report = self.run(
                source,
                data,
                output_path,
                document_name,
                progress_callback=progress_callback,
            )
        report.source_pdf = os.path.basename(pdf_path)
        return report

    def run(
        self,
        source: PageSource,
        data: Any,
        output_path: str,
        document_name: str,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> LinkReport:
        """Process every page of `source` against the parsed JSON `data`."""
        start_time = time.time()
        questions = QuestionBankValidator().validate(data)

        first, last = self._page_bounds(source.page_count)
        total = max(0, last - first + 1)
        base_dir = str(Path(output_path).parent)

        page_linker = PageLinker(self.config, document_name)
        state = DocumentState()

        for position, page_number in enumerate(range(first, last + 1), start=1):
            try:
                page = source.load_page(page_number)
                outcome = page_linker.process(page, state.ordinals)
                self._commit(outcome, questions, base_dir, state)
            except Exception:
                logger.exception(f"Page {page_number} failed, skipping")
                state.failed_pages.append(page_number)
                outcome = None

            if outcome is not None and outcome.images_extracted:
                save_question_bank(data, output_path)

            if progress_callback:
                progress_callback(position, total)

        save_question_bank(data, output_path)

        report = LinkReport(
            output_json=output_path,
            document_name=document_name,
            total_pages=source.page_count,
            pages_processed=state.pages_processed,
            failed_pages=state.failed_pages,
            images_extracted=state.images_extracted,
            images_linked=state.images_linked,
            updated_questions=sorted(state.updated),
            elapsed_seconds=round(time.time() - start_time, 3),
        )
        log_report(report)
        return report

    def _page_bounds(self, page_count: int) -> tuple[int, int]:
        if not self.config.page_range:
            return 1, page_count
        start, end = self.config.page_range
        return max(1, start), min(page_count, end)

    def _commit(
        self,
        outcome: PageOutcome,
        questions: dict[int, dict],
        base_dir: str,
        state: DocumentState,
    ):
        """Write a page's images and content updates, then merge its state."""
        linked = 0
        for image_file in outcome.image_files:
            if image_file.question_number not in questions:
                continue
            write_image(base_dir, image_file.relative_path, image_file.data)
            linked += 1

        updated: set[int] = set()
        for number, html in outcome.updates.items():
            entry = questions.get(number)
            if entry is None:
                logger.debug(
                    f"Page {outcome.page_number}: Question #{number} "
                    f"is not in the JSON, skipping"
                )
                continue
            entry["content"] = html
            updated.add(number)

        state.merge(outcome, linked, updated)
        logger.info(
            f"Page {outcome.page_number}: {outcome.images_extracted} image(s), "
            f"{linked} linked, {len(updated)} question(s) updated"
        )
