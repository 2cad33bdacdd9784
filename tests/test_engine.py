"""
Test Suite for the Linker Engine
================================
Page-level and document-level tests using in-memory page sources, plus
an end-to-end run over a PDF generated with PyMuPDF.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import fitz
import pytest
from click.testing import CliRunner

from linker.cli import cli
from linker.engine import (
    LinkerConfig,
    LinkerEngine,
    PageLinker,
    configure_logging,
)
from linker.errors import InputContractError
from linker.models import (
    PAINT_KINDS,
    Operator,
    OperatorKind,
    RawImage,
    TextFragment,
)
from linker.operators import ObjectTable
from linker.pdf_source import PageContent, PdfPageSource


def _raw(size: int = 100) -> RawImage:
    return RawImage(width=size, height=size, data=b"\x10\x20\x30" * (size * size))


def _image_ops(*placements: tuple[str, float]) -> list[Operator]:
    ops: list[Operator] = []
    for name, y in placements:
        ops += [
            Operator(kind=OperatorKind.SAVE),
            Operator(kind=OperatorKind.TRANSFORM, args=(100, 0, 0, 100, 72, y)),
            Operator(kind=OperatorKind.PAINT_IMAGE, args=(name,)),
            Operator(kind=OperatorKind.RESTORE),
        ]
    return ops


def _page(
    number: int,
    lines: list[tuple[str, float]],
    images: list[tuple[str, float]] = (),
    operators=None,
) -> PageContent:
    table = ObjectTable({name: _raw() for name, _ in images})
    return PageContent(
        page_number=number,
        operators=operators if operators is not None else _image_ops(*images),
        fragments=[TextFragment(text=t, x=72, y=y) for t, y in lines],
        resolver=table,
    )


class FakeSource:
    """In-memory PageSource."""

    def __init__(self, pages: list[PageContent]):
        self.pages = pages

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def load_page(self, page_number: int) -> PageContent:
        page = self.pages[page_number - 1]
        if isinstance(page, Exception):
            raise page
        return page


def _bank(*numbers: int) -> dict:
    return {
        "exam": "demo",
        "questions": [
            {
                "questionNumber": n,
                "content": f"original {n}",
                "options": ["A. x", "B. y"],
                "answer": "A",
            }
            for n in numbers
        ],
    }


def _content(data: dict, number: int) -> str:
    return next(
        q["content"] for q in data["questions"] if q["questionNumber"] == number
    )


# ═══════════════════════════════════════════════════════════════════════════════
# PAGE LINKER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestPageLinker:
    """Test per-page band reconstruction."""

    def _linker(self, **kwargs) -> PageLinker:
        return PageLinker(LinkerConfig(**kwargs), "exam")

    def test_text_only_band(self):
        page = _page(1, [
            ("Question #1", 760),
            ("Topic 2", 745),
            ("What is the capital of X?", 730),
            ("A. Paris", 715),
        ])
        outcome = self._linker().process(page, {})

        assert outcome.updates == {1: "<p>What is the capital of X?</p>"}
        assert outcome.images_extracted == 0
        assert outcome.image_files == []

    def test_text_image_text_order(self):
        page = _page(
            3,
            [
                ("Question #1", 720),
                ("Look at the", 700),
                ("diagram below.", 690),
                ("Which tier fails?", 650),
            ],
            images=[("Im1", 680)],
        )
        outcome = self._linker().process(page, {})

        assert outcome.updates[1] == (
            "<p>Look at the diagram below.</p>"
            '<p><img src="images/exam/q1_p3_1.png" alt="Question 1 image 1" /></p>'
            "<p>Which tier fails?</p>"
        )
        assert len(outcome.image_files) == 1
        assert outcome.image_files[0].relative_path == "images/exam/q1_p3_1.png"
        assert outcome.image_files[0].data.startswith(b"\x89PNG")
        assert outcome.ordinals == {1: 1}

    def test_boundary_image_goes_to_band_it_starts(self):
        page = _page(
            1,
            [("Question #1", 700), ("One", 680), ("Question #2", 400), ("Two", 380)],
            images=[("Im1", 400)],
        )
        outcome = self._linker().process(page, {})

        assert "img" not in outcome.updates[1]
        assert "q2_p1_1.png" in outcome.updates[2]

    def test_page_without_anchors_links_nothing(self):
        page = _page(1, [("Just a cover page", 700)], images=[("Im1", 400)])
        outcome = self._linker().process(page, {})

        assert outcome.images_extracted == 1
        assert outcome.image_files == []
        assert outcome.updates == {}

    def test_ordinals_continue_from_previous_pages(self):
        page = _page(
            5,
            [("Question #7", 700)],
            images=[("Im1", 600), ("Im2", 300)],
        )
        ordinals = {7: 2}
        outcome = self._linker().process(page, ordinals)

        assert [f.relative_path for f in outcome.image_files] == [
            "images/exam/q7_p5_3.png",
            "images/exam/q7_p5_4.png",
        ]
        assert outcome.ordinals == {7: 4}
        # Input counters are not modified
        assert ordinals == {7: 2}

    def test_require_images_skips_text_only_bands(self):
        page = _page(
            1,
            [("Question #1", 700), ("Text", 680), ("Question #2", 400), ("More", 380)],
            images=[("Im1", 350)],
        )
        outcome = self._linker(require_images=True).process(page, {})
        assert set(outcome.updates) == {2}

    def test_processing_is_repeatable(self):
        def make():
            return _page(
                1,
                [("Question #1", 700), ("Text", 680), ("After", 500)],
                images=[("Im1", 600)],
            )

        first = self._linker().process(make(), {})
        second = self._linker().process(make(), {})
        assert first.updates == second.updates


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestLinkerEngine:
    """Test document-level runs over fake sources."""

    def _run(self, tmp_path, pages, data, **config):
        output = tmp_path / "questions.json"
        engine = LinkerEngine(LinkerConfig(**config))
        report = engine.run(FakeSource(pages), data, str(output), "exam")
        return report, output

    def test_updates_content_and_writes_images(self, tmp_path):
        pages = [
            _page(
                1,
                [("Question #1", 760), ("Stem", 740), ("Question #2", 400), ("Stem two", 380)],
                images=[("Im1", 600)],
            ),
        ]
        data = _bank(1, 2)
        report, output = self._run(tmp_path, pages, data)

        written = json.loads(output.read_text(encoding="utf-8"))
        assert "q1_p1_1.png" in _content(written, 1)
        assert _content(written, 2) == "<p>Stem two</p>"
        assert (tmp_path / "images" / "exam" / "q1_p1_1.png").exists()

        assert report.images_extracted == 1
        assert report.images_linked == 1
        assert report.updated_questions == [1, 2]
        assert report.pages_processed == 1

    def test_other_fields_pass_through(self, tmp_path):
        pages = [_page(1, [("Question #1", 760), ("Stem", 740)])]
        report, output = self._run(tmp_path, pages, _bank(1))

        written = json.loads(output.read_text(encoding="utf-8"))
        assert written["exam"] == "demo"
        q = written["questions"][0]
        assert q["options"] == ["A. x", "B. y"]
        assert q["answer"] == "A"
        assert list(q) == ["questionNumber", "content", "options", "answer"]

    def test_unlinked_images_on_anchorless_page(self, tmp_path):
        pages = [_page(1, [("Cover", 700)], images=[("Im1", 400)])]
        report, output = self._run(tmp_path, pages, _bank(1))

        assert report.images_extracted == 1
        assert report.images_linked == 0
        assert report.updated_questions == []
        assert not (tmp_path / "images").exists()
        written = json.loads(output.read_text(encoding="utf-8"))
        assert _content(written, 1) == "original 1"

    def test_failing_page_is_isolated(self, tmp_path, caplog):
        def exploding_stream():
            yield Operator(kind=OperatorKind.SAVE)
            raise RuntimeError("malformed operator list")

        pages = [
            _page(1, [("Question #1", 700), ("One", 680)], images=[("Im1", 600)]),
            _page(2, [("Question #2", 700), ("Two", 680)], operators=exploding_stream()),
            _page(3, [("Question #3", 700), ("Three", 680)], images=[("Im1", 600)]),
        ]
        with caplog.at_level(logging.ERROR, logger="linker"):
            report, output = self._run(tmp_path, pages, _bank(1, 2, 3))

        assert report.failed_pages == [2]
        assert report.pages_processed == 2
        assert report.updated_questions == [1, 3]
        assert report.images_linked == 2
        assert any("Page 2" in r.getMessage() for r in caplog.records)

        written = json.loads(output.read_text(encoding="utf-8"))
        assert _content(written, 2) == "original 2"

    def test_page_that_fails_to_load(self, tmp_path):
        pages = [
            RuntimeError("cannot read page"),
            _page(2, [("Question #1", 700), ("Body", 680)]),
        ]
        report, _ = self._run(tmp_path, pages, _bank(1))
        assert report.failed_pages == [1]
        assert report.updated_questions == [1]

    def test_flushes_after_pages_with_images(self, tmp_path):
        output = tmp_path / "questions.json"
        seen: list[str] = []

        def on_page(done, total):
            if output.exists():
                seen.append(_content(json.loads(output.read_text("utf-8")), 1))
            else:
                seen.append("")

        pages = [
            _page(1, [("Question #1", 700), ("Body", 680)], images=[("Im1", 600)]),
            _page(2, [("Question #2", 700), ("Body", 680)]),
        ]
        engine = LinkerEngine(LinkerConfig())
        engine.run(FakeSource(pages), _bank(1, 2), str(output), "exam",
                   progress_callback=on_page)

        assert "q1_p1_1.png" in seen[0]

    def test_ordinals_persist_across_pages(self, tmp_path):
        pages = [
            _page(1, [("Question #4", 700)], images=[("Im1", 600)]),
            _page(2, [("Question #4", 700)], images=[("Im1", 600)]),
        ]
        report, _ = self._run(tmp_path, pages, _bank(4))

        folder = tmp_path / "images" / "exam"
        assert sorted(p.name for p in folder.iterdir()) == [
            "q4_p1_1.png",
            "q4_p2_2.png",
        ]
        assert report.images_linked == 2

    def test_unknown_question_is_not_linked(self, tmp_path):
        pages = [_page(1, [("Question #99", 700)], images=[("Im1", 600)])]
        report, _ = self._run(tmp_path, pages, _bank(1))

        assert report.images_extracted == 1
        assert report.images_linked == 0
        assert report.updated_questions == []

    def test_linked_count_ignores_unknown_questions(self, tmp_path):
        pages = [_page(
            1,
            [("Question #1", 700), ("Question #99", 400)],
            images=[("Im1", 600), ("Im2", 300)],
        )]
        report, _ = self._run(tmp_path, pages, _bank(1))

        assert report.images_extracted == 2
        assert report.images_linked == 1
        folder = tmp_path / "images" / "exam"
        assert [p.name for p in folder.iterdir()] == ["q1_p1_1.png"]

    def test_page_range(self, tmp_path):
        pages = [
            _page(1, [("Question #1", 700), ("One", 680)]),
            _page(2, [("Question #2", 700), ("Two", 680)]),
        ]
        report, _ = self._run(tmp_path, pages, _bank(1, 2), page_range=(2, 5))
        assert report.updated_questions == [2]
        assert report.pages_processed == 1

    def test_invalid_input_stops_before_pages(self, tmp_path):
        class Untouchable(FakeSource):
            def load_page(self, page_number):
                raise AssertionError("page processed")

        engine = LinkerEngine(LinkerConfig())
        with pytest.raises(InputContractError):
            engine.run(Untouchable([None]), {"items": []},
                       str(tmp_path / "out.json"), "exam")
        assert not (tmp_path / "out.json").exists()

    def test_missing_pdf(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            LinkerEngine().link(str(tmp_path / "none.pdf"), str(tmp_path / "q.json"))


# ═══════════════════════════════════════════════════════════════════════════════
# PDF INTEGRATION TESTS
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def sample_pdf(tmp_path) -> Path:
    """One page: question text, a 120x120 image, more text, then options."""
    doc = fitz.open()
    page = doc.new_page(width=595, height=842)
    page.insert_text((72, 100), "Question #1", fontsize=11)
    page.insert_text((72, 115), "Topic 1", fontsize=11)
    page.insert_text((72, 130), "What does the diagram show?", fontsize=11)

    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 120, 120), False)
    pix.clear_with(200)
    page.insert_image(fitz.Rect(72, 150, 192, 270), pixmap=pix)

    # Too small to count as content
    icon = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 16, 16), False)
    icon.clear_with(50)
    page.insert_image(fitz.Rect(300, 150, 316, 166), pixmap=icon)

    page.insert_text((72, 300), "Explain the flow.", fontsize=11)
    page.insert_text((72, 320), "A. Option one", fontsize=11)

    path = tmp_path / "sample.pdf"
    doc.save(str(path))
    doc.close()
    return path


@pytest.fixture
def sample_json(tmp_path) -> Path:
    path = tmp_path / "questions.json"
    path.write_text(json.dumps(_bank(1)), encoding="utf-8")
    return path


class TestPdfPageSource:
    """Test the pikepdf / PyMuPDF adapter on a real file."""

    def test_operators_and_fragments(self, sample_pdf):
        with PdfPageSource(str(sample_pdf)) as source:
            assert source.page_count == 1
            page = source.load_page(1)
            operators = list(page.operators)
            fragments = page.fragments

        kinds = {op.kind for op in operators}
        assert OperatorKind.PAINT_IMAGE in kinds
        assert OperatorKind.TRANSFORM in kinds

        question = next(f for f in fragments if "Question #1" in f.text)
        # PDF space: y measured up from the bottom of an 842pt page
        assert question.y == pytest.approx(742, abs=1)
        assert question.x == pytest.approx(72, abs=1)

    def test_repeated_image_is_decoded_once(self, tmp_path):
        doc = fitz.open()
        pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 100, 100), False)
        pix.clear_with(120)
        first = doc.new_page(width=595, height=842)
        xref = first.insert_image(fitz.Rect(72, 100, 172, 200), pixmap=pix)
        second = doc.new_page(width=595, height=842)
        second.insert_image(fitz.Rect(72, 400, 172, 500), xref=xref)
        path = tmp_path / "repeated.pdf"
        doc.save(str(path))
        doc.close()

        names = []
        resolvers = []
        with PdfPageSource(str(path)) as source:
            for page_number in (1, 2):
                page = source.load_page(page_number)
                paints = [op for op in page.operators if op.kind in PAINT_KINDS]
                assert len(paints) == 1
                name = paints[0].args[0]
                assert page.resolver.resolve(name).width == 100
                names.append(name)
                resolvers.append(page.resolver)

        assert names == [f"obj{xref}", f"obj{xref}"]
        assert resolvers[0].shared is resolvers[1].shared
        assert list(resolvers[0].shared) == [f"obj{xref}"]
        assert resolvers[1].local == {}

    def test_link_end_to_end(self, sample_pdf, sample_json):
        report = LinkerEngine(LinkerConfig()).link(
            str(sample_pdf), str(sample_json)
        )

        assert report.images_extracted == 1
        assert report.images_linked == 1
        assert report.updated_questions == [1]

        data = json.loads(sample_json.read_text(encoding="utf-8"))
        assert _content(data, 1) == (
            "<p>What does the diagram show?</p>"
            '<p><img src="images/sample/q1_p1_1.png" alt="Question 1 image 1" /></p>'
            "<p>Explain the flow.</p>"
        )
        png = sample_json.parent / "images" / "sample" / "q1_p1_1.png"
        assert fitz.Pixmap(str(png)).width == 120


class TestCli:
    """Test the click commands."""

    def test_link_json_output(self, sample_pdf, sample_json, tmp_path):
        output = tmp_path / "linked.json"
        result = CliRunner().invoke(cli, [
            "link", str(sample_pdf), str(sample_json),
            "--output", str(output), "--document-name", "exam", "--json-output",
        ])

        assert result.exit_code == 0, result.output
        report = json.loads(result.output)
        assert report["updated_questions"] == [1]
        assert (tmp_path / "images" / "exam" / "q1_p1_1.png").exists()
        # Input file untouched when --output is given
        assert _content(json.loads(sample_json.read_text("utf-8")), 1) == "original 1"

    def test_link_rejects_invalid_json(self, sample_pdf, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text('{"items": []}', encoding="utf-8")
        result = CliRunner().invoke(cli, ["link", str(sample_pdf), str(bad)])
        assert result.exit_code == 1
        assert "Invalid input" in result.output

    @staticmethod
    def _page_row(output: str, page_number: int) -> list[str]:
        for line in output.splitlines():
            cells = [c.strip() for c in line.split("│")[1:-1]]
            if cells and cells[0] == str(page_number):
                return cells
        raise AssertionError(f"No row for page {page_number}:\n{output}")

    def test_info_surveys_pages(self, sample_pdf):
        result = CliRunner().invoke(cli, ["info", str(sample_pdf)])
        assert result.exit_code == 0
        # Both paints are counted, only the 120x120 image is content
        assert self._page_row(result.output, 1) == ["1", "#1", "2", "1"]
        assert "at least 80x80 pixels" in result.output

    def test_info_respects_minimum_size(self, sample_pdf):
        result = CliRunner().invoke(
            cli, ["info", str(sample_pdf), "--min-image-width", "200"]
        )
        assert result.exit_code == 0
        assert self._page_row(result.output, 1) == ["1", "#1", "2", "0"]

    def test_info_missing_pdf(self, tmp_path):
        result = CliRunner().invoke(cli, ["info", str(tmp_path / "nope.pdf")])
        assert result.exit_code == 1
        assert "PDF not found" in result.output


# ═══════════════════════════════════════════════════════════════════════════════
# LOGGING TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestLogging:
    """Test package logger configuration."""

    def test_repeated_configuration_does_not_stack_handlers(self, tmp_path):
        log_file = tmp_path / "logs" / "linker.log"
        package_logger = logging.getLogger("linker")
        before = list(package_logger.handlers)
        try:
            configure_logging("INFO", str(log_file))
            configure_logging("DEBUG", str(log_file))
            added = [h for h in package_logger.handlers if h not in before]
            files = [h for h in added if isinstance(h, logging.FileHandler)]

            assert len(files) == 1
            assert files[0].level == logging.DEBUG
            assert package_logger.level == logging.DEBUG

            logging.getLogger("linker.engine").debug("page walk started")
            files[0].flush()
            assert "page walk started" in log_file.read_text(encoding="utf-8")
        finally:
            for handler in package_logger.handlers[:]:
                if handler not in before:
                    package_logger.removeHandler(handler)
                    handler.close()
            configure_logging("INFO")
