"""
Validation
==========
Checks the question JSON before any page is touched and logs the
end-of-run report.

A document without a `questions` array, or with entries lacking an
integer `questionNumber`, stops the run immediately.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from pydantic import ValidationError

from .errors import InputContractError
from .models import LinkReport, QuestionRecord

logger = logging.getLogger(__name__)


class QuestionBankValidator:
    """Validates the question JSON and indexes it by question number."""

    def validate(self, data: Any) -> dict[int, dict]:
        """
        Validate the document and index its question entries.

        Args:
            data: Parsed JSON document.

        Returns:
            Mapping of question number to the (mutable) raw entry. When a
            number repeats, the first entry wins.

        Raises:
            InputContractError: If the document shape is invalid.
        """
        if not isinstance(data, dict) or not isinstance(data.get("questions"), list):
            raise InputContractError(
                "Input JSON must be an object with a 'questions' array"
            )

        index: dict[int, dict] = {}
        numbers: list[int] = []

        for position, entry in enumerate(data["questions"]):
            if not isinstance(entry, dict):
                raise InputContractError(
                    f"Question entry {position} is not an object"
                )
            try:
                record = QuestionRecord.model_validate(entry)
            except ValidationError as e:
                raise InputContractError(
                    f"Question entry {position} is invalid: {e}"
                ) from e

            numbers.append(record.question_number)
            index.setdefault(record.question_number, entry)

        duplicates = sorted(n for n, c in Counter(numbers).items() if c > 1)
        if duplicates:
            logger.warning(f"Duplicate question numbers: {duplicates}")

        logger.info(f"Loaded {len(index)} questions")
        return index


def log_report(report: LinkReport):
    """Log a framed summary of a run."""
    logger.info("=" * 60)
    logger.info("LINK REPORT")
    logger.info("=" * 60)
    logger.info(f"Document: {report.document_name}")
    logger.info(
        f"Pages Processed: {report.pages_processed}/{report.total_pages}"
    )
    if report.failed_pages:
        logger.info(f"Failed Pages: {report.failed_pages}")
    logger.info(f"Images Extracted: {report.images_extracted}")
    logger.info(f"Images Linked: {report.images_linked}")
    logger.info(
        f"Updated Questions ({report.updated_count}): "
        f"{report.updated_questions}"
    )
    logger.info("=" * 60)
