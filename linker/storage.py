"""
Filesystem Storage
==================
Reads and writes the question JSON and the PNG files of linked images.

Directory Layout (relative to the output JSON):
    questions.json
    images/
    └── {document_name}/   # q{N}_p{page}_{ordinal}.png
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

DATA_DIR_NAME = "data"


# ─── Question JSON ────────────────────────────────────────────────────────────


def load_question_bank(path: str) -> Any:
    """Read the question JSON. Raises FileNotFoundError if it is missing."""
    json_path = Path(path)
    if not json_path.exists():
        raise FileNotFoundError(f"Question JSON not found: {json_path}")
    with open(json_path, "r", encoding="utf-8") as f:
        return json.load(f)


def save_question_bank(data: Any, path: str) -> Path:
    """
    Write the question JSON, replacing the file in one step so an
    interrupted run never leaves a truncated file behind.
    """
    json_path = Path(path)
    json_path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{json_path.name}.", suffix=".tmp", dir=json_path.parent
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_name, json_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.debug(f"Saved question JSON: {json_path}")
    return json_path


# ─── Images ───────────────────────────────────────────────────────────────────


def write_image(base_dir: str, relative_path: str, data: bytes) -> Path:
    """Write PNG bytes under `base_dir`, creating folders as needed."""
    dest = Path(base_dir) / Path(*relative_path.split("/"))
    dest.parent.mkdir(parents=True, exist_ok=True)
    with open(dest, "wb") as f:
        f.write(data)
    return dest


# ─── Helpers ──────────────────────────────────────────────────────────────────


def sanitize_name(name: str) -> str:
    """Sanitize a name for filesystem use."""
    return "".join(
        c if c.isalnum() or c in "-_ ." else "_"
        for c in name
    ).strip().replace(" ", "_")[:100]


def resolve_data_path(file_path: str, cwd: Optional[str] = None) -> str:
    """
    Resolve a CLI path against the `data` directory.

    Absolute paths are returned as is. Paths whose first component is
    `data` are resolved against the working directory, anything else
    against `<cwd>/data`.
    """
    if os.path.isabs(file_path):
        return file_path

    base = Path(cwd) if cwd else Path.cwd()
    parts = Path(file_path).parts
    if parts and parts[0] == DATA_DIR_NAME:
        return os.path.abspath(base / file_path)
    return os.path.abspath(base / DATA_DIR_NAME / file_path)
