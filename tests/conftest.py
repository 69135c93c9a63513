import logging
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _restore_tierbackup_logger():
    logger = logging.getLogger("tierbackup")
    handlers = list(logger.handlers)
    level, propagate = logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    (root / "docs").mkdir(parents=True)
    (root / "cache").mkdir()
    (root / "README.md").write_text("hello\n", encoding="utf-8")
    (root / "docs" / "guide.txt").write_text("guide\n", encoding="utf-8")
    (root / "docs" / "draft.tmp").write_text("scratch\n", encoding="utf-8")
    (root / "cache" / "blob.bin").write_bytes(b"\x00" * 64)
    return root
