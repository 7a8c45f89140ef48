from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import allure
import pytest

from applypass.logging_setup import setup_logging

pytestmark = [
    allure.epic("Operations"),
    allure.feature("Logging"),
]


@pytest.fixture()
def restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    logging.captureWarnings(False)


@pytest.mark.usefixtures("restore_root_logger")
def test_setup_logging_writes_to_log_file(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "applypass.log"

    setup_logging(level=logging.INFO, log_file=log_file)
    logging.getLogger("applypass.worker.runtime").info("Worker %s claimed task", "worker-a")
    logging.getLogger("applypass.worker.runtime").debug("not written at INFO")
    logging.getLogger("httpx").info("third-party chatter")
    for handler in logging.getLogger().handlers:
        handler.flush()

    content = log_file.read_text("utf-8")
    assert "INFO applypass.worker.runtime: Worker worker-a claimed task" in content
    assert "not written at INFO" not in content
    assert "third-party chatter" not in content


@pytest.mark.usefixtures("restore_root_logger")
def test_setup_logging_without_file_installs_single_console_handler() -> None:
    setup_logging(level=logging.DEBUG)

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0], logging.StreamHandler)
    assert not isinstance(root.handlers[0], logging.FileHandler)
