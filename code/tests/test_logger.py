import json
import logging

import pytest

from clustersim.utils.logger import get_logger, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_json_log_file(tmp_path, restore_root_logger):
    log_file = tmp_path / "logs" / "dcsim.jsonl"
    setup_logging(level="INFO", log_file=log_file, log_format="json", use_rich=False)
    get_logger("clustersim.test").info("Loaded scenario xid-79")
    logging.getLogger().handlers[-1].flush()

    record = json.loads(log_file.read_text().splitlines()[0])
    assert record["level"] == "INFO"
    assert record["logger"] == "clustersim.test"
    assert record["message"] == "Loaded scenario xid-79"


def test_unknown_level_falls_back_to_warning(restore_root_logger):
    setup_logging(level="chatty", use_rich=False)
    assert logging.getLogger().level == logging.WARNING
