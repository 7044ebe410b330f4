import json
import logging

import pytest

from logging_config import HumanFormatter, JSONFormatter, setup_logging


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(msg="import from %s failed", args=("Vendor",), level=logging.WARNING):
    return logging.LogRecord("importer", level, __file__, 1, msg, args, None)


def test_json_formatter():
    payload = json.loads(JSONFormatter().format(make_record()))
    assert payload["level"] == "WARNING"
    assert payload["logger"] == "importer"
    assert payload["msg"] == "import from Vendor failed"


def test_human_formatter():
    line = HumanFormatter().format(make_record())
    assert "WARNING" in line
    assert "importer: import from Vendor failed" in line


def test_setup_logging_with_file(tmp_path, restore_root):
    log_file = tmp_path / "logs" / "gateflow.log"
    setup_logging("debug", "json", str(log_file))
    assert restore_root.level == logging.DEBUG
    assert len(restore_root.handlers) == 2

    logging.getLogger("scan").error("scan of %s failed", "A1")
    for handler in restore_root.handlers:
        handler.flush()
    (line,) = log_file.read_text().splitlines()
    assert json.loads(line)["msg"] == "scan of A1 failed"


def test_context_fields_are_carried():
    record = make_record()
    record.event_id, record.source = "ev1", "Vendor"
    payload = json.loads(JSONFormatter().format(record))
    assert (payload["event_id"], payload["source"]) == ("ev1", "Vendor")
    assert "ticket_id" not in payload
    assert HumanFormatter().format(record).endswith("(event_id=ev1 source=Vendor)")


def test_http_client_logs_are_quiet(restore_root):
    setup_logging("info", "human")
    assert logging.getLogger("httpx").getEffectiveLevel() == logging.WARNING
    setup_logging("debug", "human")
    assert logging.getLogger("httpx").getEffectiveLevel() == logging.DEBUG
