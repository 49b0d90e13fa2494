from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from itemflow.observability.logging import (
    LoggingConfig,
    correlation_scope,
    default_log_redactor,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)
from itemflow.pipeline.orchestrator import MutationOrchestrator
from itemflow.persistence.gateway import PersistenceGateway
from itemflow.persistence.store import InMemoryItemStore
from tests.builders import READER


def _read_lines(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


@pytest.fixture
def log_handle(tmp_path: Path):
    handle = setup_structured_logging(
        LoggingConfig(log_dir=tmp_path, logger_name="itemflow", level="DEBUG", log_to_stdout=False)
    )
    yield handle
    shutdown_logging(handle)


def test_json_lines_carry_correlation_and_extra_fields(log_handle) -> None:
    logger = logging.getLogger("itemflow.pipeline.orchestrator")

    with correlation_scope(mutation_id="mut-1", item_id="itm-1"):
        logger.info("mutation committed", extra={"version": 2})
    log_handle.shutdown()

    assert log_handle.log_path is not None
    assert log_handle.log_path.name == "itemflow.jsonl"
    [line] = _read_lines(log_handle.log_path)
    assert line["message"] == "mutation committed"
    assert line["level"] == "INFO"
    assert line["logger"] == "itemflow.pipeline.orchestrator"
    assert line["mutation_id"] == "mut-1"
    assert line["item_id"] == "itm-1"
    assert line["fields"] == {"version": 2}
    assert str(line["timestamp"]).endswith("Z")


def test_secrets_are_redacted_from_messages_and_fields(log_handle) -> None:
    logger = logging.getLogger("itemflow.collaborators")

    logger.warning("smtp login password=hunter2", extra={"api_key": "abc", "channel": "email"})
    log_handle.shutdown()

    [line] = _read_lines(log_handle.log_path)
    assert "hunter2" not in line["message"]
    assert line["fields"] == {"api_key": "***REDACTED***", "channel": "email"}


def test_correlation_scope_restores_previous_context() -> None:
    with correlation_scope(mutation_id="outer"):
        with correlation_scope(item_id="inner", mutation_id=None):
            assert get_correlation_context() == {"item_id": "inner"}
        assert get_correlation_context() == {"mutation_id": "outer"}
    assert get_correlation_context() == {}


def test_correlation_values_must_be_non_empty() -> None:
    with pytest.raises(ValueError, match="non-empty string"):
        with correlation_scope(mutation_id="  "):
            pass


@pytest.mark.asyncio
async def test_pipeline_runs_log_under_their_mutation_id(log_handle) -> None:
    orchestrator = MutationOrchestrator(PersistenceGateway(InMemoryItemStore()))

    outcome = await orchestrator.create_item({"name": "Denied"}, READER)
    log_handle.shutdown()

    lines = [line for line in _read_lines(log_handle.log_path) if line["message"] == "mutation aborted"]
    assert len(lines) == 1
    assert lines[0]["mutation_id"] == outcome.mutation_id
    assert lines[0]["fields"] == {"stage": "authorizing", "error_kind": "permission_denied"}


def test_setup_logging_reads_the_observability_section(tmp_path: Path) -> None:
    logger = setup_logging(
        {"log_level": "WARNING", "log_format": "text", "log_dir": str(tmp_path / "logs")}
    )
    try:
        assert logger.name == "itemflow"
        assert logger.level == logging.WARNING
        assert (tmp_path / "logs").is_dir()
    finally:
        shutdown_logging()


def test_invalid_logging_settings_are_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="unsupported logging level"):
        setup_structured_logging(LoggingConfig(log_dir=tmp_path, level="LOUD", log_to_stdout=False))
    with pytest.raises(ValueError, match="bare file name"):
        setup_structured_logging(
            LoggingConfig(log_dir=tmp_path, log_filename="../x.jsonl", log_to_stdout=False)
        )


def test_default_redactor_masks_bearer_tokens() -> None:
    assert default_log_redactor({"note": "Bearer abc.def"}) == {"note": "Bearer ***REDACTED***"}
