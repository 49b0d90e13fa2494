from __future__ import annotations

import pytest

from itemflow.domain.errors import (
    ErrorKind,
    MutationError,
    MutationOutcome,
    MutationRejectedError,
    PersistenceFailure,
    SideEffectWarning,
    Violation,
    ViolationCode,
)


def test_outcome_requires_exactly_one_of_value_or_error() -> None:
    with pytest.raises(ValueError, match="exactly one"):
        MutationOutcome()
    with pytest.raises(ValueError, match="exactly one"):
        MutationOutcome(value=1, error=MutationError.not_found("itm-x"))


def test_unwrap_returns_value_or_raises_with_the_error() -> None:
    error = MutationError.version_mismatch(2, 3)

    assert MutationOutcome(value="ok").unwrap() == "ok"
    with pytest.raises(MutationRejectedError) as excinfo:
        MutationOutcome(error=error).unwrap()
    assert excinfo.value.error is error
    assert "conflict_version_mismatch" in str(excinfo.value)


def test_validation_failed_summarizes_violations() -> None:
    error = MutationError.validation_failed(
        [Violation("name", ViolationCode.REQUIRED, "is required")]
    )

    assert error.kind is ErrorKind.VALIDATION_FAILED
    assert error.message == "validation failed: name: is required"
    assert error.to_dict()["violations"] == [
        {"field": "name", "code": "required", "message": "is required"}
    ]


def test_processor_failure_records_step_and_cause() -> None:
    error = MutationError.processor_failure("enrich", KeyError("sku"))

    assert error.step_name == "enrich"
    assert error.cause == "KeyError: 'sku'"


def test_warning_from_exception_falls_back_to_type_name() -> None:
    warning = SideEffectWarning.from_exception("notification", "email", TimeoutError())

    assert warning.error_type == "TimeoutError"
    assert warning.message == "TimeoutError"


def test_persistence_failure_names_operation_and_item() -> None:
    failure = PersistenceFailure("update", "itm-1", OSError("disk full"))

    assert str(failure) == "update for 'itm-1' failed: OSError: disk full"
    assert failure.operation == "update"
