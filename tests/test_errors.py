from orchestrator.errors import (
    ProviderAPIError,
    is_schema_missing_error,
    missing_table_name,
    schema_not_initialized_message,
)


def test_missing_table_name_from_postgres_error() -> None:
    exc = RuntimeError('relation "usage_logs" does not exist')
    assert missing_table_name(exc) == "usage_logs"
    assert is_schema_missing_error(exc) is True


def test_missing_table_found_in_cause_chain() -> None:
    try:
        try:
            raise RuntimeError("no such table: tasks")
        except RuntimeError as inner:
            raise ValueError("query failed") from inner
    except ValueError as outer:
        assert missing_table_name(outer) == "tasks"


def test_unrelated_error_is_not_schema_error() -> None:
    assert is_schema_missing_error(RuntimeError("connection refused")) is False


def test_schema_message_mentions_migrate() -> None:
    message = schema_not_initialized_message(RuntimeError('relation "tasks" does not exist'))
    assert "missing table `tasks`" in message
    assert "orchestrator migrate" in message


def test_provider_api_error_carries_status() -> None:
    err = ProviderAPIError("boom", status_code=502, body="bad gateway")
    assert err.status_code == 502
    assert err.body == "bad gateway"
    assert str(err) == "boom"
