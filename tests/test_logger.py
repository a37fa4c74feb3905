from __future__ import annotations

import logging

import pytest

from wsapi.common.logger import (
    MASK,
    RESERVED_RECORD_KEYS,
    CredentialRedactionFilter,
    PipelineLogger,
    redact,
)
from wsapi.core.connection.utils.logging.logging_mixin import ScopedConnectionLoggingMixin
from tests.factory_builders import build_scope_domain


def test_redact_masks_nested_sensitive_keys() -> None:
    payload = {
        "method": "session.logon",
        "params": {"apiKey": "k", "signature": "s", "timestamp": 1},
        "history": [{"api_secret": "x"}],
    }

    masked = redact(payload)

    assert masked["params"] == {"apiKey": MASK, "signature": MASK, "timestamp": 1}
    assert masked["history"] == [{"api_secret": MASK}]
    # 원본은 변경하지 않음
    assert payload["params"]["apiKey"] == "k"


def test_filter_masks_extra_attributes() -> None:
    record = logging.LogRecord("wsapi.test", logging.INFO, __file__, 1, "msg", None, None)
    record.signature = "deadbeef"
    record.params = {"apiKey": "k", "symbol": "BTCUSDT"}

    CredentialRedactionFilter().filter(record)

    assert record.signature == MASK
    assert record.params == {"apiKey": MASK, "symbol": "BTCUSDT"}
    assert record.msg == "msg"


def test_reserved_record_keys_cover_log_record_attributes() -> None:
    assert {"name", "msg", "args", "levelname", "message", "exc_info"} <= RESERVED_RECORD_KEYS


def test_pipeline_logger_redacts_before_emission(caplog: pytest.LogCaptureFixture) -> None:
    logger = PipelineLogger.get_logger("redaction", "test")

    with caplog.at_level(logging.INFO, logger=logger.logger_name):
        logger.info(
            "logon frame sent",
            extra={"ws_key": "mainWSAPI", "params": {"apiKey": "k", "signature": "s"}},
        )

    (record,) = [r for r in caplog.records if r.name == logger.logger_name]
    assert record.component == "test"
    assert record.ws_key == "mainWSAPI"
    assert record.params == {"apiKey": MASK, "signature": MASK}


def test_recreating_logger_does_not_duplicate_handlers() -> None:
    first = PipelineLogger.get_logger("dup", "test")
    second = PipelineLogger.get_logger("dup", "test")

    assert first.logger is second.logger
    assert len(second.logger.handlers) == 1
    assert len(second.logger.filters) == 1


def test_scoped_exception_log_carries_scope_and_traceback(
    caplog: pytest.LogCaptureFixture,
) -> None:
    class _Component(ScopedConnectionLoggingMixin):
        def __init__(self) -> None:
            self.scope = build_scope_domain()
            self._logger = PipelineLogger.get_logger("scoped", "test")

    component = _Component()
    try:
        raise RuntimeError("loop exploded")
    except RuntimeError as e:
        err = e

    with caplog.at_level(logging.ERROR, logger=component._logger.logger_name):
        component._log_exception("connection loop crashed", "connect", err, attempt=None)

    (record,) = [r for r in caplog.records if r.name == component._logger.logger_name]
    assert record.ws_key == "mainWSAPI"
    assert record.phase == "connect"
    assert record.error_type == "RuntimeError"
    assert record.exc_info is not None
    assert not hasattr(record, "attempt")
