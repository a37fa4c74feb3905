from __future__ import annotations

import pytest

from wsapi.common.events import ErrorEvent, EventBus
from wsapi.core.connection.services.error_handler import ConnectionErrorHandler
from wsapi.core.types import WsKey
from tests.factory_builders import build_scope_domain


def test_error_handler_scope_log_extra_has_standard_keys() -> None:
    scope = build_scope_domain(WsKey.USDM_WS_API, market="usdm")
    handler = ConnectionErrorHandler(scope, EventBus())

    payload = handler._scope_log_extra("connection_error", attempt=1, url=None)

    assert payload["ws_key"] == WsKey.USDM_WS_API.value
    assert payload["market"] == "usdm"
    assert payload["endpoint_kind"] == "ws_api"
    assert payload["phase"] == "connection_error"
    assert payload["attempt"] == 1
    assert "url" not in payload


@pytest.mark.asyncio
async def test_connection_error_is_published_with_scope_and_context() -> None:
    scope = build_scope_domain()
    bus = EventBus()
    handler = ConnectionErrorHandler(scope, bus)
    errors: list[ErrorEvent] = []
    bus.on(ErrorEvent, errors.append)

    await handler.emit_connection_error(
        OSError("refused"), url=scope.url, attempt=2, backoff=1.5
    )

    (event,) = errors
    assert event.kind == "ws"
    assert event.target == scope
    assert event.context == {"url": scope.url, "attempt": 2, "backoff": 1.5}


@pytest.mark.asyncio
async def test_session_error_uses_session_kind() -> None:
    bus = EventBus()
    handler = ConnectionErrorHandler(build_scope_domain(), bus)
    errors: list[ErrorEvent] = []
    bus.on(ErrorEvent, errors.append)

    await handler.emit_session_error(RuntimeError("rejected"), attempt=1)

    assert [e.kind for e in errors] == ["session"]
    assert errors[0].context == {"attempt": 1}
