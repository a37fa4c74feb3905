from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest
from pydantic import ValidationError

from wsapi.application.engine import WsApiEngine
from wsapi.common.events import (
    ConnectionStateChangedEvent,
    ErrorEvent,
    ResubscriptionFailedEvent,
)
from wsapi.common.exceptions.base import (
    ConnectionClosed,
    ConnectionReset,
    ConnectionUnavailable,
    NotAuthenticated,
    OperationError,
    RequestTimeout,
    UnsupportedOperationForConnection,
)
from wsapi.core.connection.authenticator import Credentials
from wsapi.core.dto.io.frames import StreamMessageDTO
from wsapi.core.dto.io.session import TimeResultDTO
from wsapi.core.types import ConnectionPhase, SessionPhase, WsKey
from tests.factory_builders import (
    build_combined_stream_payload,
    build_connection_policy_domain,
    build_error_payload,
    build_rate_limit_payload,
    build_response_payload,
    build_session_status_result,
)
from tests.fake_websocket import ExchangeResponder, FakeConnector

SPOT = WsKey.MAIN_WS_API
STREAM = WsKey.MAIN


def _credentials() -> Credentials:
    return Credentials(api_key="test-api-key", api_secret="test-secret")


def _engine(
    connector: FakeConnector,
    *,
    credentials: Credentials | None = None,
    **policy_overrides: Any,
) -> WsApiEngine:
    return WsApiEngine(
        credentials=credentials,
        policy=build_connection_policy_domain(**policy_overrides),
        connector=connector,
    )


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_spot_account_status_logs_in_then_sends_request_one() -> None:
    responder = ExchangeResponder(
        handlers={
            "account.status": lambda frame: [
                build_response_payload(
                    frame["id"],
                    result={"data": "Normal"},
                    rate_limits=[build_rate_limit_payload(count=5, limit=1200)],
                )
            ]
        }
    )
    connector = FakeConnector(responder)
    engine = _engine(connector, credentials=_credentials())

    response = await engine.request(SPOT, "account.status")

    ws = connector.current
    assert ws.methods() == ["session.logon", "account.status"]
    assert ws.sent[0]["id"] == "auth-1"
    assert ws.sent[1]["id"] == 1
    assert response.id == 1
    assert response.status == 200
    assert response.result == {"data": "Normal"}

    (entry,) = engine.get_rate_limits(SPOT).entries
    assert (entry.rate_limit_type, entry.interval, entry.interval_num) == (
        "REQUEST_WEIGHT",
        "MINUTE",
        1,
    )
    assert entry.count == 5
    assert entry.limit == 1200

    state = engine.get_state(SPOT)
    assert state.phase == ConnectionPhase.READY
    assert state.session_phase == SessionPhase.AUTHENTICATED
    await engine.close_all()


@pytest.mark.asyncio
async def test_responses_out_of_order_settle_their_own_requests() -> None:
    connector = FakeConnector(ExchangeResponder(auto_reply=False))
    engine = _engine(connector)

    first = await engine.send(SPOT, "time")
    second = await engine.send(SPOT, "time")
    ws = connector.current
    ws.feed(build_response_payload(2, result={"serverTime": 2}))
    ws.feed(build_response_payload(1, result={"serverTime": 1}))

    r1, r2 = await asyncio.gather(first, second)

    assert [frame["id"] for frame in ws.sent] == [1, 2]
    assert (r1.id, r1.result) == (1, {"serverTime": 1})
    assert (r2.id, r2.result) == (2, {"serverTime": 2})
    await engine.close_all()


@pytest.mark.asyncio
async def test_drop_before_response_fails_with_connection_reset() -> None:
    connector = FakeConnector(ExchangeResponder(auto_reply=False))
    engine = _engine(connector)

    pending = await engine.send(SPOT, "time")
    connector.current.drop()

    with pytest.raises(ConnectionReset):
        await pending

    await engine.connect(SPOT)
    assert connector.attempts == 2
    assert engine.get_state(SPOT).reconnect_attempts == 0

    # 재연결 후 이전 id의 응답은 새 요청을 정산하지 않음
    fresh = await engine.send(SPOT, "time")
    assert connector.current.sent[-1]["id"] == 2
    connector.current.feed(build_response_payload(1))
    await asyncio.sleep(0.02)
    assert fresh.done() is False
    await engine.close_all()


@pytest.mark.asyncio
async def test_subscriptions_are_restored_after_reconnect() -> None:
    connector = FakeConnector(ExchangeResponder())
    engine = _engine(connector)

    await engine.subscribe(STREAM, ["btcusdt@trade", "ethusdt@depth"])
    before = engine.get_subscriptions(STREAM)
    connector.current.drop()

    await _wait_until(
        lambda: connector.attempts == 2 and len(connector.current.sent) == 2
    )

    replayed = sorted(frame["params"][0] for frame in connector.current.sent)
    assert replayed == sorted(before)
    assert engine.get_subscriptions(STREAM) == before == {"btcusdt@trade", "ethusdt@depth"}
    await engine.close_all()


@pytest.mark.asyncio
async def test_failed_resubscription_is_reported_and_removed() -> None:
    reject = {"enabled": False}

    def _subscribe(frame: dict[str, Any]) -> list[dict[str, Any]]:
        if reject["enabled"] and "bad@trade" in frame["params"]:
            return [build_error_payload(frame["id"], code=-1121, msg="Invalid symbol.", status=None)]
        return [{"id": frame["id"], "result": None}]

    connector = FakeConnector(ExchangeResponder(handlers={"SUBSCRIBE": _subscribe}))
    engine = _engine(connector)
    failures: list[ResubscriptionFailedEvent] = []
    engine.on(ResubscriptionFailedEvent, failures.append)

    await engine.subscribe(STREAM, ["btcusdt@trade", "bad@trade"])
    reject["enabled"] = True
    connector.current.drop()

    await _wait_until(lambda: bool(failures))

    assert failures[0].topic == "bad@trade"
    assert failures[0].ws_key == STREAM
    await _wait_until(lambda: engine.get_subscriptions(STREAM) == {"btcusdt@trade"})
    await engine.close_all()


@pytest.mark.asyncio
async def test_auth_required_operation_without_credentials_sends_nothing() -> None:
    connector = FakeConnector(ExchangeResponder())
    engine = _engine(connector)

    with pytest.raises(NotAuthenticated):
        await engine.request(SPOT, "account.status")
    assert connector.attempts == 0

    await engine.connect(SPOT)
    with pytest.raises(NotAuthenticated):
        await engine.request(SPOT, "order.place", {"symbol": "BTCUSDT"})
    assert connector.current.sent == []
    await engine.close_all()


@pytest.mark.asyncio
async def test_logout_reverts_session_and_blocks_signed_operations() -> None:
    connector = FakeConnector(ExchangeResponder())
    engine = _engine(connector, credentials=_credentials())

    await engine.request(SPOT, "session.logout")

    assert engine.get_state(SPOT).session_phase == SessionPhase.UNAUTHENTICATED
    with pytest.raises(NotAuthenticated):
        await engine.request(SPOT, "account.status")
    assert connector.current.methods() == ["session.logon", "session.logout"]
    await engine.close_all()


@pytest.mark.asyncio
async def test_unsupported_operation_rejected_before_connecting() -> None:
    connector = FakeConnector(ExchangeResponder())
    engine = _engine(connector, credentials=_credentials())

    with pytest.raises(UnsupportedOperationForConnection):
        await engine.request(STREAM, "account.status")
    with pytest.raises(UnsupportedOperationForConnection):
        await engine.request(SPOT, "session.logon")
    with pytest.raises(UnsupportedOperationForConnection):
        await engine.subscribe(SPOT, ["btcusdt@trade"])

    assert connector.attempts == 0
    await engine.close_all()


@pytest.mark.asyncio
async def test_exhausted_reconnects_make_key_unavailable_until_connect() -> None:
    connector = FakeConnector(ExchangeResponder(), fail_always=True)
    engine = _engine(connector, reconnect_max_attempts=3)
    errors: list[ErrorEvent] = []
    engine.on(ErrorEvent, errors.append)

    with pytest.raises(ConnectionUnavailable):
        await engine.request(SPOT, "time")

    assert connector.attempts == 3
    assert engine.get_state(SPOT).phase == ConnectionPhase.UNAVAILABLE
    assert any(e.context and e.context.get("observed_key", "").endswith("retry_limit") for e in errors)

    with pytest.raises(ConnectionUnavailable):
        await engine.request(SPOT, "time")
    assert connector.attempts == 3

    connector.fail_always = False
    await engine.connect(SPOT)

    state = engine.get_state(SPOT)
    assert state.phase == ConnectionPhase.READY
    assert state.reconnect_attempts == 0
    await engine.close_all()


@pytest.mark.asyncio
async def test_rejected_login_is_retried_then_exhausted() -> None:
    responder = ExchangeResponder(
        logon_error={"code": -1022, "msg": "Signature for this request is not valid."}
    )
    connector = FakeConnector(responder)
    engine = _engine(connector, credentials=_credentials(), reconnect_max_attempts=2)
    errors: list[ErrorEvent] = []
    engine.on(ErrorEvent, errors.append)

    with pytest.raises(ConnectionUnavailable):
        await engine.request(SPOT, "account.status")

    assert connector.attempts == 2
    assert [e.kind for e in errors].count("session") == 2
    assert all(ws.closed for ws in connector.sockets)
    await engine.close_all()


@pytest.mark.asyncio
async def test_close_fails_pending_and_is_terminal() -> None:
    connector = FakeConnector(ExchangeResponder(auto_reply=False))
    engine = _engine(connector)

    pending = await engine.send(SPOT, "time")
    await engine.close(SPOT)

    with pytest.raises(ConnectionClosed):
        await pending
    with pytest.raises(ConnectionClosed):
        await engine.request(SPOT, "time")
    with pytest.raises(ConnectionClosed):
        await engine.connect(SPOT)

    assert connector.current.closed is True
    assert engine.get_state(SPOT).phase == ConnectionPhase.CLOSED
    assert connector.attempts == 1


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_connection() -> None:
    connector = FakeConnector(ExchangeResponder())
    engine = _engine(connector, credentials=_credentials())

    responses = await asyncio.gather(*(engine.request(SPOT, "time") for _ in range(5)))

    assert connector.attempts == 1
    assert sorted(r.id for r in responses) == [1, 2, 3, 4, 5]
    assert connector.current.methods().count("session.logon") == 1
    await engine.close_all()


@pytest.mark.asyncio
async def test_request_timeout_then_late_response_is_ignored() -> None:
    connector = FakeConnector(ExchangeResponder(auto_reply=False))
    engine = _engine(connector)
    routed: list[StreamMessageDTO] = []
    engine.on_stream(SPOT, routed.append)

    with pytest.raises(RequestTimeout):
        await engine.request(SPOT, "time", timeout=0.02)

    connector.current.feed(build_response_payload(1))
    await asyncio.sleep(0.02)

    assert routed == []
    assert engine.get_state(SPOT).pending_requests == 0
    await engine.close_all()


@pytest.mark.asyncio
async def test_stream_messages_reach_topic_handlers() -> None:
    connector = FakeConnector(ExchangeResponder())
    engine = _engine(connector)
    received: list[StreamMessageDTO] = []
    engine.on_stream(STREAM, received.append, topic="btcusdt@trade")

    await engine.subscribe(STREAM, "btcusdt@trade")
    connector.current.feed(build_combined_stream_payload("btcusdt@trade"))
    connector.current.feed(build_combined_stream_payload("ethusdt@trade"))

    await _wait_until(lambda: len(received) == 1)
    await asyncio.sleep(0.01)

    assert len(received) == 1
    assert received[0].data["s"] == "BTCUSDT"
    await engine.close_all()


@pytest.mark.asyncio
async def test_list_subscriptions_queries_exchange() -> None:
    responder = ExchangeResponder(
        handlers={
            "LIST_SUBSCRIPTIONS": lambda frame: [
                {"id": frame["id"], "result": ["btcusdt@trade"]}
            ]
        }
    )
    connector = FakeConnector(responder)
    engine = _engine(connector)

    assert await engine.list_subscriptions(STREAM) == ["btcusdt@trade"]
    await engine.close_all()


@pytest.mark.asyncio
async def test_idle_watchdog_forces_reconnect() -> None:
    connector = FakeConnector(ExchangeResponder())
    engine = _engine(connector, receive_idle_timeout=0.05)
    phases: list[ConnectionPhase] = []
    engine.on(ConnectionStateChangedEvent, lambda e: phases.append(e.current))

    await engine.connect(STREAM)
    await _wait_until(lambda: connector.attempts >= 2)

    assert connector.sockets[0].closed is True
    assert ConnectionPhase.DISCONNECTED in phases
    await engine.close_all()


@pytest.mark.asyncio
async def test_invalid_json_frame_is_reported_and_connection_survives() -> None:
    connector = FakeConnector(ExchangeResponder())
    engine = _engine(connector)
    errors: list[ErrorEvent] = []
    engine.on(ErrorEvent, errors.append)

    await engine.connect(SPOT)
    connector.current.feed(b"{not json")
    response = await engine.request(SPOT, "ping")

    assert response.id == 1
    assert errors[0].context["observed_key"] == "frame:invalid_json"
    assert connector.attempts == 1
    await engine.close_all()


@pytest.mark.asyncio
async def test_drop_during_logon_reconnects_without_waiting_for_timeout() -> None:
    dropped: list[int] = []

    def _logon(frame: dict[str, Any]) -> list[dict[str, Any]] | None:
        if not dropped:
            dropped.append(frame["id"])
            connector.current.drop()
            return None
        return [build_response_payload(frame["id"], result=build_session_status_result())]

    connector = FakeConnector(ExchangeResponder(handlers={"session.logon": _logon}))
    # request_timeout=0: 응답 타이머 없음. 끊김을 감지하지 못하면 무한 대기
    engine = _engine(connector, credentials=_credentials(), request_timeout=0.0)
    errors: list[ErrorEvent] = []
    engine.on(ErrorEvent, errors.append)

    response = await asyncio.wait_for(engine.request(SPOT, "account.status"), timeout=1.0)

    assert response.id == 1
    assert connector.attempts == 2
    assert [e.kind for e in errors] == ["ws"]
    assert "session" not in {e.kind for e in errors}
    assert engine.get_state(SPOT).session_phase == SessionPhase.AUTHENTICATED
    assert connector.sockets[0].closed is True
    await engine.close_all()


@pytest.mark.asyncio
async def test_time_resolves_to_typed_result() -> None:
    connector = FakeConnector(ExchangeResponder())
    engine = _engine(connector)

    response = await engine.request(SPOT, "time")

    assert isinstance(response.typed_result, TimeResultDTO)
    assert response.typed_result.server_time == 1649729878630
    assert response.result == {"serverTime": 1649729878630}
    assert response.ws_key is WsKey.MAIN_WS_API
    await engine.close_all()


@pytest.mark.asyncio
async def test_malformed_typed_result_settles_with_operation_error() -> None:
    responder = ExchangeResponder(
        handlers={"time": lambda frame: [build_response_payload(frame["id"], result={"now": 1})]}
    )
    connector = FakeConnector(responder)
    engine = _engine(connector)

    with pytest.raises(OperationError) as exc_info:
        await engine.request(SPOT, "time")

    assert exc_info.value.operation == "time"
    assert isinstance(exc_info.value.__cause__, ValidationError)
    # 검증 실패는 연결 오류가 아님
    assert engine.get_state(SPOT).phase == ConnectionPhase.READY
    await engine.close_all()
