from __future__ import annotations

import asyncio
from typing import Any, Callable

import orjson

from tests.factory_builders import (
    build_response_payload,
    build_session_status_result,
    build_time_result,
)

# 송신 프레임 하나에 대한 응답 목록 (None/빈 목록 = 무응답)
Responder = Callable[[dict[str, Any]], list[dict[str, Any]] | None]


class FakeWebsocket:
    """connector가 반환하는 소켓 대역

    - send: 프레임 기록 후 responder 응답을 수신 큐에 적재
    - recv: 수신 큐에서 꺼냄 (예외 객체는 raise)
    - drop: 원격 끊김 재현
    """

    def __init__(self, responder: Responder | None = None, *, answer_pings: bool = True) -> None:
        self.responder = responder
        self.answer_pings = answer_pings
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.ping_count = 0
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    async def send(self, message: str | bytes) -> None:
        if self.closed:
            raise ConnectionResetError("send on closed socket")
        frame = orjson.loads(message)
        self.sent.append(frame)
        if self.responder is None:
            return
        for reply in self.responder(frame) or []:
            self.feed(reply)

    def feed(self, payload: dict[str, Any] | str | bytes) -> None:
        raw = payload if isinstance(payload, (str, bytes)) else orjson.dumps(payload)
        self._inbox.put_nowait(raw)

    async def recv(self) -> str | bytes:
        item = await self._inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    def drop(self) -> None:
        self._inbox.put_nowait(ConnectionResetError("connection reset by peer"))

    async def ping(self) -> asyncio.Future[float]:
        self.ping_count += 1
        waiter: asyncio.Future[float] = asyncio.get_running_loop().create_future()
        if self.answer_pings:
            waiter.set_result(0.0)
        return waiter

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._inbox.put_nowait(ConnectionResetError("socket closed"))

    def methods(self) -> list[str]:
        return [frame["method"] for frame in self.sent]


class FakeConnector:
    """(url) -> FakeWebsocket 커넥터

    fail_first: 처음 N번 연결 시도를 OSError로 실패
    fail_always: 모든 연결 시도 실패
    """

    def __init__(
        self,
        responder: Responder | None = None,
        *,
        fail_first: int = 0,
        fail_always: bool = False,
        answer_pings: bool = True,
    ) -> None:
        self.responder = responder
        self.fail_first = fail_first
        self.fail_always = fail_always
        self.answer_pings = answer_pings
        self.urls: list[str] = []
        self.sockets: list[FakeWebsocket] = []

    async def __call__(self, url: str) -> FakeWebsocket:
        self.urls.append(url)
        if self.fail_always or len(self.urls) <= self.fail_first:
            raise OSError("temporary network error")
        websocket = FakeWebsocket(self.responder, answer_pings=self.answer_pings)
        self.sockets.append(websocket)
        return websocket

    @property
    def current(self) -> FakeWebsocket:
        return self.sockets[-1]

    @property
    def attempts(self) -> int:
        return len(self.urls)


class ExchangeResponder:
    """메서드별 응답 스크립트

    기본 동작:
    - session.logon → 200 + 세션 상태 (또는 logon_error 지정 시 401)
    - SUBSCRIBE/UNSUBSCRIBE → {"id", "result": null}
    - time → 200 + {"serverTime"}
    - 그 외 → 200 + {} (auto_reply=False면 time 포함 무응답)
    handlers로 메서드별 응답을 덮어쓸 수 있습니다.
    """

    def __init__(
        self,
        *,
        handlers: dict[str, Callable[[dict[str, Any]], list[dict[str, Any]] | None]] | None = None,
        auto_reply: bool = True,
        logon_error: dict[str, Any] | None = None,
    ) -> None:
        self.handlers = dict(handlers or {})
        self.auto_reply = auto_reply
        self.logon_error = logon_error

    def __call__(self, frame: dict[str, Any]) -> list[dict[str, Any]] | None:
        method = frame["method"]
        if method in self.handlers:
            return self.handlers[method](frame)
        if method == "session.logon":
            if self.logon_error is not None:
                return [{"id": frame["id"], "status": 401, "error": self.logon_error}]
            return [build_response_payload(frame["id"], result=build_session_status_result())]
        if method in ("SUBSCRIBE", "UNSUBSCRIBE"):
            return [{"id": frame["id"], "result": None}]
        if not self.auto_reply:
            return None
        if method == "time":
            return [build_response_payload(frame["id"], result=build_time_result())]
        return [build_response_payload(frame["id"])]


class LoopbackWebsocket(FakeWebsocket):
    """send 즉시 응답을 correlator로 정산하는 소켓 (수신 루프 없는 단위 테스트용)"""

    def __init__(self, correlator: Any, responder: Responder) -> None:
        super().__init__()
        self._correlator = correlator
        self._replies = responder

    async def send(self, message: str | bytes) -> None:
        await super().send(message)
        for reply in self._replies(self.sent[-1]) or []:
            self._correlator.dispatch(reply)
