from __future__ import annotations

import inspect
from typing import Any

from wsapi.common.logger import PipelineLogger
from wsapi.core.connection.services.error_handler import ConnectionErrorHandler
from wsapi.core.connection.utils.logging.log_phases import PHASE_STREAM_DISPATCH
from wsapi.core.connection.utils.logging.logging_mixin import ScopedConnectionLoggingMixin
from wsapi.core.dto.internal.common import ConnectionScopeDomain
from wsapi.core.dto.io.frames import StreamMessageDTO
from wsapi.core.types import StreamHandler

logger = PipelineLogger.get_logger("stream_router", "connection")


def extract_topic(frame: dict[str, Any]) -> str | None:
    """비요청 프레임의 토픽 추출

    - combined stream: {"stream": "btcusdt@trade", "data": {...}}
    - WS-API 유저 데이터: {"subscriptionId": 0, "event": {...}}
    - raw 이벤트: {"e": "trade", "s": "BTCUSDT", ...} → "btcusdt@trade"
    """
    stream = frame.get("stream")
    if isinstance(stream, str):
        return stream
    if "subscriptionId" in frame:
        return f"subscription:{frame['subscriptionId']}"
    event, symbol = frame.get("e"), frame.get("s")
    if isinstance(event, str) and isinstance(symbol, str):
        return f"{symbol.lower()}@{event}"
    if isinstance(event, str):
        return event
    return None


def extract_data(frame: dict[str, Any]) -> Any:
    if "stream" in frame and "data" in frame:
        return frame["data"]
    if "subscriptionId" in frame and "event" in frame:
        return frame["event"]
    return frame


class StreamRouter(ScopedConnectionLoggingMixin):
    """연결 키별 비요청 메시지 라우터

    토픽 지정 핸들러와 전체(토픽 None) 핸들러를 등록 순서대로 호출합니다.
    핸들러 예외는 에러 버스로 보고하고 다른 핸들러 호출은 계속합니다.
    """

    def __init__(
        self, scope: ConnectionScopeDomain, error_handler: ConnectionErrorHandler
    ) -> None:
        self.scope = scope
        self._logger = logger
        self._error_handler = error_handler
        self._handlers: list[tuple[str | None, StreamHandler]] = []

    def add(self, handler: StreamHandler, topic: str | None = None) -> None:
        self._handlers.append((topic, handler))

    def remove(self, handler: StreamHandler, topic: str | None = None) -> None:
        try:
            self._handlers.remove((topic, handler))
        except ValueError:
            pass

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    async def dispatch(self, frame: dict[str, Any]) -> int:
        """프레임을 매칭되는 핸들러로 전달하고 호출한 핸들러 수를 반환합니다."""
        topic = extract_topic(frame)
        message = StreamMessageDTO(
            ws_key=self.scope.ws_key, topic=topic, data=extract_data(frame), raw=frame
        )

        delivered = 0
        for wanted, handler in list(self._handlers):
            if wanted is not None and wanted != topic:
                continue
            delivered += 1
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                await self._error_handler.emit_stream_error(e, topic)

        if delivered == 0:
            self._log_debug("unrouted stream message", phase=PHASE_STREAM_DISPATCH, topic=topic)
        return delivered
