from __future__ import annotations

from typing import Any

from wsapi.common.events import EventBus
from wsapi.common.exceptions.error_dispatcher import dispatch_error
from wsapi.common.logger import PipelineLogger
from wsapi.core.connection.utils.logging.log_phases import (
    PHASE_CONNECTION_ERROR,
    PHASE_LOGIN_FAILED,
    PHASE_PARSE,
    PHASE_STREAM_DISPATCH,
    PHASE_SUBSCRIPTION_ACK,
)
from wsapi.core.connection.utils.logging.logging_mixin import ScopedConnectionLoggingMixin
from wsapi.core.dto.internal.common import ConnectionScopeDomain

logger = PipelineLogger.get_logger("connection_error_handler", "connection")


class ConnectionErrorHandler(ScopedConnectionLoggingMixin):
    """연결 에러 처리 전담 클래스

    책임:
    - 연결 키 경계의 에러를 스코프 정보와 함께 로깅
    - 에러 이벤트를 엔진의 EventBus로 발행
    """

    def __init__(self, scope: ConnectionScopeDomain, bus: EventBus) -> None:
        self.scope = scope
        self._bus = bus
        self._logger = logger

    async def emit_ws_error(
        self,
        err: BaseException,
        observed_key: str = "",
        raw_context: dict | None = None,
    ) -> None:
        """웹소켓 경계 에러 (프레임 파싱, 예기치 못한 루프 오류 등)"""
        self._log_warning(
            "Dispatching websocket error",
            phase=PHASE_PARSE,
            observed_key=observed_key or None,
            error=str(err),
        )
        await dispatch_error(
            self._bus,
            err,
            kind="ws",
            target=self.scope,
            context={"observed_key": observed_key, **(raw_context or {})},
        )

    async def emit_connection_error(
        self,
        err: BaseException,
        url: str,
        attempt: int,
        backoff: float,
        **additional_context: Any,
    ) -> None:
        """연결 수립/유지 실패 (재연결 루프에서 호출)"""
        context = {
            "url": url,
            "attempt": attempt,
            "backoff": backoff,
            **additional_context,
        }

        self._log_warning(
            "Dispatching connection error",
            phase=PHASE_CONNECTION_ERROR,
            url=url,
            attempt=attempt,
            backoff=backoff,
            error=str(err),
        )

        await dispatch_error(
            self._bus, err, kind="ws", target=self.scope, context=context
        )

    async def emit_session_error(
        self, err: BaseException, attempt: int | None = None
    ) -> None:
        """로그인 핸드셰이크 실패"""
        self._log_warning(
            "Dispatching session error",
            phase=PHASE_LOGIN_FAILED,
            attempt=attempt,
            error=str(err),
        )
        await dispatch_error(
            self._bus,
            err,
            kind="session",
            target=self.scope,
            context={"attempt": attempt},
        )

    async def emit_subscription_error(
        self,
        err: BaseException,
        topics: list[str] | None = None,
        raw_context: dict | None = None,
    ) -> None:
        """구독/재구독 실패"""
        context = {**(raw_context or {}), "topics": topics}

        self._log_warning(
            "Dispatching subscription error",
            phase=PHASE_SUBSCRIPTION_ACK,
            error=str(err),
            topic_count=len(topics or []),
        )

        await dispatch_error(
            self._bus, err, kind="subscription", target=self.scope, context=context
        )

    async def emit_stream_error(self, err: BaseException, topic: str | None) -> None:
        """사용자 스트림 핸들러 예외"""
        self._log_warning(
            "Stream handler failed",
            phase=PHASE_STREAM_DISPATCH,
            topic=topic,
            error=str(err),
        )
        await dispatch_error(
            self._bus, err, kind="stream", target=self.scope, context={"topic": topic}
        )
