"""이벤트 정의 및 Event Bus (EDA 패턴)

모든 레이어가 순환 import 없이 이벤트를 발행할 수 있도록 지원합니다.
이벤트는 순수 데이터 객체로, 의존성이 없습니다.

EventBus는 엔진 인스턴스마다 하나씩 생성됩니다.
여러 엔진이 한 프로세스에 공존해도 핸들러가 섞이지 않습니다.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from wsapi.common.exceptions.base import ResubscriptionFailed
from wsapi.common.logger import PipelineLogger
from wsapi.core.dto.internal.common import ConnectionScopeDomain
from wsapi.core.types import ConnectionPhase, WsKey

logger = PipelineLogger.get_logger("event_bus", "common")


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """에러 이벤트 (순수 데이터)

    발행 지점:
    - Connection: 연결/재연결/하트비트/워치독 에러
    - Session: 로그인 핸드셰이크 실패
    - Subscription/Stream: 재구독 실패, 스트림 핸들러 예외
    """

    exc: Exception
    kind: str  # "ws", "session", "request", "subscription", "stream", ...
    target: ConnectionScopeDomain | None = None
    context: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True, slots=True)
class ResubscriptionFailedEvent:
    """재연결 후 토픽 하나의 재구독이 실패했음을 알리는 비치명 이벤트"""

    ws_key: WsKey
    topic: str
    error: ResubscriptionFailed
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True, slots=True)
class ConnectionStateChangedEvent:
    """연결 생명주기 단계 전이"""

    ws_key: WsKey
    previous: ConnectionPhase
    current: ConnectionPhase
    timestamp: datetime = field(default_factory=datetime.now)


class EventBus:
    """인스턴스 스코프 이벤트 버스

    특징:
    - 타입 기반 핸들러 등록
    - 동기/비동기 핸들러 모두 허용
    - 핸들러 예외는 로깅만 하고 전파하지 않음
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Callable[[Any], Any]]] = {}

    async def emit(self, event: Any) -> None:
        """이벤트 발행 (비동기)

        Args:
            event: 발행할 이벤트 객체
        """
        event_type = type(event)
        # 발행 중 on/off가 호출되어도 안전하도록 사본 순회
        handlers = list(self._handlers.get(event_type, []))

        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Event handler failed: {e}",
                    exc_info=True,
                    extra={
                        "event_type": event_type.__name__,
                        "handler": getattr(handler, "__name__", repr(handler)),
                    },
                )

    def on(self, event_type: type, handler: Callable[[Any], Any]) -> None:
        """핸들러 등록

        Args:
            event_type: 이벤트 타입 (클래스)
            handler: 핸들러 함수 (def 또는 async def)
        """
        self._handlers.setdefault(event_type, []).append(handler)

    def off(self, event_type: type, handler: Callable[[Any], Any]) -> None:
        """핸들러 해제 (미등록 핸들러는 무시)"""
        handlers = self._handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, []))

    def clear(self) -> None:
        """모든 핸들러 제거 (테스트/종료용)"""
        self._handlers.clear()


__all__ = [
    "ErrorEvent",
    "ResubscriptionFailedEvent",
    "ConnectionStateChangedEvent",
    "EventBus",
]
