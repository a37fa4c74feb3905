"""통합 에러 디스패처

전략 기반 에러 처리:
- 예외 분류 (classify_exception)
- 전략 결정 (get_error_strategy)
- severity별 구조화 로깅
- 최근 에러 보관 (진단/테스트용)
"""

from __future__ import annotations

from collections import deque
from typing import Any

from wsapi.common.events import ErrorEvent, EventBus
from wsapi.common.exceptions.exception_rule import (
    classify_exception,
    get_error_strategy,
)
from wsapi.common.logger import RESERVED_RECORD_KEYS, PipelineLogger, redact
from wsapi.core.dto.internal.common import ConnectionScopeDomain

logger = PipelineLogger.get_logger("error_dispatcher", "common")

__all__ = [
    "ErrorDispatcher",
    "dispatch_error",
]


class ErrorDispatcher:
    """통합 에러 처리 디스패처

    책임:
    1. 예외 분류 (classify_exception)
    2. 전략 결정 (get_error_strategy)
    3. severity별 로깅

    bind()로 EventBus의 ErrorEvent 구독을 연결합니다.
    """

    def __init__(self, bus: EventBus, history_size: int = 100) -> None:
        self._bus = bus
        self._history: deque[dict[str, Any]] = deque(maxlen=history_size)
        self._bound = False

    def bind(self) -> None:
        if self._bound:
            return
        self._bus.on(ErrorEvent, self.handle)
        self._bound = True

    def unbind(self) -> None:
        if not self._bound:
            return
        self._bus.off(ErrorEvent, self.handle)
        self._bound = False

    @property
    def recent(self) -> list[dict[str, Any]]:
        return list(self._history)

    async def handle(self, event: ErrorEvent) -> None:
        await self.dispatch(
            event.exc, event.kind, target=event.target, context=event.context
        )

    async def dispatch(
        self,
        exc: Exception,
        kind: str,
        target: ConnectionScopeDomain | None = None,
        context: dict | None = None,
    ) -> None:
        """전략 기반 통합 에러 디스패처"""
        # 1. 예외 분류
        domain, code, retryable = classify_exception(exc, kind)

        # 2. 전략 조회
        strategy = get_error_strategy(code)

        # 3. 로깅 (severity별)
        log_method = getattr(logger, strategy.log_level, logger.error)
        observed_key = target.to_key() if target is not None else "engine"

        safe_context = {
            k: v for k, v in (context or {}).items() if k not in RESERVED_RECORD_KEYS
        }

        record = {
            "error_domain": domain.value,
            "error_code": code.value,
            "severity": strategy.severity.value,
            "retryable": retryable,
            "observed_key": observed_key,
            "kind": kind,
            "error": str(exc),
            "error_type": type(exc).__name__,
            **safe_context,
        }
        self._history.append(redact(record))

        log_method(
            f"[{strategy.severity.value.upper()}] {kind} error: {exc}",
            extra=record,
        )


# Event Bus 기반 에러 디스패처 (EDA 패턴)
async def dispatch_error(
    bus: EventBus,
    exc: BaseException,
    kind: str,
    target: ConnectionScopeDomain | None = None,
    context: dict | None = None,
) -> None:
    """Event Bus 기반 에러 이벤트 발행

    Args:
        bus: 엔진 인스턴스의 이벤트 버스
        exc: 발생한 예외
        kind: 에러 종류 (분류용)
        target: 에러 발생 연결 스코프
        context: 추가 컨텍스트
    """
    await bus.emit(
        ErrorEvent(
            exc=exc if isinstance(exc, Exception) else Exception(str(exc)),
            kind=kind,
            target=target,
            context=context,
        )
    )
