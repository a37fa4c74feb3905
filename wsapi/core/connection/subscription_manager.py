from __future__ import annotations

import asyncio
from typing import Any

from wsapi.common.events import EventBus, ResubscriptionFailedEvent
from wsapi.common.exceptions.base import (
    ConnectionClosed,
    ConnectionReset,
    ResubscriptionFailed,
)
from wsapi.common.logger import PipelineLogger
from wsapi.core.connection.correlator import RequestCorrelator
from wsapi.core.connection.registry import LIST_SUBSCRIPTIONS, SUBSCRIBE, UNSUBSCRIBE
from wsapi.core.connection.services.error_handler import ConnectionErrorHandler
from wsapi.core.connection.utils.logging.log_phases import (
    PHASE_RESUBSCRIBE,
    PHASE_SUBSCRIPTION_ACK,
)
from wsapi.core.connection.utils.logging.logging_mixin import ScopedConnectionLoggingMixin
from wsapi.core.dto.internal.common import ConnectionScopeDomain
from wsapi.core.dto.internal.subscription import (
    ResubscribeResultDomain,
    SubscriptionStateDomain,
)
from wsapi.core.dto.io.frames import WsApiResponseDTO

logger = PipelineLogger.get_logger("subscription_manager", "connection")


class SubscriptionManager(ScopedConnectionLoggingMixin):
    """구독 관리 전담 클래스 (재연결 복구용 원장)

    책임:
    - SUBSCRIBE/UNSUBSCRIBE를 Correlator로 전송하고 ACK 성공 시에만 상태 갱신
    - 재연결 후 토픽 단위 재구독, 실패 토픽은 제거 + ResubscriptionFailedEvent 발행
    - 구독 상태 추적 (SubscriptionStateDomain 사용)
    """

    def __init__(
        self,
        scope: ConnectionScopeDomain,
        correlator: RequestCorrelator,
        bus: EventBus,
        error_handler: ConnectionErrorHandler,
    ) -> None:
        self.scope = scope
        self._logger = logger
        self._correlator = correlator
        self._bus = bus
        self._error_handler = error_handler
        self._state = SubscriptionStateDomain()
        # subscribe/unsubscribe/resubscribe 간 상태 갱신 직렬화
        self._ledger_lock = asyncio.Lock()

    @property
    def topics(self) -> frozenset[str]:
        return self._state.topics

    async def subscribe(self, websocket: Any, topics: list[str]) -> WsApiResponseDTO | None:
        """토픽 구독 (ACK 성공 시에만 원장에 추가)"""
        topics = _dedupe(topics)
        if not topics:
            return None
        async with self._ledger_lock:
            response = await self._correlator.request(websocket, SUBSCRIBE, topics)
            self._state = self._state.with_added(topics)
        self._log_info(
            "subscribed",
            phase=PHASE_SUBSCRIPTION_ACK,
            topics=topics,
            total=len(self._state.topics),
        )
        return response

    async def unsubscribe(
        self, websocket: Any, topics: list[str]
    ) -> WsApiResponseDTO | None:
        """토픽 구독 해제 (ACK 성공 시에만 원장에서 제거)"""
        topics = _dedupe(topics)
        if not topics:
            return None
        async with self._ledger_lock:
            response = await self._correlator.request(websocket, UNSUBSCRIBE, topics)
            self._state = self._state.with_removed(topics)
        self._log_info(
            "unsubscribed",
            phase=PHASE_SUBSCRIPTION_ACK,
            topics=topics,
            total=len(self._state.topics),
        )
        return response

    async def list_remote(self, websocket: Any) -> list[str]:
        """거래소 측 LIST_SUBSCRIPTIONS 결과"""
        response = await self._correlator.request(websocket, LIST_SUBSCRIPTIONS)
        result = response.result
        return [str(t) for t in result] if isinstance(result, list) else []

    async def resubscribe_all(self, websocket: Any) -> ResubscribeResultDomain:
        """재연결 후 원장 전체를 토픽 단위로 재구독합니다.

        토픽 하나의 실패는 다른 토픽에 영향을 주지 않습니다.
        """
        async with self._ledger_lock:
            topics = sorted(self._state.topics)
            if not topics:
                return ResubscribeResultDomain(restored=(), failed=())

            # 제출은 순서대로, 정산은 동시에 대기
            futures = [
                await self._correlator.submit(websocket, SUBSCRIBE, [topic])
                for topic in topics
            ]
            outcomes = await asyncio.gather(*futures, return_exceptions=True)

            restored: list[str] = []
            failed: list[tuple[str, BaseException]] = []
            for topic, outcome in zip(topics, outcomes):
                if isinstance(outcome, (ConnectionReset, ConnectionClosed)):
                    # 연결이 다시 끊김: 원장 유지, 다음 재연결에서 재시도
                    continue
                if isinstance(outcome, BaseException):
                    failed.append((topic, outcome))
                else:
                    restored.append(topic)

            if failed:
                self._state = self._state.with_removed([t for t, _ in failed])

        for topic, cause in failed:
            await self._notify_failure(topic, cause)

        self._log_info(
            "resubscribe finished",
            phase=PHASE_RESUBSCRIBE,
            restored=len(restored),
            failed=len(failed),
        )
        return ResubscribeResultDomain(
            restored=tuple(restored), failed=tuple(t for t, _ in failed)
        )

    async def _notify_failure(self, topic: str, cause: BaseException) -> None:
        error = ResubscriptionFailed(
            f"resubscribe failed for {topic}: {cause}",
            topic=topic,
            ws_key=self.scope.ws_key,
        )
        error.__cause__ = cause
        await self._error_handler.emit_subscription_error(
            error,
            topics=[topic],
            raw_context={"cause_type": type(cause).__name__},
        )
        await self._bus.emit(
            ResubscriptionFailedEvent(ws_key=self.scope.ws_key, topic=topic, error=error)
        )


def _dedupe(topics: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for t in topics:
        if t not in seen:
            seen.add(t)
            result.append(t)
    return result
