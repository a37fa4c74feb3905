"""
WsApiEngine

연결 키별 ConnectionManager를 지연 생성/보관하고 호출자 API를 제공합니다.
키 사이에는 공유 가변 상태가 없으며, EventBus와 ErrorDispatcher는 엔진 인스턴스 단위입니다.
"""

from __future__ import annotations

import asyncio
from typing import Any

from wsapi.common.events import EventBus
from wsapi.common.exceptions.error_dispatcher import ErrorDispatcher
from wsapi.common.logger import PipelineLogger
from wsapi.config.settings import WebsocketSettings, websocket_settings
from wsapi.core.connection.authenticator import Credentials
from wsapi.core.connection.manager import ConnectionManager, Connector
from wsapi.core.connection.registry import get_connection_spec
from wsapi.core.dto.internal.common import ConnectionPolicyDomain
from wsapi.core.dto.internal.connection import ConnectionStatusDomain
from wsapi.core.dto.internal.rate_limit import RateLimitSnapshotDomain
from wsapi.core.dto.io.frames import WsApiResponseDTO
from wsapi.core.types import Params, StreamHandler, WsKey

logger = PipelineLogger.get_logger("engine", "app")


class WsApiEngine:
    """멀티 연결 WS-API 프로토콜 엔진

    사용 예:
        engine = WsApiEngine(credentials=Credentials(api_key=..., api_secret=...))
        response = await engine.request(WsKey.MAIN_WS_API, "account.status")
        await engine.close_all()

    Args:
        credentials: API 자격 증명 (없으면 인증 필요 오퍼레이션은 NotAuthenticated)
        settings: 연결 설정 (기본: 모듈 websocket_settings)
        policy: 연결 정책 직접 지정 (settings보다 우선)
        connector: (url) -> socket 커넥터 (기본: websockets.connect)
        bus: 이벤트 버스 (기본: 엔진 전용 인스턴스)
        error_dispatcher: 에러 로깅 디스패처 (기본: bus에 바인딩된 인스턴스)
    """

    def __init__(
        self,
        *,
        credentials: Credentials | None = None,
        settings: WebsocketSettings | None = None,
        policy: ConnectionPolicyDomain | None = None,
        connector: Connector | None = None,
        bus: EventBus | None = None,
        error_dispatcher: ErrorDispatcher | None = None,
    ) -> None:
        self._credentials = credentials
        self._policy = policy or ConnectionPolicyDomain.from_settings(
            settings or websocket_settings
        )
        self._connector = connector
        self._bus = bus or EventBus()
        self._error_dispatcher = error_dispatcher or ErrorDispatcher(self._bus)
        self._error_dispatcher.bind()

        self._managers: dict[WsKey, ConnectionManager] = {}

    # ------------------------------------------------------------------
    # 내부
    # ------------------------------------------------------------------
    def _manager(self, key: WsKey | str) -> ConnectionManager:
        ws_key = WsKey(key)
        manager = self._managers.get(ws_key)
        if manager is None:
            manager = ConnectionManager(
                get_connection_spec(ws_key),
                self._policy,
                self._bus,
                credentials=self._credentials,
                connector=self._connector,
            )
            self._managers[ws_key] = manager
        return manager

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------
    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def error_dispatcher(self) -> ErrorDispatcher:
        return self._error_dispatcher

    @property
    def policy(self) -> ConnectionPolicyDomain:
        return self._policy

    def get_state(self, key: WsKey | str) -> ConnectionStatusDomain:
        return self._manager(key).status()

    def get_rate_limits(self, key: WsKey | str) -> RateLimitSnapshotDomain:
        return self._manager(key).rate_limits.snapshot()

    def get_subscriptions(self, key: WsKey | str) -> frozenset[str]:
        """엔진이 보관 중인 구독 원장 (재연결 복구 대상)"""
        return self._manager(key).subscriptions.topics

    def active_keys(self) -> list[WsKey]:
        return list(self._managers)

    # ------------------------------------------------------------------
    # 연결
    # ------------------------------------------------------------------
    async def connect(self, key: WsKey | str) -> None:
        """연결 키를 READY까지 진행합니다. 재시도 소진(UNAVAILABLE) 상태도 재시작합니다."""
        await self._manager(key).connect()

    async def close(self, key: WsKey | str, reason: str | None = None) -> None:
        manager = self._managers.get(WsKey(key))
        if manager is None:
            return
        await manager.close(reason)

    async def close_all(self) -> None:
        """모든 연결 키 종료"""
        if not self._managers:
            return
        logger.info(f"closing {len(self._managers)} connection(s)")
        results = await asyncio.gather(
            *(manager.close("engine shutdown") for manager in self._managers.values()),
            return_exceptions=True,
        )
        for key, result in zip(list(self._managers), results):
            if isinstance(result, Exception):
                logger.error(f"close failed for {key.value}: {result}")
        self._error_dispatcher.unbind()

    # ------------------------------------------------------------------
    # 요청
    # ------------------------------------------------------------------
    async def send(
        self,
        key: WsKey | str,
        operation: str,
        params: Params | None = None,
        *,
        timeout: float | None = None,
    ) -> asyncio.Future[WsApiResponseDTO]:
        """요청을 전송하고 응답으로 정산될 future를 반환합니다.

        검증/인증 실패는 future가 아니라 이 호출에서 즉시 발생합니다.
        """
        return await self._manager(key).send(operation, params, timeout=timeout)

    async def request(
        self,
        key: WsKey | str,
        operation: str,
        params: Params | None = None,
        *,
        timeout: float | None = None,
    ) -> WsApiResponseDTO:
        return await self._manager(key).request(operation, params, timeout=timeout)

    # ------------------------------------------------------------------
    # 구독 / 스트림
    # ------------------------------------------------------------------
    async def subscribe(
        self, key: WsKey | str, topics: list[str] | str
    ) -> WsApiResponseDTO | None:
        return await self._manager(key).subscribe(_as_list(topics))

    async def unsubscribe(
        self, key: WsKey | str, topics: list[str] | str
    ) -> WsApiResponseDTO | None:
        return await self._manager(key).unsubscribe(_as_list(topics))

    async def list_subscriptions(self, key: WsKey | str) -> list[str]:
        """거래소 측 LIST_SUBSCRIPTIONS 결과"""
        return await self._manager(key).list_subscriptions()

    def on_stream(
        self, key: WsKey | str, handler: StreamHandler, topic: str | None = None
    ) -> None:
        """비요청 메시지 핸들러 등록 (topic None = 키의 모든 메시지)"""
        self._manager(key).stream_router.add(handler, topic)

    def off_stream(
        self, key: WsKey | str, handler: StreamHandler, topic: str | None = None
    ) -> None:
        self._manager(key).stream_router.remove(handler, topic)

    def on(self, event_type: type, handler: Any) -> None:
        """엔진 이벤트 구독 (ErrorEvent, ResubscriptionFailedEvent, ConnectionStateChangedEvent)"""
        self._bus.on(event_type, handler)


def _as_list(topics: list[str] | str) -> list[str]:
    return [topics] if isinstance(topics, str) else list(topics)
