from __future__ import annotations

from dataclasses import dataclass

from wsapi.config.settings import WebsocketSettings
from wsapi.core.types import (
    EndpointKind,
    ErrorCategory,
    ExceptionGroup,
    Market,
    RuleKind,
    WsKey,
)


@dataclass(slots=True, frozen=True, eq=True, repr=False, match_args=False, kw_only=True)
class ConnectionScopeDomain:
    """연결 스코프(내부 도메인 값 객체).

    - 하나의 연결 키가 가리키는 엔드포인트 정보를 묶습니다.
    - 로깅 extra, 에러 이벤트 target 등에서 재사용
    """

    ws_key: WsKey
    url: str
    kind: EndpointKind
    market: Market
    testnet: bool = False

    def to_key(self) -> str:
        """스코프를 관측 키로 변환 (market|kind|ws_key 형식)"""
        return f"{self.market}|{self.kind}|{self.ws_key.value}"


@dataclass(slots=True, repr=False, eq=False, match_args=False, kw_only=True)
class ConnectionPolicyDomain:
    """웹소켓 연결/백오프/하트비트/워치독/요청 정책(도메인)."""

    # 백오프
    initial_backoff: float = 0.5
    max_backoff: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.2  # +/- 20%
    reconnect_max_attempts: int = 10

    # 하트비트
    heartbeat_interval: float = 20.0
    heartbeat_timeout: float = 10.0
    heartbeat_fail_limit: int = 3

    # 워치독
    receive_idle_timeout: float = 60.0

    # 요청
    request_timeout: float = 10.0
    timeout_marker_ttl: float = 60.0

    # 세션
    verify_session: bool = False

    @classmethod
    def from_settings(cls, settings: WebsocketSettings) -> ConnectionPolicyDomain:
        return cls(
            initial_backoff=settings.initial_backoff,
            max_backoff=settings.max_backoff,
            backoff_multiplier=settings.backoff_multiplier,
            jitter=settings.jitter,
            reconnect_max_attempts=settings.reconnect_max_attempts,
            heartbeat_interval=settings.heartbeat_interval,
            heartbeat_timeout=settings.heartbeat_timeout,
            heartbeat_fail_limit=settings.heartbeat_fail_limit,
            receive_idle_timeout=settings.receive_idle_timeout,
            request_timeout=settings.request_timeout,
            timeout_marker_ttl=settings.timeout_marker_ttl,
            verify_session=settings.verify_session,
        )


@dataclass(
    slots=True, frozen=True, eq=False, repr=False, match_args=False, kw_only=True
)
class RuleDomain:
    """예외 분류 규칙(도메인)

    kinds: 규칙이 적용될 경계 종류 ("ws", "session", "request", "subscription", "stream")
    exc:   매칭할 예외 타입(단일 타입 또는 타입 튜플)
    result: ErrorCategory
    """

    kinds: RuleKind
    exc: ExceptionGroup
    result: ErrorCategory
