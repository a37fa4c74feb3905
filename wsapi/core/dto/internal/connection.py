from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from wsapi.core.types import ConnectionPhase, SessionPhase


@dataclass(slots=True, eq=False, repr=False, match_args=False, kw_only=True)
class ConnectionStateDomain:
    """연결 키별 가변 상태 (ConnectionManager 전용).

    상태 전이는 ConnectionManager._transition()을 통해서만 일어납니다.
    """

    websocket: Any | None = None
    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    session_phase: SessionPhase = SessionPhase.UNAUTHENTICATED
    last_activity_ts: float = field(default_factory=time.monotonic)
    reconnect_attempts: int = 0
    # 최초 READY 이후 끊김이 있었는지 (재구독 판단용)
    connected_once: bool = False

    def touch(self) -> None:
        self.last_activity_ts = time.monotonic()


@dataclass(slots=True, frozen=True, eq=True, repr=False, match_args=False, kw_only=True)
class ConnectionStatusDomain:
    """외부 조회용 연결 상태 스냅샷 (불변)."""

    phase: ConnectionPhase
    session_phase: SessionPhase
    reconnect_attempts: int
    last_activity_ts: float
    pending_requests: int
    subscriptions: frozenset[str]
