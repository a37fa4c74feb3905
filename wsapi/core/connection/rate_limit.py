from __future__ import annotations

import time
from typing import Any, Iterable

from wsapi.common.logger import PipelineLogger
from wsapi.core.connection.utils.logging.log_phases import PHASE_RATE_LIMIT
from wsapi.core.connection.utils.logging.logging_mixin import ScopedConnectionLoggingMixin
from wsapi.core.dto.internal.common import ConnectionScopeDomain
from wsapi.core.dto.internal.rate_limit import (
    RateLimitEntryDomain,
    RateLimitSnapshotDomain,
)
from wsapi.core.dto.io.frames import RateLimitDTO

logger = PipelineLogger.get_logger("rate_limit", "connection")


class RateLimitTracker(ScopedConnectionLoggingMixin):
    """연결 키별 레이트 리밋 추적기 (수동적)

    - 응답에 rateLimits가 있으면 스냅샷을 통째로 교체합니다.
    - 조회만 제공하며 요청을 지연/차단하지 않습니다.
    """

    def __init__(self, scope: ConnectionScopeDomain) -> None:
        self.scope = scope
        self._logger = logger
        self._snapshot = RateLimitSnapshotDomain()

    def update(self, rate_limits: Iterable[RateLimitDTO | dict[str, Any]]) -> None:
        entries = tuple(self._to_entry(item) for item in rate_limits)
        self._snapshot = RateLimitSnapshotDomain(
            entries=entries, updated_at=time.time()
        )
        self._log_debug(
            "rate limit snapshot replaced",
            phase=PHASE_RATE_LIMIT,
            entries=len(entries),
        )

    @staticmethod
    def _to_entry(item: RateLimitDTO | dict[str, Any]) -> RateLimitEntryDomain:
        dto = item if isinstance(item, RateLimitDTO) else RateLimitDTO.model_validate(item)
        return RateLimitEntryDomain(
            rate_limit_type=dto.rate_limit_type,
            interval=dto.interval,
            interval_num=dto.interval_num,
            limit=dto.limit,
            count=dto.count,
        )

    def snapshot(self) -> RateLimitSnapshotDomain:
        return self._snapshot

    def usage(self, rate_limit_type: str | None = None) -> list[RateLimitEntryDomain]:
        """현재 사용량 조회 (타입 지정 시 해당 타입만)"""
        return [
            entry
            for entry in self._snapshot.entries
            if rate_limit_type is None or entry.rate_limit_type == rate_limit_type
        ]
