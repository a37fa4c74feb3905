from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True, eq=True, repr=True, match_args=False, kw_only=True)
class RateLimitEntryDomain:
    """레이트 리밋 항목 하나 (거래소 rateLimits 배열 원소)."""

    rate_limit_type: str
    interval: str
    interval_num: int
    limit: int
    count: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    @property
    def usage_ratio(self) -> float:
        return self.count / self.limit if self.limit else 0.0


@dataclass(slots=True, frozen=True, eq=True, repr=False, match_args=False, kw_only=True)
class RateLimitSnapshotDomain:
    """연결 키별 레이트 리밋 스냅샷 (통째로 교체, 필드 병합 금지)."""

    entries: tuple[RateLimitEntryDomain, ...] = field(default_factory=tuple)
    updated_at: float | None = None
