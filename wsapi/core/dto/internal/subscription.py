from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True, eq=True, repr=False, match_args=False, kw_only=True)
class SubscriptionStateDomain:
    """구독 상태 도메인 객체 (내부용)

    topics는 거래소 ACK로 확정된 토픽만 담습니다.
    """

    topics: frozenset[str] = field(default_factory=frozenset)

    def with_added(self, topics: list[str]) -> SubscriptionStateDomain:
        return SubscriptionStateDomain(topics=self.topics | frozenset(topics))

    def with_removed(self, topics: list[str]) -> SubscriptionStateDomain:
        return SubscriptionStateDomain(topics=self.topics - frozenset(topics))


@dataclass(slots=True, frozen=True, eq=True, repr=False, match_args=False, kw_only=True)
class ResubscribeResultDomain:
    """재구독 결과 도메인 객체 (내부용)"""

    restored: tuple[str, ...]
    failed: tuple[str, ...]

    @property
    def all_restored(self) -> bool:
        return not self.failed
