from __future__ import annotations

import math
import random

from wsapi.core.dto.internal.common import ConnectionPolicyDomain


def _exponential_delay(policy: ConnectionPolicyDomain, attempt: int) -> float:
    if policy.initial_backoff <= 0 or policy.max_backoff <= 0:
        return 0.0
    if policy.backoff_multiplier <= 1.0:
        return min(policy.initial_backoff, policy.max_backoff)
    # 상한에 도달하는 시도 이후로는 거듭제곱을 계산하지 않음 (float overflow)
    ceiling = math.log(policy.max_backoff / policy.initial_backoff, policy.backoff_multiplier)
    if attempt >= ceiling:
        return policy.max_backoff
    return min(policy.initial_backoff * policy.backoff_multiplier**attempt, policy.max_backoff)


def compute_next_backoff(
    policy: ConnectionPolicyDomain,
    attempt: int,
    rng: random.Random | None = None,
) -> float:
    """재연결 대기 시간 계산 (지수 증가, max_backoff 상한, ±jitter 비율).

    Args:
        policy: 백오프 파라미터가 담긴 정책 객체
        attempt: 0부터 시작하는 시도 인덱스 (첫 재시도 = 0)
        rng: 지터용 난수 생성기 (테스트 고정용)

    Returns:
        다음 대기 시간(초), 0 이상 max_backoff 이하
    """
    base = _exponential_delay(policy, max(attempt, 0))
    spread = base * policy.jitter
    if spread <= 0:
        return base
    offset = (rng or random).uniform(-spread, spread)
    return min(policy.max_backoff, max(0.0, base + offset))
