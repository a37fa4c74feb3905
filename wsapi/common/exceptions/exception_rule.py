from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TypeAlias

import orjson
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from wsapi.common.exceptions.base import WsApiError
from wsapi.core.dto.internal.common import RuleDomain
from wsapi.core.types import ErrorCategory, ErrorCode, ErrorDomain, ErrorSeverity

# 역직렬화/스키마 오류 (모든 경계 공통)
DESERIALIZATION_ERRORS = (
    orjson.JSONDecodeError,
    ValidationError,
    ValueError,
    TypeError,
    KeyError,
)

# 소켓/웹소켓 등 (재연결 루프가 흡수하는 예외)
SOCKET_EXCEPTIONS = (
    asyncio.TimeoutError,
    InvalidStatus,
    WebSocketException,
    ConnectionClosed,
    OSError,
)


# 1) asyncio 규칙
RULES_ASYNCIO: list[RuleDomain] = [
    RuleDomain(
        kinds=("ws", "session", "request", "subscription", "health_monitor"),
        exc=asyncio.CancelledError,
        result=(ErrorDomain.CONNECTION, ErrorCode.CANCELLED, False),
    ),
    RuleDomain(
        kinds=("ws", "health_monitor"),
        exc=asyncio.TimeoutError,
        result=(ErrorDomain.CONNECTION, ErrorCode.CONNECT_FAILED, True),
    ),
    RuleDomain(
        kinds=("request", "session"),
        exc=asyncio.TimeoutError,
        result=(ErrorDomain.REQUEST, ErrorCode.REQUEST_TIMEOUT, True),
    ),
]

# 2) 역직렬화 규칙
RULES_TYPE: list[RuleDomain] = [
    RuleDomain(
        kinds=("ws", "request", "session", "subscription", "stream"),
        exc=DESERIALIZATION_ERRORS,
        result=(ErrorDomain.DESERIALIZATION, ErrorCode.DESERIALIZATION_ERROR, False),
    ),
]

# 3) 소켓/웹소켓 규칙
RULES_SOCKET: list[RuleDomain] = [
    RuleDomain(
        kinds=("ws", "health_monitor", "session", "request", "subscription"),
        exc=SOCKET_EXCEPTIONS,
        result=(ErrorDomain.CONNECTION, ErrorCode.CONNECT_FAILED, True),
    ),
]

# 4) 스트림 핸들러 규칙 (사용자 콜백 예외는 모두 handler_failed)
RULES_STREAM: list[RuleDomain] = [
    RuleDomain(
        kinds=("stream",),
        exc=Exception,
        result=(ErrorDomain.SUBSCRIPTION, ErrorCode.HANDLER_FAILED, False),
    ),
]


def _rules_for(kind: str) -> list[RuleDomain]:
    # 선언 순서(구체 -> 포괄)를 유지하며 kind에 해당하는 규칙만 추림
    ordered = [*RULES_ASYNCIO, *RULES_TYPE, *RULES_SOCKET, *RULES_STREAM]
    return [rule for rule in ordered if kind in rule.kinds]


RuleDict: TypeAlias = dict[str, list[RuleDomain]]
RULES_BY_KIND: RuleDict = {
    kind: _rules_for(kind)
    for kind in ("ws", "session", "request", "subscription", "stream", "health_monitor")
}


def classify_exception(err: BaseException, kind: str) -> ErrorCategory:
    """예외 → (ErrorDomain, ErrorCode, retryable) 분류기 (규칙 테이블 기반)

    - 엔진 자체 예외(WsApiError)는 클래스에 선언된 분류를 그대로 사용합니다.
    - 그 외에는 선언적 규칙을 "구체 → 포괄" 순서로 평가합니다.
    """
    if isinstance(err, WsApiError):
        return (err.error_domain, err.error_code, err.retryable)

    for rule in RULES_BY_KIND.get(kind, []):
        if isinstance(err, rule.exc):
            return rule.result

    # 알 수 없는 경우 기본값
    return (ErrorDomain.UNKNOWN, ErrorCode.UNKNOWN_ERROR, False)


@dataclass(frozen=True, slots=True)
class ErrorStrategy:
    """에러 코드별 처리 전략 (로그 레벨/심각도)"""

    severity: ErrorSeverity
    log_level: str


_STRATEGY_TABLE: dict[ErrorCode, ErrorStrategy] = {
    ErrorCode.CONNECT_FAILED: ErrorStrategy(ErrorSeverity.WARNING, "warning"),
    ErrorCode.CONNECTION_RESET: ErrorStrategy(ErrorSeverity.WARNING, "warning"),
    ErrorCode.CONNECTION_CLOSED: ErrorStrategy(ErrorSeverity.INFO, "info"),
    ErrorCode.RETRY_EXHAUSTED: ErrorStrategy(ErrorSeverity.CRITICAL, "critical"),
    ErrorCode.AUTH_FAILED: ErrorStrategy(ErrorSeverity.ERROR, "error"),
    ErrorCode.NOT_AUTHENTICATED: ErrorStrategy(ErrorSeverity.WARNING, "warning"),
    ErrorCode.UNSUPPORTED_OPERATION: ErrorStrategy(ErrorSeverity.WARNING, "warning"),
    ErrorCode.REQUEST_TIMEOUT: ErrorStrategy(ErrorSeverity.WARNING, "warning"),
    ErrorCode.OPERATION_REJECTED: ErrorStrategy(ErrorSeverity.INFO, "info"),
    ErrorCode.RESUBSCRIBE_FAILED: ErrorStrategy(ErrorSeverity.WARNING, "warning"),
    ErrorCode.HANDLER_FAILED: ErrorStrategy(ErrorSeverity.ERROR, "error"),
    ErrorCode.DESERIALIZATION_ERROR: ErrorStrategy(ErrorSeverity.ERROR, "error"),
    ErrorCode.CANCELLED: ErrorStrategy(ErrorSeverity.INFO, "info"),
}

_DEFAULT_STRATEGY = ErrorStrategy(ErrorSeverity.ERROR, "error")


def get_error_strategy(code: ErrorCode) -> ErrorStrategy:
    """에러 코드 → 처리 전략 (미등록 코드는 ERROR)"""
    return _STRATEGY_TABLE.get(code, _DEFAULT_STRATEGY)


__all__ = [
    "DESERIALIZATION_ERRORS",
    "SOCKET_EXCEPTIONS",
    "RULES_BY_KIND",
    "ErrorStrategy",
    "ErrorSeverity",
    "classify_exception",
    "get_error_strategy",
]
