"""트라이/캐치 블록과 에러 분류에서 사용할 타입 정의 모듈.

광범위한 Exception 사용을 지양하고, 의도한 예외만 명시적으로 처리하기 위해 사용합니다.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Awaitable, Callable, TypeAlias, Union

# Callables
AsyncWrappedCallable = Callable[..., Awaitable[Any]]
SyncOrAsyncCallable = Union[Callable[..., Any], Callable[..., Awaitable[Any]]]


class ErrorDomain(StrEnum):
    """에러 도메인 분류"""

    CONNECTION = "connection"
    SESSION = "session"
    REQUEST = "request"
    PROTOCOL = "protocol"
    SUBSCRIPTION = "subscription"
    DESERIALIZATION = "deserialization"
    UNKNOWN = "unknown"


class ErrorCode(StrEnum):
    """에러 코드 분류"""

    CONNECT_FAILED = "connect_failed"
    CONNECTION_RESET = "connection_reset"
    CONNECTION_CLOSED = "connection_closed"
    RETRY_EXHAUSTED = "retry_exhausted"
    AUTH_FAILED = "auth_failed"
    NOT_AUTHENTICATED = "not_authenticated"
    UNSUPPORTED_OPERATION = "unsupported_operation"
    REQUEST_TIMEOUT = "request_timeout"
    OPERATION_REJECTED = "operation_rejected"
    RESUBSCRIBE_FAILED = "resubscribe_failed"
    HANDLER_FAILED = "handler_failed"
    DESERIALIZATION_ERROR = "deserialization_error"
    CANCELLED = "cancelled"
    UNKNOWN_ERROR = "unknown_error"


class ErrorSeverity(StrEnum):
    """에러 심각도 (로그 레벨 결정용)"""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


ErrorCategory: TypeAlias = tuple[ErrorDomain, ErrorCode, bool]
ExceptionGroup: TypeAlias = type[BaseException] | tuple[type[BaseException], ...]
RuleKind: TypeAlias = tuple[str, ...]
