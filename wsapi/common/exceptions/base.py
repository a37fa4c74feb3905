"""WS-API 엔진 예외 계층.

모든 예외는 `WsApiError`를 상속하며 운영/관측/정책 판단을 위한 구조화 필드
(error_domain, error_code, retryable)를 클래스 단위로 가집니다.
`to_dict()`는 이벤트/로그 직렬화 시 일관된 스키마를 제공합니다.
"""

from __future__ import annotations

from typing import Any, ClassVar

from wsapi.core.types import ErrorCode, ErrorDomain, RequestId


class WsApiError(Exception):
    """엔진 기본 예외 클래스"""

    error_domain: ClassVar[ErrorDomain] = ErrorDomain.UNKNOWN
    error_code: ClassVar[ErrorCode] = ErrorCode.UNKNOWN_ERROR
    retryable: ClassVar[bool] = False

    def __init__(
        self,
        message: str,
        *,
        ws_key: str | None = None,
        operation: str | None = None,
        request_id: RequestId | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.ws_key = ws_key
        self.operation = operation
        self.request_id = request_id

    def to_dict(self) -> dict[str, Any]:
        """예외 정보를 이벤트 데이터로 변환"""
        result: dict[str, Any] = {
            "error": self.message,
            "error_type": self.__class__.__name__,
            "error_domain": self.error_domain.value,
            "error_code": self.error_code.value,
            "retryable": self.retryable,
        }
        if self.ws_key is not None:
            result["ws_key"] = str(self.ws_key)
        if self.operation is not None:
            result["operation"] = self.operation
        if self.request_id is not None:
            result["request_id"] = self.request_id
        if self.__cause__ is not None:
            result["original_error"] = str(self.__cause__)
            result["original_error_type"] = self.__cause__.__class__.__name__
        return result


class UnsupportedOperationForConnection(WsApiError):
    """연결 키에서 허용되지 않는 오퍼레이션 (로컬 거부, 네트워크 미사용)"""

    error_domain = ErrorDomain.REQUEST
    error_code = ErrorCode.UNSUPPORTED_OPERATION


class NotAuthenticated(WsApiError):
    """인증이 필요한 오퍼레이션을 미인증 세션에서 호출 (로컬 거부)"""

    error_domain = ErrorDomain.SESSION
    error_code = ErrorCode.NOT_AUTHENTICATED


class AuthenticationFailed(WsApiError):
    """거래소가 로그인 핸드셰이크를 거부 (해당 연결 시도 실패, 백오프 후 재시도)"""

    error_domain = ErrorDomain.SESSION
    error_code = ErrorCode.AUTH_FAILED
    retryable = True


class ConnectionReset(WsApiError):
    """진행 중 요청이 연결 끊김으로 무효화됨 (호출자가 재전송 여부 결정)"""

    error_domain = ErrorDomain.CONNECTION
    error_code = ErrorCode.CONNECTION_RESET
    retryable = True


class ConnectionClosed(WsApiError):
    """명시적 종료로 연결 키가 닫힘 (종단 상태)"""

    error_domain = ErrorDomain.CONNECTION
    error_code = ErrorCode.CONNECTION_CLOSED


class ConnectionUnavailable(WsApiError):
    """재연결 시도 횟수 소진 (호출자가 connect()로 재시도할 때까지 치명)"""

    error_domain = ErrorDomain.CONNECTION
    error_code = ErrorCode.RETRY_EXHAUSTED


class RequestTimeout(WsApiError):
    """응답 대기 시간 초과"""

    error_domain = ErrorDomain.REQUEST
    error_code = ErrorCode.REQUEST_TIMEOUT
    retryable = True


class OperationError(WsApiError):
    """거래소가 오퍼레이션을 명시적으로 거부 (자동 재시도 금지)"""

    error_domain = ErrorDomain.REQUEST
    error_code = ErrorCode.OPERATION_REJECTED

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        status: int | None = None,
        ws_key: str | None = None,
        operation: str | None = None,
        request_id: RequestId | None = None,
    ) -> None:
        super().__init__(
            message, ws_key=ws_key, operation=operation, request_id=request_id
        )
        self.code = code
        self.status = status

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["exchange_code"] = self.code
        result["status"] = self.status
        return result


class ResubscriptionFailed(WsApiError):
    """재연결 후 토픽 재구독 실패 (비치명, 토픽 단위로 격리)"""

    error_domain = ErrorDomain.SUBSCRIPTION
    error_code = ErrorCode.RESUBSCRIBE_FAILED

    def __init__(self, message: str, *, topic: str, ws_key: str | None = None) -> None:
        super().__init__(message, ws_key=ws_key, operation="SUBSCRIBE")
        self.topic = topic

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["topic"] = self.topic
        return result


__all__ = [
    "WsApiError",
    "UnsupportedOperationForConnection",
    "NotAuthenticated",
    "AuthenticationFailed",
    "ConnectionReset",
    "ConnectionClosed",
    "ConnectionUnavailable",
    "RequestTimeout",
    "OperationError",
    "ResubscriptionFailed",
]
