from __future__ import annotations

import logging
from typing import Any

from wsapi.common.logger import PipelineLogger
from wsapi.core.dto.internal.common import ConnectionScopeDomain


class ScopedConnectionLoggingMixin:
    """연결 키 스코프 구조화 로깅

    모든 레코드에 ws_key/market/endpoint_kind/phase를 붙이고, 값이 None인 extra 키는 생략합니다.
    request_id/operation 같은 요청 단위 키는 호출 측에서 extra로 넘깁니다.
    """

    _logger: PipelineLogger
    scope: ConnectionScopeDomain

    def _scope_log_extra(self, phase: str, **extra: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ws_key": self.scope.ws_key.value,
            "market": self.scope.market,
            "endpoint_kind": self.scope.kind,
            "phase": phase,
        }
        payload.update((k, v) for k, v in extra.items() if v is not None)
        return payload

    def _log(
        self,
        level: int,
        message: str,
        phase: str,
        exc_info: BaseException | bool | None = None,
        **extra: Any,
    ) -> None:
        self._logger.log(
            level, message, exc_info=exc_info, extra=self._scope_log_extra(phase, **extra)
        )

    def _log_debug(self, message: str, phase: str, **extra: Any) -> None:
        self._log(logging.DEBUG, message, phase, **extra)

    def _log_info(self, message: str, phase: str, **extra: Any) -> None:
        self._log(logging.INFO, message, phase, **extra)

    def _log_warning(self, message: str, phase: str, **extra: Any) -> None:
        self._log(logging.WARNING, message, phase, **extra)

    def _log_error(self, message: str, phase: str, **extra: Any) -> None:
        self._log(logging.ERROR, message, phase, **extra)

    def _log_exception(
        self, message: str, phase: str, err: BaseException, **extra: Any
    ) -> None:
        """예외 타입/메시지와 트레이스백을 함께 남김"""
        self._log(
            logging.ERROR,
            message,
            phase,
            exc_info=err,
            error=str(err),
            error_type=type(err).__name__,
            **extra,
        )
