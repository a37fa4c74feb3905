from __future__ import annotations

import asyncio
import itertools
import time
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from wsapi.common.exceptions.base import ConnectionReset, OperationError, RequestTimeout
from wsapi.common.logger import PipelineLogger
from wsapi.common.serde import dumps_frame
from wsapi.core.connection.utils.logging.log_phases import (
    PHASE_LATE_RESPONSE,
    PHASE_PARSE,
    PHASE_RESPONSE,
    PHASE_SEND,
    PHASE_TIMEOUT,
)
from wsapi.core.connection.utils.logging.logging_mixin import ScopedConnectionLoggingMixin
from wsapi.core.dto.internal.common import ConnectionPolicyDomain, ConnectionScopeDomain
from wsapi.core.dto.internal.request import PendingRequestDomain
from wsapi.core.dto.io.frames import (
    WsApiRequestFrameDTO,
    WsApiResponseDTO,
    WsApiResponseFrameDTO,
)
from wsapi.core.types import Params, RequestId

logger = PipelineLogger.get_logger("correlator", "connection")

MAX_REQUEST_ID = 2**31 - 1
AUTH_ID_PREFIX = "auth-"


class RequestCorrelator(ScopedConnectionLoggingMixin):
    """연결 키별 요청/응답 상관관계 관리

    책임:
    - 살아있는 id와 겹치지 않는 요청 id 할당 (단조 증가, 2^31-1 이후 1로 순환)
    - 전송 전 PendingRequest 등록, 응답 id로 정확히 한 번 정산
    - 요청별 타임아웃과 타임아웃 마커(TTL) 관리
    - 키 단위 전송 락으로 와이어 순서 = 제출 순서 보장
    """

    def __init__(
        self, scope: ConnectionScopeDomain, policy: ConnectionPolicyDomain
    ) -> None:
        self.scope = scope
        self.policy = policy
        self._logger = logger

        self._pending: dict[str, PendingRequestDomain] = {}
        # 타임아웃된 id → 마커 만료 시각(monotonic)
        self._timeout_markers: dict[str, float] = {}
        self._next_id: int = 1
        self._auth_seq = itertools.count(1)
        self._send_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # id 할당
    # ------------------------------------------------------------------
    def _purge_markers(self, now: float | None = None) -> None:
        now = time.monotonic() if now is None else now
        expired = [k for k, exp in self._timeout_markers.items() if exp <= now]
        for k in expired:
            del self._timeout_markers[k]

    def _is_reserved(self, key: str) -> bool:
        return key in self._pending or key in self._timeout_markers

    def next_request_id(self) -> int:
        """다음 요청 id (살아있는 id, 타임아웃 마커는 건너뜀)"""
        self._purge_markers()
        for _ in range(MAX_REQUEST_ID):
            candidate = self._next_id
            self._next_id = 1 if candidate >= MAX_REQUEST_ID else candidate + 1
            if not self._is_reserved(str(candidate)):
                return candidate
        raise RuntimeError("request id space exhausted")

    def next_auth_id(self) -> str:
        """세션 핸드셰이크 전용 id (호출자 id 공간과 분리)"""
        return f"{AUTH_ID_PREFIX}{next(self._auth_seq)}"

    # ------------------------------------------------------------------
    # 제출/전송
    # ------------------------------------------------------------------
    async def submit(
        self,
        websocket: Any,
        operation: str,
        params: Params | None = None,
        *,
        request_id: RequestId | None = None,
        timeout: float | None = None,
        result_model: type[BaseModel] | None = None,
    ) -> asyncio.Future[WsApiResponseDTO]:
        """요청을 등록하고 전송한 뒤, 정산될 future를 반환합니다.

        result_model이 주어지면 성공 응답의 result를 검증해 typed_result에 담습니다.

        전송 실패 시 future는 ConnectionReset으로 정산된 상태로 반환됩니다.
        """
        loop = asyncio.get_running_loop()
        rid: RequestId = self.next_request_id() if request_id is None else request_id
        key = str(rid)
        if self._is_reserved(key):
            raise ValueError(f"request id {rid!r} is still referenced")

        future: asyncio.Future[WsApiResponseDTO] = loop.create_future()
        pending = PendingRequestDomain(
            request_id=rid,
            operation=operation,
            submitted_at=time.monotonic(),
            ws_key=self.scope.ws_key,
            future=future,
            result_model=result_model,
        )
        self._pending[key] = pending
        future.add_done_callback(self._make_done_callback(key, pending))

        frame = WsApiRequestFrameDTO(id=rid, method=operation, params=params)
        message = dumps_frame(frame.to_wire())

        try:
            async with self._send_lock:
                if future.done():
                    # 락 대기 중 연결 리셋/취소로 이미 정산됨
                    return future
                await websocket.send(message)
        except asyncio.CancelledError:
            self._discard(key, pending)
            raise
        except Exception as e:
            self._discard(key, pending)
            if not future.done():
                err = ConnectionReset(
                    f"send failed: {e}",
                    ws_key=self.scope.ws_key,
                    operation=operation,
                    request_id=rid,
                )
                err.__cause__ = e
                future.set_exception(err)
            return future

        effective_timeout = self.policy.request_timeout if timeout is None else timeout
        if not future.done() and effective_timeout > 0:
            pending.timeout_handle = loop.call_later(
                effective_timeout, self._on_timeout, key
            )

        self._log_debug(
            "request sent", phase=PHASE_SEND, request_id=rid, operation=operation
        )
        return future

    async def request(
        self,
        websocket: Any,
        operation: str,
        params: Params | None = None,
        *,
        request_id: RequestId | None = None,
        timeout: float | None = None,
        result_model: type[BaseModel] | None = None,
    ) -> WsApiResponseDTO:
        future = await self.submit(
            websocket,
            operation,
            params,
            request_id=request_id,
            timeout=timeout,
            result_model=result_model,
        )
        return await future

    def _make_done_callback(
        self, key: str, pending: PendingRequestDomain
    ) -> Callable[[asyncio.Future[Any]], None]:
        def _on_done(future: asyncio.Future[Any]) -> None:
            # 호출자 취소: pending 제거 + 정산 억제 (프레임은 이미 전송됐을 수 있음)
            if future.cancelled():
                self._discard(key, pending)

        return _on_done

    def _discard(self, key: str, pending: PendingRequestDomain) -> None:
        pending.cancel_timer()
        if self._pending.get(key) is pending:
            del self._pending[key]

    def _on_timeout(self, key: str) -> None:
        pending = self._pending.pop(key, None)
        if pending is None:
            return
        pending.timeout_handle = None
        self._timeout_markers[key] = time.monotonic() + self.policy.timeout_marker_ttl
        if pending.future.done():
            return
        pending.future.set_exception(
            RequestTimeout(
                f"{pending.operation} timed out",
                ws_key=self.scope.ws_key,
                operation=pending.operation,
                request_id=pending.request_id,
            )
        )
        self._log_warning(
            "request timed out",
            phase=PHASE_TIMEOUT,
            request_id=pending.request_id,
            operation=pending.operation,
        )

    # ------------------------------------------------------------------
    # 수신 정산
    # ------------------------------------------------------------------
    def dispatch(self, frame: dict[str, Any]) -> bool:
        """수신 프레임을 정산합니다.

        Returns:
            True: 응답으로 소비됨 (정산 또는 늦은 응답 폐기)
            False: 응답이 아님 (스트림 라우팅 대상)
        """
        raw_id = frame.get("id")
        if raw_id is None:
            return False

        key = str(raw_id)
        pending = self._pending.pop(key, None)
        if pending is None:
            self._purge_markers()
            if key in self._timeout_markers:
                self._log_debug(
                    "late response discarded",
                    phase=PHASE_LATE_RESPONSE,
                    request_id=raw_id,
                )
                return True
            return False

        pending.cancel_timer()
        future = pending.future
        if future.done():
            return True

        try:
            parsed = WsApiResponseFrameDTO.model_validate(frame)
        except ValidationError as e:
            future.set_exception(
                self._malformed(pending, "malformed response frame", e, status=None)
            )
            return True

        if parsed.is_error:
            payload = parsed.error
            future.set_exception(
                OperationError(
                    payload.msg if payload is not None else "request failed",
                    code=payload.code if payload is not None else None,
                    status=parsed.status,
                    ws_key=self.scope.ws_key,
                    operation=pending.operation,
                    request_id=pending.request_id,
                )
            )
        else:
            try:
                response = WsApiResponseDTO.from_frame(
                    parsed, pending.request_id, self.scope.ws_key, pending.result_model
                )
            except ValidationError as e:
                future.set_exception(
                    self._malformed(pending, "malformed result", e, status=parsed.status)
                )
                return True
            future.set_result(response)

        self._log_debug(
            "response settled",
            phase=PHASE_RESPONSE,
            request_id=pending.request_id,
            operation=pending.operation,
            status=parsed.status,
        )
        return True

    def _malformed(
        self,
        pending: PendingRequestDomain,
        message: str,
        err: ValidationError,
        *,
        status: int | None,
    ) -> OperationError:
        """검증 실패를 OperationError로 감쌈 (원인은 __cause__에 보존)"""
        self._log_error(
            message,
            phase=PHASE_PARSE,
            request_id=pending.request_id,
            operation=pending.operation,
            error=str(err),
        )
        wrapped = OperationError(
            f"{message}: {pending.operation}",
            status=status,
            ws_key=self.scope.ws_key,
            operation=pending.operation,
            request_id=pending.request_id,
        )
        wrapped.__cause__ = err
        return wrapped

    def fail_all(self, make_error: Callable[[PendingRequestDomain], BaseException]) -> int:
        """모든 미결 요청을 주어진 예외로 정산합니다 (연결 리셋/종료)."""
        pendings = list(self._pending.values())
        self._pending.clear()
        failed = 0
        for pending in pendings:
            pending.cancel_timer()
            if not pending.future.done():
                pending.future.set_exception(make_error(pending))
                failed += 1
        return failed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def has_pending(self, request_id: RequestId) -> bool:
        return str(request_id) in self._pending
