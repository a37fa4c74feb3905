from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Awaitable, Callable

import orjson
import websockets
from pydantic import ValidationError

from wsapi.common.events import ConnectionStateChangedEvent, EventBus
from wsapi.common.exceptions.base import (
    AuthenticationFailed,
    ConnectionClosed,
    ConnectionReset,
    ConnectionUnavailable,
    NotAuthenticated,
)
from wsapi.common.exceptions.exception_rule import SOCKET_EXCEPTIONS
from wsapi.common.logger import PipelineLogger
from wsapi.common.serde import loads_frame
from wsapi.core.connection.authenticator import Credentials, SessionAuthenticator
from wsapi.core.connection.correlator import RequestCorrelator
from wsapi.core.connection.health_monitor import ConnectionHealthMonitor
from wsapi.core.connection.rate_limit import RateLimitTracker
from wsapi.core.connection.registry import (
    LIST_SUBSCRIPTIONS,
    SESSION_LOGOUT,
    SUBSCRIBE,
    UNSUBSCRIBE,
    ConnectionSpec,
    OperationContract,
    validate_operation,
)
from wsapi.core.connection.services.backoff import compute_next_backoff
from wsapi.core.connection.services.error_handler import ConnectionErrorHandler
from wsapi.core.connection.stream_router import StreamRouter
from wsapi.core.connection.subscription_manager import SubscriptionManager
from wsapi.core.connection.utils.logging.log_phases import (
    PHASE_CLOSE,
    PHASE_CONNECT,
    PHASE_RECONNECT_BACKOFF,
    PHASE_RETRY_EXHAUSTED,
    PHASE_STATE_TRANSITION,
)
from wsapi.core.connection.utils.logging.logging_mixin import ScopedConnectionLoggingMixin
from wsapi.core.dto.internal.common import ConnectionPolicyDomain
from wsapi.core.dto.internal.connection import (
    ConnectionStateDomain,
    ConnectionStatusDomain,
)
from wsapi.core.dto.internal.request import PendingRequestDomain
from wsapi.core.dto.io.frames import WsApiResponseDTO
from wsapi.core.types import TERMINAL_PHASES, ConnectionPhase, Params, SessionPhase

logger = PipelineLogger.get_logger("connection_manager", "connection")

Connector = Callable[[str], Awaitable[Any]]

# 연결 시도 하나를 실패로 간주하고 백오프 후 재시도하는 예외
RETRYABLE_CONNECT_ERRORS = (*SOCKET_EXCEPTIONS, ConnectionReset, AuthenticationFailed)


async def default_connector(url: str) -> Any:
    """websockets 기본 커넥터 (keepalive는 ConnectionHealthMonitor가 담당)"""
    return await websockets.connect(url, ping_interval=None)


def _retrieve_exception(future: asyncio.Future[Any]) -> None:
    # 대기자가 없어도 "exception was never retrieved" 경고를 남기지 않음
    if not future.cancelled():
        future.exception()


class ConnectionManager(ScopedConnectionLoggingMixin):
    """연결 키 하나의 소켓 생명주기 관리

    상태 전이:
        DISCONNECTED → CONNECTING → CONNECTED → (AUTHENTICATING) → READY
        끊김 시 DISCONNECTED로 돌아가 백오프 후 재연결
        CLOSED(명시적 종료), UNAVAILABLE(재시도 소진)은 종단 상태

    키당 물리 연결은 최대 하나입니다. 동시 호출자는 진행 중인 전이를 함께 기다립니다.
    """

    def __init__(
        self,
        spec: ConnectionSpec,
        policy: ConnectionPolicyDomain,
        bus: EventBus,
        *,
        credentials: Credentials | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.spec = spec
        self.scope = spec.to_scope()
        self.policy = policy
        self._logger = logger
        self._bus = bus
        self._connector: Connector = connector or default_connector

        self._state = ConnectionStateDomain()

        # 컴포넌트 초기화
        self._error_handler = ConnectionErrorHandler(self.scope, bus)
        self._correlator = RequestCorrelator(self.scope, policy)
        self._rate_limits = RateLimitTracker(self.scope)
        self._authenticator = SessionAuthenticator(self.scope, policy, credentials)
        self._subscriptions = SubscriptionManager(
            self.scope, self._correlator, bus, self._error_handler
        )
        self._health_monitor = ConnectionHealthMonitor(
            self.scope, policy, self._error_handler
        )
        self._stream_router = StreamRouter(self.scope, self._error_handler)

        # 실행 제어
        self._stop_requested: bool = False
        self._run_task: asyncio.Task[None] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._backoff_task: asyncio.Task[None] | None = None
        self._resubscribe_task: asyncio.Task[Any] | None = None
        self._ready_future: asyncio.Future[None] | None = None

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------
    @property
    def phase(self) -> ConnectionPhase:
        return self._state.phase

    @property
    def session_phase(self) -> SessionPhase:
        return self._authenticator.phase

    @property
    def rate_limits(self) -> RateLimitTracker:
        return self._rate_limits

    @property
    def subscriptions(self) -> SubscriptionManager:
        return self._subscriptions

    @property
    def stream_router(self) -> StreamRouter:
        return self._stream_router

    @property
    def correlator(self) -> RequestCorrelator:
        return self._correlator

    def status(self) -> ConnectionStatusDomain:
        return ConnectionStatusDomain(
            phase=self._state.phase,
            session_phase=self._authenticator.phase,
            reconnect_attempts=self._state.reconnect_attempts,
            last_activity_ts=self._state.last_activity_ts,
            pending_requests=self._correlator.pending_count,
            subscriptions=self._subscriptions.topics,
        )

    # ------------------------------------------------------------------
    # 상태 전이 / ready 대기
    # ------------------------------------------------------------------
    async def _transition(self, phase: ConnectionPhase) -> None:
        previous = self._state.phase
        if previous == phase:
            return
        self._state.phase = phase
        self._log_debug(
            f"{previous.value} -> {phase.value}",
            phase=PHASE_STATE_TRANSITION,
        )
        await self._bus.emit(
            ConnectionStateChangedEvent(
                ws_key=self.scope.ws_key, previous=previous, current=phase
            )
        )

    def _ensure_ready_future(self) -> asyncio.Future[None]:
        if self._ready_future is None or self._ready_future.done():
            future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            future.add_done_callback(_retrieve_exception)
            self._ready_future = future
        return self._ready_future

    def _resolve_ready(self) -> None:
        future = self._ensure_ready_future()
        if not future.done():
            future.set_result(None)

    def _fail_ready(self, err: BaseException) -> None:
        future = self._ensure_ready_future()
        if not future.done():
            future.set_exception(err)

    def _raise_if_terminal(self) -> None:
        if self._state.phase == ConnectionPhase.CLOSED:
            raise ConnectionClosed("connection key closed", ws_key=self.scope.ws_key)
        if self._state.phase == ConnectionPhase.UNAVAILABLE:
            raise ConnectionUnavailable(
                f"reconnect attempts exhausted ({self.policy.reconnect_max_attempts})",
                ws_key=self.scope.ws_key,
            )

    def _start(self) -> None:
        if self._run_task is not None and not self._run_task.done():
            return
        self._stop_requested = False
        self._ensure_ready_future()
        self._run_task = asyncio.create_task(
            self._run(), name=f"wsapi-connection-{self.scope.ws_key.value}"
        )
        self._run_task.add_done_callback(self._on_run_done)

    def _on_run_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            # 루프 밖으로 새어 나온 예외: 대기자에게 전달
            self._log_exception("connection loop crashed", PHASE_CONNECT, err)
            self._fail_ready(err)

    async def ensure_connected(self) -> Any:
        """READY 소켓을 반환합니다. 필요하면 연결을 시작하고 전이 완료를 기다립니다."""
        while True:
            self._raise_if_terminal()
            websocket = self._state.websocket
            if self._state.phase == ConnectionPhase.READY and websocket is not None:
                return websocket
            self._start()
            await asyncio.shield(self._ensure_ready_future())

    async def connect(self) -> None:
        """명시적 연결. UNAVAILABLE 상태에서 재시도 카운터를 초기화하고 다시 시작합니다."""
        if self._state.phase == ConnectionPhase.UNAVAILABLE:
            self._state.reconnect_attempts = 0
            await self._transition(ConnectionPhase.DISCONNECTED)
        await self.ensure_connected()

    # ------------------------------------------------------------------
    # 연결 루프
    # ------------------------------------------------------------------
    def _needs_login(self) -> bool:
        return self.spec.supports_session_auth and self._authenticator.has_credentials

    async def _run(self) -> None:
        """소켓에 연결하고 수신 루프를 실행합니다. 끊김 시 재접속을 수행합니다."""
        url = self.spec.url
        while not self._stop_requested:
            try:
                await self._connect_once(url)
            except asyncio.CancelledError:
                self._log_info("connection task cancelled", phase=PHASE_CLOSE)
                raise
            except RETRYABLE_CONNECT_ERRORS as e:
                if self._stop_requested:
                    break
                attempt = self._state.reconnect_attempts + 1
                if not await self._retry_or_give_up(e, url, attempt, unexpected=False):
                    break
            except Exception as e:
                # 예기치 못한 오류도 ws 에러로 발행하고 재시도 흐름을 동일하게 적용
                if self._stop_requested:
                    break
                attempt = self._state.reconnect_attempts + 1
                if not await self._retry_or_give_up(e, url, attempt, unexpected=True):
                    break

    async def _connect_once(self, url: str) -> None:
        """물리 연결 하나의 수명: connect → (login) → READY → 수신 종료

        정상적으로 READY에 도달한 뒤 끊기면 정상 반환하지 않고 소켓 예외를 올립니다.
        """
        await self._transition(ConnectionPhase.CONNECTING)
        self._log_info(f"connecting {url}", phase=PHASE_CONNECT)
        websocket = await self._connector(url)

        try:
            self._state.websocket = websocket
            self._state.touch()
            await self._transition(ConnectionPhase.CONNECTED)

            reader = self._reader_task = asyncio.create_task(self._read_loop(websocket))

            if self._needs_login():
                await self._transition(ConnectionPhase.AUTHENTICATING)
                await self._login_while_reading(websocket, reader)

            # 성공적으로 연결되었으므로 백오프 시도횟수 리셋
            self._state.reconnect_attempts = 0
            reconnected = self._state.connected_once
            self._state.connected_once = True

            await self._health_monitor.start_monitoring(websocket)
            await self._transition(ConnectionPhase.READY)
            self._resolve_ready()
            self._log_info("connection ready", phase=PHASE_CONNECT, reconnected=reconnected)

            if reconnected and self._subscriptions.topics:
                self._resubscribe_task = asyncio.create_task(self._resubscribe(websocket))

            await reader
        except BaseException:
            await self._teardown(websocket)
            raise
        # 수신 루프는 예외로만 끝남. 여기 도달 = 원격에서 정상 종료
        await self._teardown(websocket)
        raise ConnectionResetError("websocket closed by remote")

    async def _login_while_reading(self, websocket: Any, reader: asyncio.Task[None]) -> None:
        """로그인과 수신 루프를 경쟁시킴

        로그인 도중 소켓이 끊기면 응답 타임아웃을 기다리지 않고 수신 루프의 소켓 예외를 그대로 올립니다.
        """
        login = asyncio.create_task(self._authenticator.login(self._correlator, websocket))
        try:
            await asyncio.wait({login, reader}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not login.done():
                login.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await login

        if login.done() and not login.cancelled():
            # 로그인 결과 우선 (AuthenticationFailed 등은 여기서 올라감)
            login.result()
            return
        # 수신 루프가 먼저 끝남: 소켓 예외 또는 원격 정상 종료
        await reader
        raise ConnectionResetError("websocket closed during session logon")

    async def _retry_or_give_up(
        self, err: BaseException, url: str, attempt: int, *, unexpected: bool
    ) -> bool:
        """실패한 시도 처리: 에러 발행 후 백오프 대기. 한도 초과 시 False."""
        self._state.reconnect_attempts = attempt
        self._ensure_ready_future()
        await self._transition(ConnectionPhase.DISCONNECTED)

        backoff_delay = compute_next_backoff(self.policy, attempt - 1)
        if isinstance(err, AuthenticationFailed):
            await self._error_handler.emit_session_error(err, attempt=attempt)
        elif unexpected:
            await self._error_handler.emit_ws_error(
                err,
                observed_key=f"url:{url}:unexpected",
                raw_context={"attempt": attempt, "backoff": backoff_delay, "url": url},
            )
        else:
            await self._error_handler.emit_connection_error(
                err, url=url, attempt=attempt, backoff=backoff_delay
            )

        if attempt >= self.policy.reconnect_max_attempts:
            exhausted = ConnectionUnavailable(
                f"reconnect attempts exhausted ({self.policy.reconnect_max_attempts})",
                ws_key=self.scope.ws_key,
            )
            exhausted.__cause__ = err
            self._log_error(
                "max reconnect attempts exceeded",
                phase=PHASE_RETRY_EXHAUSTED,
                attempt=attempt,
                max_reconnect_attempts=self.policy.reconnect_max_attempts,
            )
            await self._error_handler.emit_ws_error(
                exhausted,
                observed_key=f"url:{url}:retry_limit",
                raw_context={
                    "attempt": attempt,
                    "max_reconnect_attempts": self.policy.reconnect_max_attempts,
                },
            )
            await self._transition(ConnectionPhase.UNAVAILABLE)
            self._fail_ready(exhausted)
            return False

        self._log_info(
            f"reconnecting in {backoff_delay:.2f}s (attempt={attempt})",
            phase=PHASE_RECONNECT_BACKOFF,
        )
        self._backoff_task = asyncio.create_task(asyncio.sleep(backoff_delay))
        try:
            await self._backoff_task
        finally:
            self._backoff_task = None
        return not self._stop_requested

    async def _teardown(self, websocket: Any) -> None:
        """연결 하나의 정리: 감시 중단, 수신 중단, 미결 요청 실패, 인증 초기화"""
        await self._health_monitor.stop_monitoring()

        current = asyncio.current_task()
        for task in (self._resubscribe_task, self._reader_task):
            if task is None or task is current:
                continue
            if task.done():
                # 이미 끝난 태스크의 예외 회수
                if not task.cancelled():
                    task.exception()
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._resubscribe_task = None
        self._reader_task = None

        self._state.websocket = None
        self._authenticator.reset()

        # 끊긴 시점에 미결 요청을 실패시켜 호출자가 백오프 동안 기다리지 않게 함
        failed = self._correlator.fail_all(self._make_disconnect_error)
        if failed:
            self._log_warning(
                f"failed {failed} in-flight request(s) on disconnect", phase=PHASE_CLOSE
            )

        try:
            await websocket.close()
        except Exception as close_error:
            self._log_debug("websocket close failed", phase=PHASE_CLOSE, error=str(close_error))

    def _make_disconnect_error(self, pending: PendingRequestDomain) -> BaseException:
        if self._stop_requested:
            return ConnectionClosed(
                "connection closed by caller",
                ws_key=self.scope.ws_key,
                operation=pending.operation,
                request_id=pending.request_id,
            )
        return ConnectionReset(
            "connection lost before response",
            ws_key=self.scope.ws_key,
            operation=pending.operation,
            request_id=pending.request_id,
        )

    async def _resubscribe(self, websocket: Any) -> None:
        try:
            await self._subscriptions.resubscribe_all(websocket)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._error_handler.emit_subscription_error(
                e, topics=sorted(self._subscriptions.topics)
            )

    # ------------------------------------------------------------------
    # 수신
    # ------------------------------------------------------------------
    async def _read_loop(self, websocket: Any) -> None:
        while True:
            raw = await websocket.recv()
            await self._on_frame(raw)

    async def _on_frame(self, raw: str | bytes) -> None:
        self._state.touch()
        self._health_monitor.notify_receive()

        try:
            frame = loads_frame(raw)
        except orjson.JSONDecodeError as e:
            await self._error_handler.emit_ws_error(
                e, observed_key="frame:invalid_json", raw_context={"size": len(raw)}
            )
            return

        if not isinstance(frame, dict):
            await self._error_handler.emit_ws_error(
                TypeError(f"unexpected frame type: {type(frame).__name__}"),
                observed_key="frame:not_object",
            )
            return

        if "rateLimits" in frame:
            try:
                self._rate_limits.update(frame["rateLimits"] or [])
            except (ValidationError, TypeError) as e:
                await self._error_handler.emit_ws_error(
                    e, observed_key="frame:rate_limits"
                )

        if self._correlator.dispatch(frame):
            return
        await self._stream_router.dispatch(frame)

    # ------------------------------------------------------------------
    # 요청
    # ------------------------------------------------------------------
    def _precheck(self, operation: str) -> OperationContract:
        """호출 시점 로컬 검증. 통과한 오퍼레이션 계약을 반환합니다."""
        contract = validate_operation(self.scope.ws_key, operation)
        if contract.requires_auth and not self._authenticator.has_credentials:
            raise NotAuthenticated(
                f"{operation} requires credentials",
                ws_key=self.scope.ws_key,
                operation=operation,
            )
        return contract

    async def send(
        self,
        operation: str,
        params: Params | None = None,
        *,
        timeout: float | None = None,
    ) -> asyncio.Future[WsApiResponseDTO]:
        """검증 → 연결 보장 → 전송. 응답/타임아웃/리셋으로 정산될 future를 반환합니다."""
        contract = self._precheck(operation)
        websocket = await self.ensure_connected()
        if contract.requires_auth:
            self._authenticator.require_authenticated(operation)

        future = await self._correlator.submit(
            websocket,
            operation,
            params,
            timeout=timeout,
            result_model=contract.result_model,
        )
        if operation == SESSION_LOGOUT:
            future.add_done_callback(self._on_logout_settled)
        return future

    async def request(
        self,
        operation: str,
        params: Params | None = None,
        *,
        timeout: float | None = None,
    ) -> WsApiResponseDTO:
        future = await self.send(operation, params, timeout=timeout)
        return await future

    def _on_logout_settled(self, future: asyncio.Future[WsApiResponseDTO]) -> None:
        if not future.cancelled() and future.exception() is None:
            self._authenticator.mark_logged_out()

    async def subscribe(self, topics: list[str]) -> WsApiResponseDTO | None:
        validate_operation(self.scope.ws_key, SUBSCRIBE)
        websocket = await self.ensure_connected()
        return await self._subscriptions.subscribe(websocket, topics)

    async def unsubscribe(self, topics: list[str]) -> WsApiResponseDTO | None:
        validate_operation(self.scope.ws_key, UNSUBSCRIBE)
        websocket = await self.ensure_connected()
        return await self._subscriptions.unsubscribe(websocket, topics)

    async def list_subscriptions(self) -> list[str]:
        validate_operation(self.scope.ws_key, LIST_SUBSCRIPTIONS)
        websocket = await self.ensure_connected()
        return await self._subscriptions.list_remote(websocket)

    # ------------------------------------------------------------------
    # 종료
    # ------------------------------------------------------------------
    async def close(self, reason: str | None = None) -> None:
        """명시적 종료: 타이머/태스크 취소, 미결 요청 ConnectionClosed, 소켓 해제 (종단)"""
        if self._state.phase == ConnectionPhase.CLOSED:
            return

        self._stop_requested = True
        reason_suffix = f" (reason: {reason})" if reason else ""
        self._log_info(f"close requested{reason_suffix}", phase=PHASE_CLOSE)
        if self._state.phase not in TERMINAL_PHASES:
            await self._transition(ConnectionPhase.CLOSING)

        if self._backoff_task and not self._backoff_task.done():
            self._backoff_task.cancel()

        run_task = self._run_task
        if run_task is not None and not run_task.done():
            run_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await run_task
        self._run_task = None

        # 루프가 없던 경우(미연결/UNAVAILABLE)에도 남은 요청 정리
        self._correlator.fail_all(self._make_disconnect_error)
        self._authenticator.reset()

        await self._transition(ConnectionPhase.CLOSED)
        self._fail_ready(
            ConnectionClosed("connection closed by caller", ws_key=self.scope.ws_key)
        )
