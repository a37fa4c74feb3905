from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Any

from wsapi.common.logger import PipelineLogger
from wsapi.core.connection.services.error_handler import ConnectionErrorHandler
from wsapi.core.connection.utils.logging.log_phases import (
    PHASE_HEARTBEAT_LOOP,
    PHASE_HEARTBEAT_SEND,
    PHASE_WATCHDOG_IDLE,
    PHASE_WATCHDOG_LOOP,
)
from wsapi.core.connection.utils.logging.logging_mixin import ScopedConnectionLoggingMixin
from wsapi.core.dto.internal.common import ConnectionPolicyDomain, ConnectionScopeDomain

logger = PipelineLogger.get_logger("health_monitor", "connection")


class ConnectionHealthMonitor(ScopedConnectionLoggingMixin):
    """연결 상태 감시 전담 클래스

    책임:
    - ping 프레임 전송 + pong 대기 (연속 실패 한도 초과 시 연결 종료)
    - 워치독: 수신 프레임/pong 모두 없는 유휴 시간이 한도를 넘으면 연결 종료
    연결을 닫으면 수신 루프가 끝나고 ConnectionManager가 재연결 흐름을 탑니다.
    """

    def __init__(
        self,
        scope: ConnectionScopeDomain,
        policy: ConnectionPolicyDomain,
        error_handler: ConnectionErrorHandler,
    ) -> None:
        self.scope = scope
        self.policy = policy
        self._logger = logger
        self._error_handler = error_handler

        self._last_receive_ts: float = 0.0
        self._last_pong_ts: float = 0.0
        self._heartbeat_fail_count: int = 0
        self._is_monitoring: bool = False

        self._heartbeat_task: asyncio.Task[None] | None = None
        self._watchdog_task: asyncio.Task[None] | None = None

    async def _emit_error(
        self, err: BaseException, *, phase: str, extra: dict | None = None
    ) -> None:
        """헬스 모니터 단계 오류를 에러 버스로 발행한다."""
        await self._error_handler.emit_ws_error(
            err,
            observed_key=f"{self.scope.to_key()}:{phase}",
            raw_context={
                "phase": phase,
                "heartbeat_timeout": self.policy.heartbeat_timeout,
                "heartbeat_fail_count": self._heartbeat_fail_count,
                **(extra or {}),
            },
        )

    async def send_heartbeat(self, websocket: Any) -> None:
        """ping 전송 후 pong 대기"""
        try:
            pong_waiter = await websocket.ping()
            await asyncio.wait_for(pong_waiter, timeout=self.policy.heartbeat_timeout)
        except asyncio.TimeoutError as e:
            self._update_heartbeat_status(success=False)
            self._log_warning(
                "pong not received in time",
                phase=PHASE_HEARTBEAT_SEND,
                fail_count=self._heartbeat_fail_count,
            )
            await self._emit_error(e, phase=PHASE_HEARTBEAT_SEND)
            return

        self._update_heartbeat_status(success=True)
        self._log_debug("heartbeat ok", phase=PHASE_HEARTBEAT_SEND)

    async def start_monitoring(self, websocket: Any) -> None:
        """하트비트/워치독 시작"""
        now = time.monotonic()
        self._last_receive_ts = now
        self._last_pong_ts = now
        self._heartbeat_fail_count = 0
        self._is_monitoring = True

        if self.policy.heartbeat_interval > 0:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(websocket))

        # 워치독 (수신 유휴 시간 감시) - 타임아웃이 0 이하이면 비활성화
        if float(self.policy.receive_idle_timeout) > 0:
            self._watchdog_task = asyncio.create_task(self._watchdog_loop(websocket))

        self._log_debug("health monitoring started", phase=PHASE_HEARTBEAT_LOOP)

    async def stop_monitoring(self) -> None:
        """모니터링 중단"""
        self._is_monitoring = False
        current = asyncio.current_task()

        for task in (self._heartbeat_task, self._watchdog_task):
            if task is None or task is current:
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._heartbeat_task = None
        self._watchdog_task = None

    def notify_receive(self) -> None:
        """프레임 수신 시점에 호출되어 마지막 수신 시각을 갱신합니다."""
        self._last_receive_ts = time.monotonic()

    def notify_pong(self) -> None:
        self._last_pong_ts = time.monotonic()

    async def _close(self, websocket: Any) -> None:
        # 연결 종료를 시도하여 상위 루프가 재연결 로직을 타게 한다
        try:
            await websocket.close()
        except Exception as close_error:
            self._log_warning(
                "websocket close failed", phase=PHASE_WATCHDOG_LOOP, error=str(close_error)
            )

    async def _heartbeat_loop(self, websocket: Any) -> None:
        while self._is_monitoring:
            try:
                await asyncio.sleep(self.policy.heartbeat_interval)
                await self.send_heartbeat(websocket)
                if not self.is_healthy():
                    self._log_warning(
                        "heartbeat fail limit reached, closing connection",
                        phase=PHASE_HEARTBEAT_LOOP,
                        fail_count=self._heartbeat_fail_count,
                    )
                    await self._close(websocket)
                    break
            except asyncio.CancelledError:
                break
            except Exception as e:
                # ping 자체 실패 = 연결 이미 손상, 수신 루프가 종료를 감지
                self._log_warning(
                    "heartbeat loop stopped", phase=PHASE_HEARTBEAT_LOOP, error=str(e)
                )
                await self._emit_error(e, phase=PHASE_HEARTBEAT_LOOP)
                break

    def _update_heartbeat_status(self, success: bool) -> None:
        if success:
            self.notify_pong()
            self._heartbeat_fail_count = 0
        else:
            self._heartbeat_fail_count += 1

    def is_healthy(self) -> bool:
        return self._heartbeat_fail_count < self.policy.heartbeat_fail_limit

    def idle_for(self, now: float | None = None) -> float:
        """마지막 활동(수신 프레임 또는 pong) 이후 경과 시간"""
        now = time.monotonic() if now is None else now
        return now - max(self._last_receive_ts, self._last_pong_ts)

    @property
    def heartbeat_fail_count(self) -> int:
        return self._heartbeat_fail_count

    @property
    def is_monitoring(self) -> bool:
        return self._is_monitoring

    async def _watchdog_loop(self, websocket: Any) -> None:
        """수신 유휴 감시 루프: 일정 시간 활동이 없으면 연결을 종료합니다."""
        # 체크 주기는 타임아웃의 1/3, 최대 10초
        timeout = float(self.policy.receive_idle_timeout)
        check_interval = min(10.0, timeout / 3.0)

        while self._is_monitoring:
            try:
                await asyncio.sleep(check_interval)
                idle = self.idle_for()
                if idle >= timeout:
                    self._log_warning(
                        f"receive idle timeout exceeded - idle={idle:.1f}s >= {timeout:.1f}s",
                        phase=PHASE_WATCHDOG_IDLE,
                    )
                    await self._emit_error(
                        TimeoutError("receive idle timeout exceeded"),
                        phase=PHASE_WATCHDOG_IDLE,
                        extra={
                            "idle_seconds": round(idle, 1),
                            "receive_idle_timeout": timeout,
                        },
                    )
                    await self._close(websocket)
                    break
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._log_error(
                    "watchdog loop error", phase=PHASE_WATCHDOG_LOOP, error=str(e)
                )
                await self._emit_error(e, phase=PHASE_WATCHDOG_LOOP)
                break
