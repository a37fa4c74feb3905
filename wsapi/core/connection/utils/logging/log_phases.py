"""구조화 로그의 phase 값 상수"""

from __future__ import annotations

from typing import Final

# 연결 생명주기
PHASE_CONNECT: Final = "connect"
PHASE_CONNECTION_ERROR: Final = "connection_error"
PHASE_RECONNECT_BACKOFF: Final = "reconnect_backoff"
PHASE_RETRY_EXHAUSTED: Final = "retry_exhausted"
PHASE_STATE_TRANSITION: Final = "state_transition"
PHASE_CLOSE: Final = "close"

# 세션
PHASE_LOGIN: Final = "login"
PHASE_LOGIN_FAILED: Final = "login_failed"
PHASE_LOGOUT: Final = "logout"

# 요청/응답
PHASE_SEND: Final = "send"
PHASE_RESPONSE: Final = "response"
PHASE_TIMEOUT: Final = "timeout"
PHASE_LATE_RESPONSE: Final = "late_response"
PHASE_PARSE: Final = "parse"
PHASE_RATE_LIMIT: Final = "rate_limit"

# 구독/스트림
PHASE_SUBSCRIPTION_ACK: Final = "subscription_ack"
PHASE_RESUBSCRIBE: Final = "resubscribe"
PHASE_STREAM_DISPATCH: Final = "stream_dispatch"

# 헬스 모니터
PHASE_HEARTBEAT_SEND: Final = "heartbeat_send"
PHASE_HEARTBEAT_LOOP: Final = "heartbeat_loop"
PHASE_WATCHDOG_IDLE: Final = "watchdog_idle"
PHASE_WATCHDOG_LOOP: Final = "watchdog_loop"
