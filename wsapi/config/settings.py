"""통합 Settings 모듈 - 환경변수 기반

이 모듈의 역할:
    1. 코드에 합리적인 기본값 제공
    2. 환경변수로 오버라이드 (우선순위 높음)
    3. 타입 안전성 보장 (Pydantic 자동 검증)

설정 우선순위:
    1. 환경변수 (최우선) - export WS_REQUEST_TIMEOUT=...
    2. .env 파일 - config/.env
    3. 코드 기본값 (settings.py 내부)

사용 예시:
    # 기본값 사용
    engine = WsApiEngine()

    # 환경변수 오버라이드
    export WS_RECONNECT_MAX_ATTEMPTS=20
    export LOG_LEVEL=DEBUG

자격 증명(API key/secret)은 여기서 읽지 않습니다. 엔진 생성 시 Credentials로 주입합니다.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# 설정 파일 경로
config_dir = Path(__file__).parent.parent.parent / "config"


def env_settings(prefix: str) -> SettingsConfigDict:
    """환경변수 + .env 통합 설정

    Args:
        prefix: 환경변수 접두사 (예: WS_, LOG_)

    Returns:
        Pydantic 설정 딕셔너리
    """
    return SettingsConfigDict(
        env_prefix=prefix,
        env_file=config_dir / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class WebsocketSettings(BaseSettings):
    """WebSocket 연결/요청 설정 (환경변수 기반)

    환경변수 오버라이드 (모든 타이밍 설정은 초 단위):
        WS_HEARTBEAT_INTERVAL: ping 전송 간격 (기본: 20초)
        WS_HEARTBEAT_TIMEOUT: pong 대기 타임아웃 (기본: 10초)
        WS_HEARTBEAT_FAIL_LIMIT: 연속 pong 실패 허용 횟수 (기본: 3회)
        WS_RECEIVE_IDLE_TIMEOUT: 수신/pong 정지 워치독 타임아웃 (기본: 60초, 0이면 비활성)
        WS_RECONNECT_MAX_ATTEMPTS: 재연결 최대 시도 횟수 (기본: 10회)
        WS_INITIAL_BACKOFF / WS_MAX_BACKOFF / WS_BACKOFF_MULTIPLIER / WS_JITTER: 백오프 정책
        WS_REQUEST_TIMEOUT: 요청별 응답 대기 시간 (기본: 10초)
        WS_TIMEOUT_MARKER_TTL: 타임아웃된 id 보관 시간 (기본: 60초)
        WS_VERIFY_SESSION: session.logon 후 session.status로 확인 여부 (기본: false)
    """

    heartbeat_interval: float = 20.0
    heartbeat_timeout: float = 10.0
    heartbeat_fail_limit: int = 3
    receive_idle_timeout: float = 60.0
    reconnect_max_attempts: int = 10
    initial_backoff: float = 0.5
    max_backoff: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.2
    request_timeout: float = 10.0
    timeout_marker_ttl: float = 60.0
    verify_session: bool = False

    model_config = env_settings("WS_")


class LoggingSettings(BaseSettings):
    """로깅 설정 (환경변수 기반)

    환경변수 오버라이드:
        LOG_LEVEL: 로그 레벨 (기본: INFO)
        LOG_TO_FILE: 파일 로깅 여부 (기본: false)
        LOG_DIR: 로그 디렉토리 (기본: logs)
    """

    level: str = "INFO"
    to_file: bool = False
    dir: str = "logs"

    model_config = env_settings("LOG_")


# ========================================
# 설정 인스턴스 (모듈 기본값)
# ========================================
# 엔진은 생성 시 다른 인스턴스를 주입받을 수 있습니다.

websocket_settings = WebsocketSettings()
logging_settings = LoggingSettings()
