from __future__ import annotations

from enum import StrEnum
from typing import Any, Awaitable, Callable, Final, Literal, TypeAlias, assert_never

# 공통 타입/별칭을 한곳에 모읍니다.
# - 코어 계층 어디서나 재사용 가능한 최소 단위만 정의합니다.
# - 엔드포인트 세부(URL, 허용 오퍼레이션)는 connection.registry에 둡니다.


class WsKey(StrEnum):
    """논리적 웹소켓 엔드포인트 식별자 (연결 키).

    값은 원본 WS_KEY_MAP 문자열을 그대로 사용합니다.
    """

    MAIN = "main"
    MAIN2 = "main2"
    MAIN3 = "main3"
    MAIN_TESTNET_PUBLIC = "mainTestnetPublic"
    MAIN_TESTNET_USER_DATA = "mainTestnetUserData"
    MARGIN_RISK_USER_DATA = "marginRiskUserData"
    USDM = "usdm"
    USDM_TESTNET = "usdmTestnet"
    COINM = "coinm"
    COINM2 = "coinm2"
    COINM_TESTNET = "coinmTestnet"
    EOPTIONS = "eoptions"
    PORTFOLIO_MARGIN_USER_DATA = "portfolioMarginUserData"
    PORTFOLIO_MARGIN_PRO_USER_DATA = "portfolioMarginProUserData"
    MAIN_WS_API = "mainWSAPI"
    MAIN_WS_API2 = "mainWSAPI2"
    MAIN_WS_API_TESTNET = "mainWSAPITestnet"
    USDM_WS_API = "usdmWSAPI"
    USDM_WS_API_TESTNET = "usdmWSAPITestnet"


Market: TypeAlias = Literal[
    "spot", "margin", "usdm", "coinm", "options", "portfolio_margin"
]
EndpointKind: TypeAlias = Literal["stream", "ws_api"]
RequestId: TypeAlias = int | str
Params: TypeAlias = dict[str, Any] | list[Any]

# 스트림 핸들러는 동기/비동기 모두 허용
StreamHandler: TypeAlias = Callable[[Any], Any] | Callable[[Any], Awaitable[Any]]


class ConnectionPhase(StrEnum):
    """연결 생명주기 단계.

    CLOSED/UNAVAILABLE은 종단 상태이며 명시적 호출로만 벗어납니다.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"
    UNAVAILABLE = "unavailable"


class SessionPhase(StrEnum):
    """세션 인증 상태 머신.

    LOGGING_ON: session.logon 응답 대기
    VERIFYING: session.status로 로그인 결과 확인 중 (session.login 응답 단계)
    """

    UNAUTHENTICATED = "unauthenticated"
    LOGGING_ON = "logging_on"
    VERIFYING = "verifying"
    AUTHENTICATED = "authenticated"


TERMINAL_PHASES: Final[frozenset[ConnectionPhase]] = frozenset(
    {ConnectionPhase.CLOSED, ConnectionPhase.UNAVAILABLE}
)


def connection_phase_format(phase: ConnectionPhase) -> str:
    """상태 로깅 포맷터: Enum 분기 완전탐색 보장."""
    match phase:
        case (
            ConnectionPhase.DISCONNECTED
            | ConnectionPhase.CONNECTING
            | ConnectionPhase.CONNECTED
            | ConnectionPhase.AUTHENTICATING
            | ConnectionPhase.READY
            | ConnectionPhase.CLOSING
            | ConnectionPhase.CLOSED
            | ConnectionPhase.UNAVAILABLE
        ):
            return phase.value
        case _:
            assert_never(phase)
