"""연결 키 카탈로그 + 오퍼레이션 계약 레지스트리 (순수 조회)

- CONNECTION_SPECS: WsKey → 엔드포인트 URL, 종류(stream/ws_api), 마켓, 세션 인증 지원 여부
- OPERATION_CONTRACTS: 오퍼레이션 이름 → 결과 모델, 인증 필요 여부, 허용 엔드포인트/마켓

레지스트리는 닫혀 있습니다. 등록되지 않은 이름은 네트워크 사용 전에 거부됩니다.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Final

from pydantic import BaseModel

from wsapi.common.exceptions.base import UnsupportedOperationForConnection
from wsapi.core.dto.internal.common import ConnectionScopeDomain
from wsapi.core.dto.io.session import SessionStatusDTO, TimeResultDTO
from wsapi.core.types import EndpointKind, Market, WsKey

# 세션 로그인 예약 오퍼레이션 (엔진 내부 전용)
SESSION_LOGON: Final = "session.logon"
SESSION_STATUS: Final = "session.status"
SESSION_LOGOUT: Final = "session.logout"

SUBSCRIBE: Final = "SUBSCRIBE"
UNSUBSCRIBE: Final = "UNSUBSCRIBE"
LIST_SUBSCRIPTIONS: Final = "LIST_SUBSCRIPTIONS"


@dataclass(slots=True, frozen=True, eq=True, repr=True, match_args=False, kw_only=True)
class ConnectionSpec:
    """연결 키 하나의 엔드포인트 명세"""

    ws_key: WsKey
    url: str
    kind: EndpointKind
    market: Market
    testnet: bool = False

    @property
    def supports_session_auth(self) -> bool:
        """session.logon 기반 인증을 지원하는지 (WS-API 엔드포인트만)"""
        return self.kind == "ws_api"

    def to_scope(self) -> ConnectionScopeDomain:
        return ConnectionScopeDomain(
            ws_key=self.ws_key,
            url=self.url,
            kind=self.kind,
            market=self.market,
            testnet=self.testnet,
        )


@dataclass(slots=True, frozen=True, eq=True, repr=True, match_args=False, kw_only=True)
class OperationContract:
    """오퍼레이션 계약

    markets가 None이면 허용 엔드포인트 종류의 모든 마켓에서 유효합니다.
    result_model이 있으면 성공 응답의 result를 검증해 WsApiResponseDTO.typed_result로 돌려줍니다.
    없으면 result를 그대로 통과시킵니다. 파라미터는 거래소가 검증합니다.
    """

    name: str
    kind: EndpointKind
    requires_auth: bool = False
    markets: frozenset[Market] | None = None
    result_model: type[BaseModel] | None = None
    reserved: bool = False

    def allows(self, spec: ConnectionSpec) -> bool:
        if spec.kind != self.kind:
            return False
        return self.markets is None or spec.market in self.markets


def _spec(
    key: WsKey, url: str, kind: EndpointKind, market: Market, testnet: bool = False
) -> tuple[WsKey, ConnectionSpec]:
    return key, ConnectionSpec(
        ws_key=key, url=url, kind=kind, market=market, testnet=testnet
    )


CONNECTION_SPECS: Final[Mapping[WsKey, ConnectionSpec]] = MappingProxyType(
    dict(
        [
            # 마켓 데이터 / 유저 데이터 스트림 (combined stream)
            _spec(WsKey.MAIN, "wss://stream.binance.com:9443/stream", "stream", "spot"),
            _spec(WsKey.MAIN2, "wss://stream.binance.com:443/stream", "stream", "spot"),
            _spec(WsKey.MAIN3, "wss://data-stream.binance.vision/stream", "stream", "spot"),
            _spec(
                WsKey.MAIN_TESTNET_PUBLIC,
                "wss://stream.testnet.binance.vision/stream",
                "stream",
                "spot",
                testnet=True,
            ),
            _spec(
                WsKey.MAIN_TESTNET_USER_DATA,
                "wss://stream.testnet.binance.vision:9443/stream",
                "stream",
                "spot",
                testnet=True,
            ),
            _spec(
                WsKey.MARGIN_RISK_USER_DATA,
                "wss://margin-stream.binance.com/stream",
                "stream",
                "margin",
            ),
            _spec(WsKey.USDM, "wss://fstream.binance.com/stream", "stream", "usdm"),
            _spec(
                WsKey.USDM_TESTNET,
                "wss://stream.binancefuture.com/stream",
                "stream",
                "usdm",
                testnet=True,
            ),
            _spec(WsKey.COINM, "wss://dstream.binance.com/stream", "stream", "coinm"),
            _spec(WsKey.COINM2, "wss://dstream-auth.binance.com/stream", "stream", "coinm"),
            _spec(
                WsKey.COINM_TESTNET,
                "wss://dstream.binancefuture.com/stream",
                "stream",
                "coinm",
                testnet=True,
            ),
            _spec(
                WsKey.EOPTIONS,
                "wss://nbstream.binance.com/eoptions/stream",
                "stream",
                "options",
            ),
            _spec(
                WsKey.PORTFOLIO_MARGIN_USER_DATA,
                "wss://fstream.binance.com/pm/stream",
                "stream",
                "portfolio_margin",
            ),
            _spec(
                WsKey.PORTFOLIO_MARGIN_PRO_USER_DATA,
                "wss://fstream.binance.com/pm-classic/stream",
                "stream",
                "portfolio_margin",
            ),
            # WS-API (요청/응답)
            _spec(WsKey.MAIN_WS_API, "wss://ws-api.binance.com:443/ws-api/v3", "ws_api", "spot"),
            _spec(WsKey.MAIN_WS_API2, "wss://ws-api.binance.com:9443/ws-api/v3", "ws_api", "spot"),
            _spec(
                WsKey.MAIN_WS_API_TESTNET,
                "wss://ws-api.testnet.binance.vision/ws-api/v3",
                "ws_api",
                "spot",
                testnet=True,
            ),
            _spec(WsKey.USDM_WS_API, "wss://ws-fapi.binance.com/ws-fapi/v1", "ws_api", "usdm"),
            _spec(
                WsKey.USDM_WS_API_TESTNET,
                "wss://testnet.binancefuture.com/ws-fapi/v1",
                "ws_api",
                "usdm",
                testnet=True,
            ),
        ]
    )
)

_SPOT: Final[frozenset[Market]] = frozenset({"spot"})
_FUTURES: Final[frozenset[Market]] = frozenset({"usdm"})

# 스트림 엔드포인트 명령
_STREAM_COMMANDS: Final = (
    SUBSCRIBE,
    UNSUBSCRIBE,
    LIST_SUBSCRIPTIONS,
    "SET_PROPERTY",
    "GET_PROPERTY",
)

# WS-API 공개 오퍼레이션 (인증 불필요): 이름 → 허용 마켓
_PUBLIC_WS_API: Final[dict[str, frozenset[Market] | None]] = {
    "ping": None,
    "exchangeInfo": None,
    "depth": None,
    "trades.recent": None,
    "trades.historical": _SPOT,
    "trades.aggregate": _SPOT,
    "klines": _SPOT,
    "uiKlines": _SPOT,
    "avgPrice": _SPOT,
    "ticker.24hr": _SPOT,
    "ticker.tradingDay": _SPOT,
    "ticker": _SPOT,
    "ticker.price": None,
    "ticker.book": None,
}

# WS-API 계정/트레이딩 오퍼레이션 (인증 필요): 이름 → 허용 마켓
_SIGNED_WS_API: Final[dict[str, frozenset[Market] | None]] = {
    "account.status": None,
    "account.commission": _SPOT,
    "account.rateLimits.orders": _SPOT,
    "allOrders": _SPOT,
    "allOrderLists": _SPOT,
    "myTrades": _SPOT,
    "myPreventedMatches": _SPOT,
    "myAllocations": _SPOT,
    "account.balance": _FUTURES,
    "v2/account.balance": _FUTURES,
    "v2/account.status": _FUTURES,
    "order.place": None,
    "orderList.place": _SPOT,
    "sor.order.place": _SPOT,
}


def _build_contracts() -> dict[str, OperationContract]:
    contracts: dict[str, OperationContract] = {}

    for name in _STREAM_COMMANDS:
        contracts[name] = OperationContract(name=name, kind="stream")

    contracts[SESSION_LOGON] = OperationContract(
        name=SESSION_LOGON,
        kind="ws_api",
        result_model=SessionStatusDTO,
        reserved=True,
    )
    contracts[SESSION_STATUS] = OperationContract(
        name=SESSION_STATUS,
        kind="ws_api",
        requires_auth=True,
        result_model=SessionStatusDTO,
    )
    contracts[SESSION_LOGOUT] = OperationContract(
        name=SESSION_LOGOUT,
        kind="ws_api",
        requires_auth=True,
        result_model=SessionStatusDTO,
    )
    contracts["time"] = OperationContract(
        name="time", kind="ws_api", result_model=TimeResultDTO
    )

    for name, markets in _PUBLIC_WS_API.items():
        contracts[name] = OperationContract(name=name, kind="ws_api", markets=markets)
    for name, markets in _SIGNED_WS_API.items():
        contracts[name] = OperationContract(
            name=name, kind="ws_api", requires_auth=True, markets=markets
        )

    return contracts


OPERATION_CONTRACTS: Final[Mapping[str, OperationContract]] = MappingProxyType(
    _build_contracts()
)


def get_connection_spec(key: WsKey | str) -> ConnectionSpec:
    """연결 키 명세 조회 (알 수 없는 키는 ValueError)"""
    return CONNECTION_SPECS[WsKey(key)]


def get_operation_contract(operation: str) -> OperationContract | None:
    return OPERATION_CONTRACTS.get(operation)


def operations_for(key: WsKey) -> frozenset[str]:
    """연결 키에서 유효한 오퍼레이션 이름 집합"""
    spec = get_connection_spec(key)
    return frozenset(
        name
        for name, contract in OPERATION_CONTRACTS.items()
        if contract.allows(spec)
    )


def validate_operation(
    key: WsKey, operation: str, *, internal: bool = False
) -> OperationContract:
    """호출 시점 검증: 키에서 허용되지 않는 오퍼레이션은 즉시 거부합니다.

    Args:
        key: 연결 키
        operation: 오퍼레이션 이름
        internal: 엔진 내부 호출 여부 (예약 오퍼레이션 허용)

    Raises:
        UnsupportedOperationForConnection: 미등록/엔드포인트 불일치/마켓 불일치/예약
    """
    spec = get_connection_spec(key)
    contract = OPERATION_CONTRACTS.get(operation)

    if contract is None:
        raise UnsupportedOperationForConnection(
            f"unknown operation: {operation}", ws_key=key, operation=operation
        )
    if contract.reserved and not internal:
        raise UnsupportedOperationForConnection(
            f"{operation} is reserved for the engine's session handshake",
            ws_key=key,
            operation=operation,
        )
    if not contract.allows(spec):
        raise UnsupportedOperationForConnection(
            f"{operation} is not available on {key.value} ({spec.kind}/{spec.market})",
            ws_key=key,
            operation=operation,
        )
    return contract


__all__ = [
    "SESSION_LOGON",
    "SESSION_STATUS",
    "SESSION_LOGOUT",
    "SUBSCRIBE",
    "UNSUBSCRIBE",
    "LIST_SUBSCRIPTIONS",
    "ConnectionSpec",
    "OperationContract",
    "CONNECTION_SPECS",
    "OPERATION_CONTRACTS",
    "get_connection_spec",
    "get_operation_contract",
    "operations_for",
    "validate_operation",
]
