from __future__ import annotations

import pytest

from wsapi.common.exceptions.base import UnsupportedOperationForConnection
from wsapi.core.connection.registry import (
    CONNECTION_SPECS,
    OPERATION_CONTRACTS,
    SESSION_LOGON,
    get_connection_spec,
    get_operation_contract,
    operations_for,
    validate_operation,
)
from wsapi.core.types import WsKey


def test_every_key_has_a_spec() -> None:
    assert set(CONNECTION_SPECS) == set(WsKey)


def test_ws_api_keys_support_session_auth_only() -> None:
    assert get_connection_spec(WsKey.MAIN_WS_API).supports_session_auth is True
    assert get_connection_spec(WsKey.USDM_WS_API_TESTNET).supports_session_auth is True
    assert get_connection_spec(WsKey.MAIN).supports_session_auth is False


def test_spec_lookup_accepts_raw_key_string() -> None:
    spec = get_connection_spec("mainWSAPI")
    assert spec.url == "wss://ws-api.binance.com:443/ws-api/v3"
    assert spec.market == "spot"


def test_unknown_key_string_is_rejected() -> None:
    with pytest.raises(ValueError):
        get_connection_spec("notAKey")


def test_spot_only_operation_rejected_on_futures_key() -> None:
    with pytest.raises(UnsupportedOperationForConnection) as exc_info:
        validate_operation(WsKey.USDM_WS_API, "klines")
    assert exc_info.value.operation == "klines"


def test_futures_only_operation_rejected_on_spot_key() -> None:
    with pytest.raises(UnsupportedOperationForConnection):
        validate_operation(WsKey.MAIN_WS_API, "v2/account.balance")
    assert validate_operation(WsKey.USDM_WS_API, "v2/account.balance").requires_auth


def test_stream_command_rejected_on_ws_api_key() -> None:
    with pytest.raises(UnsupportedOperationForConnection):
        validate_operation(WsKey.MAIN_WS_API, "SUBSCRIBE")
    assert validate_operation(WsKey.MAIN, "SUBSCRIBE").requires_auth is False


def test_ws_api_operation_rejected_on_stream_key() -> None:
    with pytest.raises(UnsupportedOperationForConnection):
        validate_operation(WsKey.MAIN, "account.status")


def test_unknown_operation_rejected() -> None:
    assert get_operation_contract("does.not.exist") is None
    with pytest.raises(UnsupportedOperationForConnection):
        validate_operation(WsKey.MAIN_WS_API, "does.not.exist")


def test_session_logon_reserved_for_internal_use() -> None:
    with pytest.raises(UnsupportedOperationForConnection):
        validate_operation(WsKey.MAIN_WS_API, SESSION_LOGON)
    contract = validate_operation(WsKey.MAIN_WS_API, SESSION_LOGON, internal=True)
    assert contract.reserved is True


def test_operations_for_key_is_subset_of_catalog() -> None:
    spot_ops = operations_for(WsKey.MAIN_WS_API)
    futures_ops = operations_for(WsKey.USDM_WS_API)

    assert spot_ops <= set(OPERATION_CONTRACTS)
    assert "klines" in spot_ops and "klines" not in futures_ops
    assert "account.balance" in futures_ops and "account.balance" not in spot_ops
    assert "order.place" in spot_ops and "order.place" in futures_ops


def test_account_and_trading_operations_require_auth() -> None:
    for name in ("account.status", "order.place", "session.status", "session.logout"):
        assert OPERATION_CONTRACTS[name].requires_auth is True
    for name in ("ping", "time", "exchangeInfo", "depth"):
        assert OPERATION_CONTRACTS[name].requires_auth is False
