from wsapi.application.engine import WsApiEngine
from wsapi.common.events import (
    ConnectionStateChangedEvent,
    ErrorEvent,
    EventBus,
    ResubscriptionFailedEvent,
)
from wsapi.common.exceptions.base import (
    AuthenticationFailed,
    ConnectionClosed,
    ConnectionReset,
    ConnectionUnavailable,
    NotAuthenticated,
    OperationError,
    RequestTimeout,
    ResubscriptionFailed,
    UnsupportedOperationForConnection,
    WsApiError,
)
from wsapi.core.connection.authenticator import Credentials
from wsapi.core.dto.io.frames import StreamMessageDTO, WsApiResponseDTO
from wsapi.core.types import ConnectionPhase, SessionPhase, WsKey

__all__ = [
    "WsApiEngine",
    "Credentials",
    "WsKey",
    "ConnectionPhase",
    "SessionPhase",
    "WsApiResponseDTO",
    "StreamMessageDTO",
    # events
    "EventBus",
    "ErrorEvent",
    "ResubscriptionFailedEvent",
    "ConnectionStateChangedEvent",
    # errors
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
