from wsapi.core.dto.io.frames import (
    ErrorPayloadDTO,
    RateLimitDTO,
    StreamMessageDTO,
    WsApiRequestFrameDTO,
    WsApiResponseDTO,
    WsApiResponseFrameDTO,
)
from wsapi.core.dto.io.session import (
    SessionLogonParamsDTO,
    SessionStatusDTO,
    TimeResultDTO,
)

__all__ = [
    "ErrorPayloadDTO",
    "RateLimitDTO",
    "StreamMessageDTO",
    "WsApiRequestFrameDTO",
    "WsApiResponseDTO",
    "WsApiResponseFrameDTO",
    "SessionLogonParamsDTO",
    "SessionStatusDTO",
    "TimeResultDTO",
]
