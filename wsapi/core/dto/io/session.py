from __future__ import annotations

from pydantic import Field

from wsapi.core.dto.io._base import (
    PASSTHROUGH_CONFIG,
    InboundModelDTO,
    OutboundModelDTO,
)


class SessionLogonParamsDTO(OutboundModelDTO):
    """session.logon 파라미터 (서명 포함, 로그 출력 금지)"""

    api_key: str = Field(..., alias="apiKey")
    timestamp: int
    signature: str
    recv_window: int | None = Field(None, alias="recvWindow")

    def __repr__(self) -> str:
        return f"SessionLogonParamsDTO(timestamp={self.timestamp})"

    __str__ = __repr__

    def to_params(self) -> dict[str, object]:
        return self.model_dump(by_alias=True, exclude_none=True)


class SessionStatusDTO(InboundModelDTO):
    """session.logon / session.status / session.logout 결과"""

    model_config = PASSTHROUGH_CONFIG

    api_key: str | None = Field(None, alias="apiKey")
    authorized_since: int | None = Field(None, alias="authorizedSince")
    connected_since: int | None = Field(None, alias="connectedSince")
    return_rate_limits: bool | None = Field(None, alias="returnRateLimits")
    server_time: int | None = Field(None, alias="serverTime")
    user_data_stream: bool | None = Field(None, alias="userDataStream")

    @property
    def is_authorized(self) -> bool:
        return self.api_key is not None


class TimeResultDTO(InboundModelDTO):
    """time 결과"""

    server_time: int = Field(..., alias="serverTime")


__all__ = ["SessionLogonParamsDTO", "SessionStatusDTO", "TimeResultDTO"]
