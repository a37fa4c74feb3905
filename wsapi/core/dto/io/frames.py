"""WS-API 와이어 프레임 DTO

송신: {"id", "method", "params"?}
수신(응답): {"id", "status"?, "result" | "error", "rateLimits"?}
수신(스트림): id 없음 → StreamMessageDTO로 라우팅
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from wsapi.core.dto.io._base import InboundModelDTO, OutboundModelDTO
from wsapi.core.types import RequestId, WsKey


class WsApiRequestFrameDTO(OutboundModelDTO):
    """송신 요청 프레임"""

    id: RequestId
    method: str
    params: dict[str, Any] | list[Any] | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class RateLimitDTO(InboundModelDTO):
    """응답에 포함된 레이트 리밋 항목"""

    rate_limit_type: str = Field(..., alias="rateLimitType")
    interval: str
    interval_num: int = Field(..., alias="intervalNum")
    limit: int
    count: int = 0


class ErrorPayloadDTO(InboundModelDTO):
    """거래소 에러 페이로드 ({"code": -1102, "msg": "..."})"""

    code: int | None = None
    msg: str = "unknown error"


class WsApiResponseFrameDTO(InboundModelDTO):
    """수신 응답 프레임 (스트림 엔드포인트는 status 없음)"""

    id: RequestId | None = None
    status: int | None = None
    result: Any = None
    error: ErrorPayloadDTO | None = None
    rate_limits: list[RateLimitDTO] = Field(default_factory=list, alias="rateLimits")

    @property
    def is_error(self) -> bool:
        if self.error is not None:
            return True
        return self.status is not None and self.status >= 400


class WsApiResponseDTO(InboundModelDTO):
    """호출자에게 반환되는 응답 봉투 (원본 WSAPIResponse 대응)"""

    id: RequestId
    status: int
    result: Any = None
    rate_limits: list[RateLimitDTO] = Field(default_factory=list, alias="rateLimits")
    ws_key: WsKey = Field(..., alias="wsKey")
    is_ws_api_response: bool = Field(True, alias="isWSAPIResponse")
    # 오퍼레이션 계약에 결과 모델이 있으면 검증된 결과 (없으면 None)
    typed_result: BaseModel | None = Field(None, exclude=True)

    @classmethod
    def from_frame(
        cls,
        frame: WsApiResponseFrameDTO,
        request_id: RequestId,
        ws_key: WsKey,
        result_model: type[BaseModel] | None = None,
    ) -> WsApiResponseDTO:
        """result_model이 주어지면 result를 검증합니다 (실패 시 ValidationError)."""
        typed = result_model.model_validate(frame.result) if result_model is not None else None
        return cls(
            id=request_id,
            status=frame.status if frame.status is not None else 200,
            result=frame.result,
            rate_limits=frame.rate_limits,
            ws_key=ws_key,
            is_ws_api_response=frame.status is not None,
            typed_result=typed,
        )

    def result_as(self, model: type[BaseModel]) -> BaseModel:
        """result를 지정 모델로 검증하여 반환합니다."""
        return model.model_validate(self.result)


class StreamMessageDTO(BaseModel):
    """구독 토픽으로 들어온 비요청 메시지"""

    ws_key: WsKey
    topic: str | None
    data: Any
    raw: dict[str, Any]

    model_config = ConfigDict(frozen=True)


__all__ = [
    "WsApiRequestFrameDTO",
    "RateLimitDTO",
    "ErrorPayloadDTO",
    "WsApiResponseFrameDTO",
    "WsApiResponseDTO",
    "StreamMessageDTO",
]
