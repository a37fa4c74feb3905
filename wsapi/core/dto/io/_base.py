"""I/O 경계 DTO 기반 설정 모듈

Pydantic v2 ConfigDict를 한곳에서 관리합니다.
- 송신 DTO: 알 수 없는 필드 금지, 불변
- 수신 DTO: 거래소가 필드를 추가해도 깨지지 않도록 알 수 없는 필드 무시
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

# 송신(요청) 모델: 엄격 + 불변
OUTBOUND_CONFIG = ConfigDict(
    use_enum_values=True,
    extra="forbid",
    validate_default=True,
    str_strip_whitespace=True,
    frozen=True,
    populate_by_name=True,
)

# 수신(응답) 모델: 관대 + 불변, enum 필드는 멤버 그대로 유지
INBOUND_CONFIG = ConfigDict(
    extra="ignore",
    frozen=True,
    populate_by_name=True,
    arbitrary_types_allowed=False,
)

# 수신 원본을 그대로 보존해야 하는 모델 (세션 상태 등)
PASSTHROUGH_CONFIG = ConfigDict(
    extra="allow",
    frozen=True,
    populate_by_name=True,
)


class OutboundModelDTO(BaseModel):
    """요청 파라미터/프레임 베이스"""

    model_config = OUTBOUND_CONFIG


class InboundModelDTO(BaseModel):
    """응답 프레임/결과 베이스"""

    model_config = INBOUND_CONFIG
