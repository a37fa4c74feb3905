from __future__ import annotations

import pytest
from pydantic import ValidationError

from wsapi.common.serde import dumps_frame, loads_frame
from wsapi.core.dto.io.frames import (
    WsApiRequestFrameDTO,
    WsApiResponseDTO,
    WsApiResponseFrameDTO,
)
from wsapi.core.dto.io.session import SessionStatusDTO, TimeResultDTO
from wsapi.core.types import WsKey
from tests.factory_builders import (
    build_error_payload,
    build_rate_limit_payload,
    build_response_payload,
    build_session_status_result,
)


def test_request_frame_omits_missing_params() -> None:
    frame = WsApiRequestFrameDTO(id=1, method="time")
    assert dumps_frame(frame.to_wire()) == '{"id":1,"method":"time"}'


def test_request_frame_rejects_unknown_fields() -> None:
    with pytest.raises(ValidationError):
        WsApiRequestFrameDTO(id=1, method="time", extra_field=True)


def test_response_frame_parses_rate_limits() -> None:
    frame = WsApiResponseFrameDTO.model_validate(
        build_response_payload(1, result={"serverTime": 1}, rate_limits=[build_rate_limit_payload()])
    )

    assert frame.is_error is False
    assert frame.rate_limits[0].rate_limit_type == "REQUEST_WEIGHT"
    assert frame.rate_limits[0].interval_num == 1


def test_error_frame_with_and_without_status() -> None:
    assert WsApiResponseFrameDTO.model_validate(build_error_payload(1)).is_error is True
    assert WsApiResponseFrameDTO.model_validate(build_error_payload(1, status=None)).is_error is True
    assert WsApiResponseFrameDTO.model_validate({"id": 1, "status": 429, "result": None}).is_error


def test_response_envelope_marks_stream_endpoint_replies() -> None:
    ws_api = WsApiResponseDTO.from_frame(
        WsApiResponseFrameDTO.model_validate(build_response_payload(1)), 1, WsKey.MAIN_WS_API
    )
    stream = WsApiResponseDTO.from_frame(
        WsApiResponseFrameDTO.model_validate({"id": 2, "result": None}), 2, WsKey.MAIN
    )

    assert ws_api.is_ws_api_response is True
    assert stream.is_ws_api_response is False
    assert stream.status == 200
    assert ws_api.model_dump(by_alias=True)["wsKey"] == "mainWSAPI"
    assert ws_api.ws_key is WsKey.MAIN_WS_API
    assert isinstance(stream.ws_key, WsKey)


def test_inbound_envelope_keeps_enum_members() -> None:
    response = WsApiResponseDTO.model_validate(
        {"id": 1, "status": 200, "result": {}, "wsKey": "mainWSAPI"}
    )

    assert response.ws_key is WsKey.MAIN_WS_API
    assert response.ws_key.value == "mainWSAPI"


def test_result_as_validates_typed_shape() -> None:
    response = WsApiResponseDTO.from_frame(
        WsApiResponseFrameDTO.model_validate(build_response_payload(1, result={"serverTime": 1656400526260})),
        1,
        WsKey.MAIN_WS_API,
    )

    result = response.result_as(TimeResultDTO)

    assert result.server_time == 1656400526260


def test_session_status_keeps_unknown_fields() -> None:
    status = SessionStatusDTO.model_validate(build_session_status_result(newField="x"))

    assert status.is_authorized is True
    assert status.model_extra == {"newField": "x"}


def test_loads_frame_accepts_bytes_and_text() -> None:
    assert loads_frame(b'{"id":1}') == {"id": 1}
    assert loads_frame('{"id":"auth-1"}') == {"id": "auth-1"}
