from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from wsapi.core.types import RequestId, WsKey


@dataclass(slots=True, eq=False, repr=False, match_args=False, kw_only=True)
class PendingRequestDomain:
    """응답 대기 중인 요청 (내부용).

    future 결과 슬롯: 미결/성공/실패. 정산되면 pending 집합에서 제거됩니다.
    """

    request_id: RequestId
    operation: str
    submitted_at: float
    ws_key: WsKey
    future: asyncio.Future[Any]
    result_model: type[BaseModel] | None = None
    timeout_handle: asyncio.TimerHandle | None = None

    @property
    def key(self) -> str:
        """응답 frame의 id(문자열/숫자)와 비교할 정규화 키"""
        return str(self.request_id)

    def cancel_timer(self) -> None:
        if self.timeout_handle is not None:
            self.timeout_handle.cancel()
            self.timeout_handle = None
