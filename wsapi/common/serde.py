"""와이어 직렬화 (orjson)

송신 프레임은 UTF-8 텍스트로, 수신 프레임은 str/bytes 모두 받아 dict로 복원합니다.
"""

from __future__ import annotations

from typing import Any

import orjson


def dumps_frame(payload: Any) -> str:
    """프레임을 JSON 텍스트로 직렬화합니다."""
    return orjson.dumps(payload).decode("utf-8")


def loads_frame(raw: str | bytes | bytearray | memoryview) -> Any:
    """수신 프레임을 역직렬화합니다. 잘못된 JSON은 orjson.JSONDecodeError."""
    return orjson.loads(raw)


__all__ = ["dumps_frame", "loads_frame"]
