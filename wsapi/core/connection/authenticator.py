"""세션 인증 (session.logon 핸드셰이크)

상태 머신:
    UNAUTHENTICATED → LOGGING_ON → (VERIFYING) → AUTHENTICATED
    연결 끊김/로그아웃 시 UNAUTHENTICATED로 복귀

서명:
    - Ed25519 (PEM 개인키, base64) : WS-API 권장
    - HMAC-SHA256 (API secret, hex)
    정규 문자열은 signature를 제외한 파라미터를 키 기준 정렬해 "k=v&k=v"로 결합합니다.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.hazmat.primitives.serialization import load_pem_private_key
from pydantic import ValidationError

from wsapi.common.exceptions.base import (
    AuthenticationFailed,
    NotAuthenticated,
    OperationError,
    RequestTimeout,
)
from wsapi.common.logger import PipelineLogger
from wsapi.core.connection.correlator import RequestCorrelator
from wsapi.core.connection.registry import SESSION_LOGON, SESSION_STATUS
from wsapi.core.connection.utils.logging.log_phases import (
    PHASE_LOGIN,
    PHASE_LOGIN_FAILED,
    PHASE_LOGOUT,
)
from wsapi.core.connection.utils.logging.logging_mixin import ScopedConnectionLoggingMixin
from wsapi.core.dto.internal.common import ConnectionPolicyDomain, ConnectionScopeDomain
from wsapi.core.dto.io.session import SessionLogonParamsDTO, SessionStatusDTO
from wsapi.core.types import SessionPhase

logger = PipelineLogger.get_logger("authenticator", "connection")


@dataclass(frozen=True, slots=True, kw_only=True)
class Credentials:
    """API 자격 증명 (불투명 값, 로그/직렬화 금지)

    api_secret(HMAC) 또는 private_key(Ed25519 PEM) 중 하나가 필요합니다.
    """

    api_key: str = field(repr=False)
    api_secret: str | None = field(default=None, repr=False)
    private_key: bytes | str | None = field(default=None, repr=False)
    private_key_passphrase: str | None = field(default=None, repr=False)
    recv_window: int | None = None

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ValueError("api_key is required")
        if not self.api_secret and not self.private_key:
            raise ValueError("either api_secret or private_key is required")

    def __repr__(self) -> str:
        return "Credentials(api_key=***)"

    __str__ = __repr__


def canonical_query(params: dict[str, Any]) -> str:
    """서명 대상 정규 문자열 (signature 제외, 키 정렬)"""
    return "&".join(
        f"{k}={v}" for k, v in sorted(params.items()) if k != "signature"
    )


class RequestSigner:
    """자격 증명으로 서명 생성 (Ed25519 우선, 없으면 HMAC-SHA256)"""

    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials
        self._private_key: ed25519.Ed25519PrivateKey | None = None

        if credentials.private_key:
            pem = credentials.private_key
            data = pem.encode("utf-8") if isinstance(pem, str) else pem
            password = (
                credentials.private_key_passphrase.encode("utf-8")
                if credentials.private_key_passphrase
                else None
            )
            key = load_pem_private_key(data, password=password)
            if not isinstance(key, ed25519.Ed25519PrivateKey):
                raise ValueError("private_key must be an Ed25519 private key")
            self._private_key = key

    @property
    def algorithm(self) -> str:
        return "ed25519" if self._private_key is not None else "hmac_sha256"

    def sign(self, params: dict[str, Any]) -> str:
        payload = canonical_query(params).encode("utf-8")
        if self._private_key is not None:
            return base64.b64encode(self._private_key.sign(payload)).decode("utf-8")
        secret = self._credentials.api_secret or ""
        return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    def __repr__(self) -> str:
        return f"RequestSigner(algorithm={self.algorithm})"


class SessionAuthenticator(ScopedConnectionLoggingMixin):
    """연결 키별 세션 인증 상태 머신

    상태는 이 클래스만 변경합니다. 로그인 요청은 Correlator를 통해 예약 id 공간
    ("auth-N")으로 전송되므로 호출자 요청 id는 1부터 시작합니다.
    """

    def __init__(
        self,
        scope: ConnectionScopeDomain,
        policy: ConnectionPolicyDomain,
        credentials: Credentials | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.scope = scope
        self.policy = policy
        self._logger = logger
        self._credentials = credentials
        self._signer = RequestSigner(credentials) if credentials is not None else None
        self._clock = clock
        self._phase = SessionPhase.UNAUTHENTICATED
        self._last_status: SessionStatusDTO | None = None

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def has_credentials(self) -> bool:
        return self._credentials is not None

    @property
    def is_authenticated(self) -> bool:
        return self._phase == SessionPhase.AUTHENTICATED

    @property
    def last_status(self) -> SessionStatusDTO | None:
        return self._last_status

    def build_logon_params(self) -> SessionLogonParamsDTO:
        if self._credentials is None or self._signer is None:
            raise NotAuthenticated(
                "no credentials configured", ws_key=self.scope.ws_key
            )
        params: dict[str, Any] = {
            "apiKey": self._credentials.api_key,
            "timestamp": int(self._clock() * 1000),
        }
        if self._credentials.recv_window is not None:
            params["recvWindow"] = self._credentials.recv_window
        params["signature"] = self._signer.sign(params)
        return SessionLogonParamsDTO.model_validate(params)

    def require_authenticated(self, operation: str) -> None:
        """인증 필요 오퍼레이션 로컬 거부 (프레임 미전송)"""
        if not self.is_authenticated:
            raise NotAuthenticated(
                f"{operation} requires an authenticated session",
                ws_key=self.scope.ws_key,
                operation=operation,
            )

    async def login(self, correlator: RequestCorrelator, websocket: Any) -> SessionStatusDTO:
        """session.logon 핸드셰이크 (실패 시 AuthenticationFailed)"""
        logon = self.build_logon_params()
        self._phase = SessionPhase.LOGGING_ON
        self._log_info("session logon", phase=PHASE_LOGIN)

        try:
            response = await correlator.request(
                websocket,
                SESSION_LOGON,
                logon.to_params(),
                request_id=correlator.next_auth_id(),
            )
            status = SessionStatusDTO.model_validate(response.result or {})

            if self.policy.verify_session:
                self._phase = SessionPhase.VERIFYING
                response = await correlator.request(
                    websocket, SESSION_STATUS, request_id=correlator.next_auth_id()
                )
                status = SessionStatusDTO.model_validate(response.result or {})
                if not status.is_authorized:
                    raise AuthenticationFailed(
                        "session.status reports no authorized api key",
                        ws_key=self.scope.ws_key,
                        operation=SESSION_STATUS,
                    )
        except (OperationError, RequestTimeout, ValidationError) as e:
            self._phase = SessionPhase.UNAUTHENTICATED
            self._log_warning("session logon failed", phase=PHASE_LOGIN_FAILED, error=str(e))
            raise AuthenticationFailed(
                f"session logon failed: {e}",
                ws_key=self.scope.ws_key,
                operation=SESSION_LOGON,
            ) from e
        except BaseException:
            # 취소/연결 오류는 ConnectionManager가 처리
            self._phase = SessionPhase.UNAUTHENTICATED
            raise

        self._phase = SessionPhase.AUTHENTICATED
        self._last_status = status
        self._log_info("session authenticated", phase=PHASE_LOGIN)
        return status

    def mark_logged_out(self) -> None:
        """호출자의 session.logout 성공 시"""
        self._phase = SessionPhase.UNAUTHENTICATED
        self._last_status = None
        self._log_info("session logged out", phase=PHASE_LOGOUT)

    def reset(self) -> None:
        """연결 끊김 시 (재연결 후 다시 로그인)"""
        self._phase = SessionPhase.UNAUTHENTICATED
        self._last_status = None
