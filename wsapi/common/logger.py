"""엔진 로깅

- 모든 PipelineLogger는 프로세스 공용 큐 하나에 기록하고, 리스너 스레드 하나가 출력합니다.
- 파일 로깅은 컴포넌트별 일자 로테이션 파일로 분기됩니다.
- 자격 증명/서명 키는 레코드가 큐에 들어가기 전에 마스킹됩니다.
"""

from __future__ import annotations

import atexit
import logging
import queue
import sys
import threading
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Final

from wsapi.config.settings import logging_settings

# 로그에 절대 남기면 안 되는 키 (자격 증명/서명)
SENSITIVE_KEYS: Final[frozenset[str]] = frozenset(
    {"apikey", "api_key", "api_secret", "secret", "signature", "private_key"}
)
MASK: Final[str] = "***"

LOG_FORMAT: Final = "%(asctime)s %(levelname)s %(name)s [%(component)s] %(message)s"

# LogRecord 기본 속성 (extra로 병합된 키와 구분)
RESERVED_RECORD_KEYS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None))
) | {"message", "asctime", "exc_info", "stack_info", "extra"}


def redact(value: Any) -> Any:
    """dict/list 내부의 민감 키 값을 마스킹한 사본을 반환합니다."""
    if isinstance(value, dict):
        return {
            k: MASK if str(k).lower() in SENSITIVE_KEYS else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(redact(v) for v in value)
    return value


class CredentialRedactionFilter(logging.Filter):
    """extra로 병합된 속성과 dict 인자의 민감 키를 마스킹"""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in list(vars(record).items()):
            if key in RESERVED_RECORD_KEYS:
                continue
            if key.lower() in SENSITIVE_KEYS:
                setattr(record, key, MASK)
            elif isinstance(value, (dict, list, tuple)):
                setattr(record, key, redact(value))
        if isinstance(record.args, dict):
            record.args = redact(record.args)
        return True


class ComponentFileHandler(logging.Handler):
    """레코드의 component 속성별로 로테이션 파일 핸들러를 지연 생성해 위임"""

    def __init__(self, log_dir: str, rotation: str = "midnight", backup_count: int = 7) -> None:
        super().__init__()
        self.log_dir = Path(log_dir)
        self.rotation = rotation
        self.backup_count = backup_count
        self._targets: dict[str, TimedRotatingFileHandler] = {}

    def _target(self, component: str) -> TimedRotatingFileHandler:
        handler = self._targets.get(component)
        if handler is None:
            # 디렉터리만 생성하고 파일 생성은 핸들러에 위임
            self.log_dir.mkdir(parents=True, exist_ok=True)
            handler = TimedRotatingFileHandler(
                filename=self.log_dir / f"{component}.log",
                when=self.rotation,
                backupCount=self.backup_count,
                encoding="utf-8",
            )
            handler.setFormatter(self.formatter)
            self._targets[component] = handler
        return handler

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._target(getattr(record, "component", "main")).emit(record)
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        for handler in self._targets.values():
            handler.close()
        self._targets.clear()
        super().close()


class PipelineLogger:
    """
    WS-API 엔진용 로깅 시스템
    공용 큐 기반 비동기 출력, 컴포넌트별 로깅, 민감정보 마스킹 제공
    """

    _queue: queue.Queue[logging.LogRecord] | None = None
    _listener: QueueListener | None = None
    _lock = threading.Lock()

    @classmethod
    def get_logger(cls, name: str, component: str | None = None, **kwargs: Any) -> PipelineLogger:
        """
        로거 인스턴스를 반환하는 팩토리 메서드.
        logging.getLogger가 이름 단위 싱글톤이므로 별도 레지스트리는 두지 않습니다.
        """
        return cls(name, component, **kwargs)

    @classmethod
    def _shared_queue(cls) -> queue.Queue[logging.LogRecord]:
        """최초 호출 시 출력 핸들러와 리스너를 구성합니다."""
        with cls._lock:
            if cls._queue is None:
                formatter = logging.Formatter(LOG_FORMAT)
                handlers: list[logging.Handler] = []

                console = logging.StreamHandler(sys.stdout)
                console.setFormatter(formatter)
                handlers.append(console)

                if logging_settings.to_file:
                    file_handler = ComponentFileHandler(logging_settings.dir)
                    file_handler.setFormatter(formatter)
                    handlers.append(file_handler)

                # 무제한 버퍼로 설정해 queue.Full 예외 방지
                cls._queue = queue.Queue()
                cls._listener = QueueListener(
                    cls._queue, *handlers, respect_handler_level=True
                )
                cls._listener.start()
                atexit.register(cls.shutdown)
            return cls._queue

    @classmethod
    def shutdown(cls) -> None:
        """리스너를 멈추고 남은 레코드를 모두 출력합니다."""
        with cls._lock:
            listener, cls._listener, cls._queue = cls._listener, None, None
        if listener is not None:
            listener.stop()
            for handler in listener.handlers:
                handler.close()

    def __init__(
        self,
        name: str,
        component: str | None = None,
        level: int | str | None = None,
    ) -> None:
        self.name = name
        self.component = component or "main"
        self.logger_name = f"wsapi.{self.component}.{name}"

        self.logger = logging.getLogger(self.logger_name)
        self.logger.setLevel(level or logging_settings.level.upper())

        # 같은 이름으로 다시 생성돼도 핸들러/필터가 중복되지 않도록 교체
        self.logger.handlers.clear()
        self.logger.filters.clear()
        self.logger.addFilter(CredentialRedactionFilter())
        self.logger.addHandler(QueueHandler(self._shared_queue()))

    def log(self, level: int, msg: str, **kwargs: Any) -> None:
        extra: dict[str, Any] = {"component": self.component}
        nested = kwargs.pop("extra", None)
        if isinstance(nested, dict):
            extra.update(nested)

        self.logger.log(
            level,
            msg,
            exc_info=kwargs.pop("exc_info", None),
            stack_info=bool(kwargs.pop("stack_info", False)),
            extra={**extra, **kwargs},
        )

    def debug(self, msg: str, **kwargs: Any) -> None:
        self.log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self.log(logging.INFO, msg, **kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self.log(logging.WARNING, msg, **kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self.log(logging.ERROR, msg, **kwargs)

    def critical(self, msg: str, **kwargs: Any) -> None:
        self.log(logging.CRITICAL, msg, **kwargs)
