"""
Dependency Injection Container

아키텍처:
- Settings: settings.py 인스턴스를 Object로 주입
- EventBus / ErrorDispatcher: 컨테이너 단위 싱글톤 (엔진마다 독립)
- WsApiEngine: 최상위 싱글톤

자격 증명과 커넥터는 기본값 None이며 override로 주입합니다.
    container = ApplicationContainer()
    container.credentials.override(Credentials(api_key=..., api_secret=...))
    engine = container.engine()
"""

from dependency_injector import containers, providers

from wsapi.application.engine import WsApiEngine
from wsapi.common.events import EventBus
from wsapi.common.exceptions.error_dispatcher import ErrorDispatcher
from wsapi.config.settings import logging_settings, websocket_settings


class ApplicationContainer(containers.DeclarativeContainer):
    """엔진 최상위 컨테이너

    Features:
    - Settings 싱글톤 주입 (Object)
    - 컨테이너 인스턴스마다 EventBus 분리
    - credentials / connector override 지원 (테스트 시 fake 커넥터 주입)
    """

    # ===== Settings 주입 (DI) =====
    websocket_config = providers.Object(websocket_settings)
    logging_config = providers.Object(logging_settings)

    # ===== 외부 주입 =====
    credentials = providers.Object(None)
    connector = providers.Object(None)

    # ===== 이벤트 / 에러 =====
    event_bus = providers.Singleton(EventBus)
    error_dispatcher = providers.Singleton(ErrorDispatcher, bus=event_bus)

    # ===== Engine =====
    engine = providers.Singleton(
        WsApiEngine,
        credentials=credentials,
        settings=websocket_config,
        connector=connector,
        bus=event_bus,
        error_dispatcher=error_dispatcher,
    )
