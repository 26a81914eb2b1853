"""Main application wiring"""

from pathlib import Path
from typing import Optional

from .api.auth_client import AuthClient
from .services.login_coordinator import LoginCoordinator
from .services.session_store import FileSessionStore, SessionStore
from .utils.config import Settings, config_manager
from .utils.logger import get_logger, setup_logger

logger = get_logger(__name__)


class CityLightsApp:
    """Builds the client stack from configuration"""

    def __init__(self, settings_path: Optional[Path] = None, store: Optional[SessionStore] = None):
        self.settings_path = settings_path
        self.settings: Optional[Settings] = None
        self.store = store
        self.client: Optional[AuthClient] = None
        self.coordinator: Optional[LoginCoordinator] = None

    def initialize(self) -> "CityLightsApp":
        """Load configuration, set up logging and restore any saved session"""
        self.settings = config_manager.load_settings(self.settings_path)

        setup_logger(
            log_level=self.settings.logging.level,
            log_format=self.settings.logging.format,
            file_path=self.settings.logging.file_path,
            max_bytes=self.settings.logging.max_bytes,
            backup_count=self.settings.logging.backup_count,
        )

        logger.info(
            "Configuration loaded",
            app_name=self.settings.app.name,
            version=self.settings.app.version,
            environment=self.settings.app.environment,
            api_base_url=self.settings.api.base_url,
        )

        if self.store is None:
            self.store = FileSessionStore(Path(self.settings.storage.session_file))

        self.client = AuthClient(
            self.store,
            base_url=self.settings.api.base_url,
            timeout=self.settings.api.timeout_seconds,
            user_agent=self.settings.api.user_agent,
        )
        self.coordinator = LoginCoordinator(self.client, self.store, settings=self.settings.two_factor)
        self.coordinator.restore_session()
        return self

    def shutdown(self) -> None:
        if self.coordinator:
            self.coordinator.close()
        if self.client:
            self.client.close()
        logger.info("Application stopped")
