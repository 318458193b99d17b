from pathlib import Path
from typing import Optional

from askai.config.config_manager import ConfigManager
from askai.core.credentials import CredentialRotator
from askai.core.provider_manager import ProviderManager
from askai.core.session import StreamSession
from askai.search.executor import WebSearchExecutor
from askai.utils.logging import get_logger
from askai.utils.store import JsonFileStore

logger = get_logger(__name__)


class AskApp:
    """
    Main application class that wires configuration, key bookkeeping and sessions.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_manager = ConfigManager(config_path) if config_path else ConfigManager()
        self.store = JsonFileStore(Path(self.config_manager.config.state.storage_path).expanduser())
        self.rotator = CredentialRotator(self.store)
        logger.debug("AskApp initialized")

    @classmethod
    def create(cls, config_path: Optional[str] = None) -> "AskApp":
        """
        Factory method to create an AskApp instance.
        """
        return cls(config_path)

    def provider_manager(self, provider: Optional[str] = None) -> ProviderManager:
        return ProviderManager(self.config_manager.generation_config(provider))

    def session(self, provider: Optional[str] = None, model: Optional[str] = None) -> StreamSession:
        """New StreamSession for provider/model (config defaults otherwise)"""
        config = self.config_manager.generation_config(provider, model)
        return StreamSession(
            config,
            self.rotator,
            executor=WebSearchExecutor(config, self.rotator),
            provider_manager=ProviderManager(config),
        )
