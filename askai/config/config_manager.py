import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from askai.config.models import AskConfig, ProviderConfig
from askai.core.models import CustomProvider, GenerationConfig
from askai.utils.errors import ConfigError
from askai.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_KEY_ENVS = {
    "openai": "OPENAI_API_KEY",
    "google": "GEMINI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "perplexity": "PERPLEXITY_API_KEY",
}


def split_keys(value: Optional[str]) -> List[str]:
    """Comma-separated key list from an environment variable"""
    if not value:
        return []
    return [k.strip() for k in value.split(",") if k.strip()]


class ConfigManager:
    """Manages configuration from YAML and environment variables"""

    def __init__(self, config_path: Optional[str] = None):
        # Load environment variables
        load_dotenv()

        if config_path:
            self.config_path = Path(config_path)
            self.config_dir = self.config_path.parent
        else:
            self.config_dir = Path.home() / ".askai"
            self.config_path = self.config_dir / "config.yaml"
        self.config_dir.mkdir(parents=True, exist_ok=True)

        if not self.config_path.exists():
            self._create_default_config()

        self._config_data = self._load_config_file()
        try:
            self.config = AskConfig(**self._config_data)
        except (TypeError, ValueError) as e:
            raise ConfigError(
                f"Invalid configuration in {self.config_path}: {e}",
                hint="Fix the file or delete it to regenerate the defaults",
            ) from e
        # Built-in providers left out of config.yaml keep their defaults
        for name, env in DEFAULT_KEY_ENVS.items():
            self.config.providers.setdefault(name, ProviderConfig(api_key_env=env))
        logger.debug(f"Config loaded from {self.config_path}")

    def _default_config(self) -> Dict[str, Any]:
        providers = {}
        for name, env in DEFAULT_KEY_ENVS.items():
            providers[name] = {
                "enabled": True,
                "api_keys": [],
                "api_key_env": env,
                "base_url": None,
                "model": None,
            }
        return {
            "version": "1.0",
            "defaults": {
                "provider": "openai",
                "max_tokens": 4096,
                "request_timeout": 60.0,
            },
            "providers": providers,
            "custom_providers": [],
            "web_search": {
                "enabled": True,
                "provider": "perplexity",
                "kagi_session": None,
                "kagi_session_env": "KAGI_SESSION",
                "perplexity_model": "sonar-pro",
                "google_model": "gemini-2.5-flash",
            },
            "cli": {
                "color_output": True,
                "show_reasoning": False,
            },
            "state": {
                "storage_path": str(self.config_dir / "state.json"),
            },
        }

    def _create_default_config(self):
        """Create default configuration file"""
        with open(self.config_path, "w") as f:
            yaml.dump(self._default_config(), f, default_flow_style=False)
        logger.info(f"Created default config at {self.config_path}")

    def _load_config_file(self) -> Dict:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {self.config_path}: {e}") from e
        return data or self._default_config()

    def get(self, key: str, default=None) -> Any:
        """Get configuration value using dot notation"""
        return self.config.get_dot_notation(key, default)

    def get_default_provider(self) -> str:
        return self.config.defaults.provider

    def get_api_keys(self, provider: str) -> List[str]:
        """Keys from config.yaml followed by the ones in the provider's env variable"""
        p_config = self.config.providers.get(provider)
        custom = next((c for c in self.config.custom_providers if c.id == provider), None)
        source = p_config or custom
        if source is None:
            return []

        env_name = source.api_key_env or DEFAULT_KEY_ENVS.get(provider)
        keys = list(source.api_keys) + split_keys(os.getenv(env_name) if env_name else None)
        return list(dict.fromkeys(k for k in keys if k))

    def get_kagi_session(self) -> Optional[str]:
        web_search = self.config.web_search
        if web_search.kagi_session:
            return web_search.kagi_session
        return os.getenv(web_search.kagi_session_env) if web_search.kagi_session_env else None

    def is_enabled(self, provider: str) -> bool:
        if any(c.id == provider for c in self.config.custom_providers):
            return True
        p_config = self.config.providers.get(provider)
        return bool(p_config and p_config.enabled)

    def generation_config(
        self, provider: Optional[str] = None, model: Optional[str] = None
    ) -> GenerationConfig:
        """Resolve config.yaml and the environment into a GenerationConfig"""
        selected = provider or self.get_default_provider()
        if not self.is_enabled(selected):
            raise ConfigError(
                f"Provider '{selected}' is not configured or disabled",
                hint=f"Enable providers.{selected} in {self.config_path}",
            )

        names = set(self.config.providers) | {c.id for c in self.config.custom_providers}
        api_keys = {name: self.get_api_keys(name) for name in names}
        base_urls = {
            name: p.base_url for name, p in self.config.providers.items() if p.base_url
        }
        selected_models = {
            name: p.model for name, p in self.config.providers.items() if p.model
        }
        for custom in self.config.custom_providers:
            if custom.model:
                selected_models[custom.id] = custom.model
        if model:
            selected_models[selected] = model

        web_search = self.config.web_search
        return GenerationConfig(
            selected_provider=selected,
            api_keys=api_keys,
            base_urls=base_urls,
            selected_models=selected_models,
            web_search_provider=web_search.provider,
            enable_web_search=web_search.enabled,
            kagi_session=self.get_kagi_session(),
            custom_providers=[
                CustomProvider(id=c.id, name=c.name, base_url=c.base_url)
                for c in self.config.custom_providers
            ],
            max_tokens=self.config.defaults.max_tokens,
            request_timeout=self.config.defaults.request_timeout,
            perplexity_search_model=web_search.perplexity_model,
            google_search_model=web_search.google_model,
        )

    def save(self):
        """Save current configuration to file, atomically"""
        fd, tmp_path = tempfile.mkstemp(dir=self.config_path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                yaml.dump(self.config.model_dump(), f, default_flow_style=False)
            shutil.move(tmp_path, self.config_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.info(f"Config saved to {self.config_path}")
