from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class ProviderConfig(BaseModel):
    enabled: bool = True
    api_keys: List[str] = Field(default_factory=list)
    api_key_env: Optional[str] = None
    base_url: Optional[str] = None
    model: Optional[str] = None


class CustomProviderConfig(BaseModel):
    id: str
    name: str
    base_url: str
    api_keys: List[str] = Field(default_factory=list)
    api_key_env: Optional[str] = None
    model: Optional[str] = None


class DefaultsConfig(BaseModel):
    provider: str = "openai"
    max_tokens: int = 4096
    request_timeout: float = 60.0


class WebSearchConfig(BaseModel):
    enabled: bool = True
    provider: Literal["perplexity", "google", "kagi"] = "perplexity"
    kagi_session: Optional[str] = None
    kagi_session_env: Optional[str] = "KAGI_SESSION"
    perplexity_model: str = "sonar-pro"
    google_model: str = "gemini-2.5-flash"


class CliConfig(BaseModel):
    color_output: bool = True
    show_reasoning: bool = False


class StateConfig(BaseModel):
    storage_path: str


class AskConfig(BaseModel):
    version: str = "1.0"
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    providers: Dict[str, ProviderConfig] = Field(default_factory=dict)
    custom_providers: List[CustomProviderConfig] = Field(default_factory=list)
    web_search: WebSearchConfig = Field(default_factory=WebSearchConfig)
    cli: CliConfig = Field(default_factory=CliConfig)
    state: StateConfig

    def get_dot_notation(self, key: str, default: Any = None) -> Any:
        """Get value using dot notation from the config model"""
        parts = key.split(".")
        current = self
        for part in parts:
            if hasattr(current, part):
                current = getattr(current, part)
            elif isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current
