from askai.search.executor import (
    WebSearchExecutor,
    has_backend_credentials,
    resolve_search_mode,
    should_enable_web_search,
)

__all__ = [
    "WebSearchExecutor",
    "has_backend_credentials",
    "resolve_search_mode",
    "should_enable_web_search",
]
