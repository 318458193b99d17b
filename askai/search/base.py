"""
Base classes for web-search backends.

Every backend turns one query into a WebSearchResult. Failures are reported
as descriptive text inside the result so a broken integration only degrades
the answer; cancellation is the one thing that escapes.
"""

from abc import ABC, abstractmethod

from askai.core.models import WebSearchResult
from askai.utils.errors import AbortError
from askai.utils.logging import get_logger

logger = get_logger(__name__)

NO_RESULTS = "No search results found."


class SearchBackend(ABC):
    """Abstract base class for search backends."""

    name = "search"
    error_prefix = "Search failed"

    async def search(self, query: str) -> WebSearchResult:
        """
        Run a web search for query.

        Args:
            query: The search query string

        Returns:
            WebSearchResult; on failure its content describes the error

        Raises:
            AbortError: If the surrounding turn was cancelled
        """
        try:
            return await self._search(query)
        except AbortError:
            raise
        except Exception as e:
            logger.warning(f"{self.name} search for '{query}' failed: {e}")
            return WebSearchResult(content=f"{self.error_prefix}: {e}", sources=[])

    @abstractmethod
    async def _search(self, query: str) -> WebSearchResult:
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """True if the backend has the credentials it needs"""
        pass
