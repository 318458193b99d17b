"""API key rotation with monthly quota-exhaustion tracking."""

import random
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import BaseModel, ValidationError

from askai.core.models import ExhaustedKeyEntry
from askai.utils.logging import get_logger
from askai.utils.store import KeyValueStore

logger = get_logger(__name__)

EXHAUSTED_KEYS_STORAGE_KEY = "exhaustedApiKeys"

QUOTA_PATTERNS = (
    "quota",
    "rate limit",
    "rate_limit",
    "too many requests",
    "exceeded",
    "insufficient_quota",
    "billing",
    "credits",
    "429",
    "resource_exhausted",
)


class KeySelection(BaseModel):
    """Chosen key plus the keys that were still considered usable"""

    key: str
    remaining_available: List[str]


def is_quota_error(message: str) -> bool:
    """Best-effort check for rate-limit or billing failures"""
    lowered = message.lower()
    return any(pattern in lowered for pattern in QUOTA_PATTERNS)


def next_month_reset(now: datetime) -> datetime:
    """Midnight on the first day of the month after now"""
    if now.month == 12:
        return now.replace(year=now.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return now.replace(month=now.month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)


class CredentialRotator:
    """Picks usable API keys and remembers which ones ran out of quota."""

    def __init__(
        self,
        store: KeyValueStore,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.rng = rng or random.Random()
        self.clock = clock

    async def _load_entries(self) -> List[ExhaustedKeyEntry]:
        try:
            raw = await self.store.get(EXHAUSTED_KEYS_STORAGE_KEY)
        except Exception as e:
            logger.warning(f"Failed to read exhausted keys: {e}")
            return []

        entries = []
        for item in raw or []:
            try:
                entries.append(ExhaustedKeyEntry.model_validate(item))
            except ValidationError as e:
                logger.debug(f"Skipping malformed exhausted key entry: {e}")
        return entries

    async def exhausted_entries(self, provider: Optional[str] = None) -> List[ExhaustedKeyEntry]:
        """Entries that have not reached their reset date yet"""
        now = self.clock()
        entries = [e for e in await self._load_entries() if e.is_active(now)]
        if provider is not None:
            entries = [e for e in entries if e.provider == provider]
        return entries

    async def available_keys(self, all_keys: List[str], provider: str) -> List[str]:
        exhausted = {e.key for e in await self.exhausted_entries(provider)}
        return [k for k in all_keys if k not in exhausted]

    async def select_key(self, all_keys: List[str], provider: str) -> Optional[KeySelection]:
        """Pick a random usable key.

        When every key is marked exhausted, any key is returned anyway since
        the provider may have reset quotas early. Returns None only when no
        keys are configured.
        """
        if not all_keys:
            return None

        available = await self.available_keys(all_keys, provider)
        if not available:
            logger.info(f"All {provider} keys are marked exhausted, retrying with any key")
            return KeySelection(key=self.rng.choice(all_keys), remaining_available=[])
        return KeySelection(key=self.rng.choice(available), remaining_available=available)

    async def mark_exhausted(self, key: str, provider: str) -> None:
        """Record key as exhausted until next month; no-op if already recorded"""
        entries = await self.exhausted_entries()
        if any(e.key == key and e.provider == provider for e in entries):
            return

        now = self.clock()
        entries.append(
            ExhaustedKeyEntry(
                key=key,
                provider=provider,
                exhausted_at=now,
                expires_at=next_month_reset(now),
            )
        )
        try:
            await self.store.set(
                EXHAUSTED_KEYS_STORAGE_KEY, [e.model_dump(mode="json") for e in entries]
            )
            logger.info(f"API key marked as exhausted for {provider}, will reset next month")
        except Exception as e:
            logger.error(f"Failed to mark key as exhausted: {e}")
