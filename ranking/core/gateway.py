"""Score submission path."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Mapping

from ranking.core.records import EntryRecord, parse_record
from ranking.storage.base import StoreAdapter

logger = logging.getLogger(__name__)

Authorizer = Callable[[], Awaitable[Any]]


def now_ms() -> int:
    return int(time.time() * 1000)


class SubmissionGateway:
    def __init__(
        self,
        store: StoreAdapter,
        authorizer: Authorizer | None = None,
        auth_timeout: float = 5.0,
    ):
        self.store = store
        self.authorizer = authorizer
        self.auth_timeout = float(auth_timeout)
        self._authorized = authorizer is None

    @property
    def authorized(self) -> bool:
        return self._authorized

    async def _authorize(self) -> None:
        if self._authorized:
            return
        try:
            await asyncio.wait_for(self.authorizer(), timeout=self.auth_timeout)
        except asyncio.TimeoutError:
            logger.warning("write authorization timed out after %.1fs; submitting anyway", self.auth_timeout)
            return
        except Exception as e:
            logger.warning("write authorization failed (%s); submitting anyway", e)
            return
        self._authorized = True

    async def submit(self, draft: EntryRecord | Mapping[str, Any]) -> str:
        """Append one submission and return the id the store assigned.

        Authorization failures are logged and ignored; store failures propagate.
        """
        record = parse_record(draft)
        if record.timestamp is None:
            record = record.with_timestamp(now_ms())
        await self._authorize()
        record_id = await self.store.append(record)
        logger.debug("submitted %r score=%s id=%s", record.name, record.score, record_id)
        return record_id
