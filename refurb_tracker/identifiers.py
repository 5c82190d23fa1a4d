"""
Human-readable request codes: STORE-YYYYMMDD-NNNN (e.g. 9397-20260115-0001).

The sequence is the number of codes already issued for that store and day,
plus one. Counting and inserting are separate round trips, so two concurrent
submissions can compute the same code; the UNIQUE constraint on
`human_request_code` turns that into a `DuplicateKeyError`, and
`RequestCodeGenerator.insert_with_code` recounts and retries. Issued codes are
never regenerated.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from refurb_tracker.errors import CodeCollisionError, DuplicateKeyError
from refurb_tracker.infrastructure.store import TableStore, prefix
from refurb_tracker.tables import REQUESTS
from refurb_tracker.utils.logging import get_logger
from refurb_tracker.utils.time import local_today

log = get_logger(__name__)

T = TypeVar("T")

CODE_COLUMN = "human_request_code"
CODE_CONSTRAINT = "refurb_requests_human_request_code_key"


def code_prefix(store_number: str, day: date) -> str:
    return f"{store_number}-{day:%Y%m%d}"


def format_code(store_number: str, day: date, sequence: int) -> str:
    return f"{code_prefix(store_number, day)}-{sequence:04d}"


def _is_code_collision(exc: BaseException) -> bool:
    return isinstance(exc, DuplicateKeyError) and exc.constraint in (None, CODE_CONSTRAINT)


def _log_retry(state: RetryCallState) -> None:
    log.warning(
        "Request code collided; recounting",
        extra={"attempt": state.attempt_number},
    )


class RequestCodeGenerator:
    """
    Issues request codes against a table store.

    Parameters
    ----------
    store : TableStore
        Store holding the requests table.
    tz_name : str
        Timezone whose calendar day goes into the code.
    attempts : int
        Total insert attempts per submission (1 = no retry).
    """

    def __init__(self, store: TableStore, tz_name: str = "UTC", attempts: int = 2) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self._store = store
        self._tz_name = tz_name
        self.attempts = attempts

    async def generate(self, store_number: str, now: datetime) -> str:
        """Compute the next code for `store_number` on the local day of `now`."""
        day = local_today(now, self._tz_name)
        issued = await self._store.count(
            REQUESTS, filters=[prefix(CODE_COLUMN, code_prefix(store_number, day))]
        )
        return format_code(store_number, day, issued + 1)

    async def insert_with_code(
        self,
        store_number: str,
        now: datetime,
        insert: Callable[[str], Awaitable[T]],
    ) -> T:
        """
        Generate a code and run `insert(code)`, recounting on collisions.

        Raises
        ------
        CodeCollisionError
            If every attempt collided with an already-issued code.
        """
        last_code: Optional[str] = None
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.attempts),
                retry=retry_if_exception(_is_code_collision),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    last_code = await self.generate(store_number, now)
                    return await insert(last_code)
        except DuplicateKeyError as exc:
            if _is_code_collision(exc):
                raise CodeCollisionError(last_code or "", self.attempts) from exc
            raise
        raise AssertionError("unreachable")  # pragma: no cover


__all__ = [
    "CODE_COLUMN",
    "CODE_CONSTRAINT",
    "RequestCodeGenerator",
    "code_prefix",
    "format_code",
]
