"""Read access to locations and technicians, and session construction."""

from __future__ import annotations

import hmac
from typing import List, Optional

from refurb_tracker.domain.models import Location, SessionContext, Technician
from refurb_tracker.errors import QueryError, StoreError
from refurb_tracker.infrastructure.store import Filter, TableStore, eq
from refurb_tracker.tables import LOCATION_JOIN, LOCATIONS, TECHNICIANS
from refurb_tracker.utils.logging import get_logger

log = get_logger(__name__)


class ReferenceData:
    """
    Locations and technicians as the session picker needs them.

    Parameters
    ----------
    store : TableStore
        Backing table store.
    """

    def __init__(self, store: TableStore) -> None:
        self._store = store

    async def list_locations(self) -> List[Location]:
        """All locations ordered by city."""
        try:
            rows = await self._store.select(LOCATIONS, order_by="city")
        except StoreError as exc:
            raise QueryError(f"Failed to fetch locations: {exc}") from exc
        return [Location.model_validate(row) for row in rows]

    async def get_location(self, location_id: str) -> Location:
        try:
            rows = await self._store.select(LOCATIONS, filters=[eq("id", location_id)], limit=1)
        except StoreError as exc:
            raise QueryError(f"Failed to fetch location '{location_id}': {exc}") from exc
        if not rows:
            raise QueryError(f"Location '{location_id}' not found")
        return Location.model_validate(rows[0])

    async def list_technicians(
        self, location_id: Optional[str] = None, *, active_only: bool = True
    ) -> List[Technician]:
        """Technicians ordered by name, optionally restricted to one location."""
        filters: List[Filter] = []
        if location_id:
            filters.append(eq("location_id", location_id))
        if active_only:
            filters.append(eq("is_active", True))
        try:
            rows = await self._store.select(
                TECHNICIANS, filters=filters, joins=(LOCATION_JOIN,), order_by="name"
            )
        except StoreError as exc:
            raise QueryError(f"Failed to fetch technicians: {exc}") from exc
        return [Technician.model_validate(row) for row in rows]

    async def get_technician(self, tech_id: str) -> Technician:
        try:
            rows = await self._store.select(
                TECHNICIANS, filters=[eq("id", tech_id)], joins=(LOCATION_JOIN,), limit=1
            )
        except StoreError as exc:
            raise QueryError(f"Failed to fetch technician '{tech_id}': {exc}") from exc
        if not rows:
            raise QueryError(f"Technician '{tech_id}' not found")
        return Technician.model_validate(rows[0])

    async def verify_pin(self, tech_id: str, pin: str) -> bool:
        """True when `pin` matches the technician's stored PIN and they are active."""
        technician = await self.get_technician(tech_id)
        matched = technician.is_active and hmac.compare_digest(technician.pin, pin)
        if not matched:
            log.warning("PIN verification failed", extra={"tech_id": tech_id})
        return matched

    async def build_session(self, tech_id: str, pin: str) -> SessionContext:
        """
        Verify the PIN and return the session for that technician's location.

        Raises
        ------
        PermissionError
            If the PIN does not match or the technician is inactive.
        """
        if not await self.verify_pin(tech_id, pin):
            raise PermissionError("Incorrect PIN")
        technician = await self.get_technician(tech_id)
        location = technician.location or await self.get_location(technician.location_id)
        return SessionContext(
            location_id=location.id,
            tech_id=technician.id,
            tech_name=technician.name,
            location_city=location.city,
            store_number=location.store_number,
        )


__all__ = ["ReferenceData"]
