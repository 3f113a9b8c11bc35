from typing import Optional

from .domain import DraftBooking


class InMemoryDraftStore:
    """Single-slot draft store kept in process memory; each save replaces the previous draft."""

    def __init__(self, draft: Optional[DraftBooking] = None):
        self._payload: Optional[str] = draft.model_dump_json() if draft else None

    async def save(self, draft: DraftBooking) -> bool:
        # Stored serialized so a load behaves like a page reload
        self._payload = draft.model_dump_json()
        return True

    async def load(self) -> Optional[DraftBooking]:
        if self._payload is None:
            return None
        return DraftBooking.model_validate_json(self._payload)

    async def clear(self) -> bool:
        existed = self._payload is not None
        self._payload = None
        return existed
