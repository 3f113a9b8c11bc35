import asyncio
import logging
from typing import Dict, List

from ._state.domain import AddressCandidate, AddressField, AddressFieldKind, GeocodingProvider, Location

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
DEFAULT_DEBOUNCE_SECONDS = 0.3
DEFAULT_LIMIT = 5


class AddressResolutionAdapter:
    """
    Debounced address suggestions, tracked independently per address field.

    Each field owns a cancellation token: the pending ``asyncio.Task`` plus a
    sequence number. A keystroke cancels only its own field's task, and only the
    latest sequence for a field may publish suggestions for it.
    """

    def __init__(
        self,
        geocoder: GeocodingProvider,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        limit: int = DEFAULT_LIMIT,
    ):
        self.geocoder = geocoder
        self.debounce_seconds = debounce_seconds
        self.limit = limit
        self._pending: Dict[AddressField, asyncio.Task] = {}
        self._sequence: Dict[AddressField, int] = {}
        self._suggestions: Dict[AddressField, List[AddressCandidate]] = {}
        self._open: Dict[AddressField, bool] = {}

    def suggestions(self, field: AddressField) -> List[AddressCandidate]:
        return list(self._suggestions.get(field, []))

    def is_open(self, field: AddressField) -> bool:
        return self._open.get(field, False)

    def has_pending(self, field: AddressField) -> bool:
        task = self._pending.get(field)
        return task is not None and not task.done()

    async def suggest(self, field: AddressField, text: str) -> List[AddressCandidate]:
        self._cancel(field)
        sequence = self._sequence.get(field, 0) + 1
        self._sequence[field] = sequence

        if len(text) < MIN_QUERY_LENGTH:
            self.close(field, clear=True)
            return []

        task = asyncio.create_task(self._search_after_debounce(field, text, sequence))
        self._pending[field] = task
        try:
            return await task
        except asyncio.CancelledError:
            superseded = self._sequence.get(field) != sequence
            if superseded and not asyncio.current_task().cancelling():
                return []
            raise

    def select(self, field: AddressField, candidate: AddressCandidate) -> Location:
        """Selecting a candidate is the only way an address gets coordinates."""
        self._cancel(field)
        self._sequence[field] = self._sequence.get(field, 0) + 1
        self.close(field)
        return candidate.to_location()

    def close(self, field: AddressField, clear: bool = False):
        self._open[field] = False
        if clear:
            self._suggestions[field] = []

    def forget_via_points(self):
        """Via indices shift after a removal, so their suggestion state is dropped."""
        for field in [f for f in set(self._sequence) | set(self._pending) if f.kind is AddressFieldKind.via]:
            self._cancel(field)
            self._sequence[field] = self._sequence.get(field, 0) + 1
            self.close(field, clear=True)

    def cancel_all(self):
        for field in list(self._pending):
            self._cancel(field)

    def _cancel(self, field: AddressField):
        task = self._pending.pop(field, None)
        if task is not None and not task.done():
            task.cancel()

    async def _search_after_debounce(self, field: AddressField, text: str, sequence: int) -> List[AddressCandidate]:
        await asyncio.sleep(self.debounce_seconds)
        try:
            candidates = await self.geocoder.search(text, self.limit)
        except Exception as e:
            logger.warning(f"Geocoding error for {field}: {e}")
            candidates = []

        if self._sequence.get(field) != sequence:
            # A newer keystroke owns this field now
            return []

        self._pending.pop(field, None)
        self._suggestions[field] = list(candidates)
        self._open[field] = True
        return list(candidates)
