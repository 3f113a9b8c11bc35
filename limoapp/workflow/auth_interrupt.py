import logging
from typing import Optional

from ._state.domain import AuthRedirect, DraftBooking, DraftStore, Identity, IdentityProvider, WorkflowStep
from . import transitions

logger = logging.getLogger(__name__)


class AuthInterruptHandler:
    """Parks the draft while the customer signs in and picks it back up afterwards."""

    def __init__(self, store: DraftStore, identity_provider: IdentityProvider, return_path: str = "/booking"):
        self.store = store
        self.identity_provider = identity_provider
        self.return_path = return_path

    async def interrupt(self, draft: DraftBooking) -> AuthRedirect:
        snapshot = transitions.normalized_for_resume(draft)
        if not await self.store.save(snapshot):
            logger.warning("Draft could not be saved before sign-in; the customer will restart after login")
        login_url = self.identity_provider.login_url(self.return_path)
        logger.info(f"Authentication required, redirecting to {login_url}")
        return AuthRedirect(login_url=login_url, draft=snapshot)

    async def resume(self, identity: Identity) -> Optional[DraftBooking]:
        # The snapshot stays in the store until a booking is submitted
        draft = await self.store.load()
        if draft is None:
            return None
        if draft.step is WorkflowStep.submitted:
            logger.info("Discarding draft of an already submitted booking")
            await self.store.clear()
            return None

        if (
            draft.step is WorkflowStep.vehicle_selection
            and identity.is_authenticated
            and draft.selected_offer() is not None
        ):
            draft = transitions.advance_to_details(draft, identity)
            logger.info("Resumed draft after sign-in at passenger details")
        return draft
