import logging
from typing import Dict, Optional
from urllib.parse import urlencode

import httpx

from limoapp.config.settings import settings
from limoapp.workflow._state.domain import Identity
from limoapp.workflow.errors import CollaboratorError

from .platform_client import PlatformClient

logger = logging.getLogger(__name__)


class PlatformIdentityClient(PlatformClient):
    """Who is signed in, according to the platform's session."""

    def __init__(self, *args, login_path: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.login_path = login_path or settings.LOGIN_URL

    async def current_identity(self) -> Identity:
        if not self.auth_headers:
            return Identity.anonymous()

        try:
            response = await self._request("GET", "/api/auth/user")
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Identity service unavailable: {e}") from e

        if response.status_code in (401, 403, 404):
            return Identity.anonymous()
        if response.is_error:
            raise CollaboratorError("Failed to fetch user", response.status_code)

        try:
            return self._to_identity(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise CollaboratorError(f"Malformed user response: {e}") from e

    @staticmethod
    def _to_identity(user: Dict) -> Identity:
        return Identity(
            is_authenticated=True,
            user_id=str(user["id"]),
            first_name=user.get("firstName"),
            last_name=user.get("lastName"),
            phone=user.get("phone"),
            email=user.get("email"),
            # Only passengers may pay later; staff accounts always go through checkout
            deferred_payment=bool(user.get("payLaterEnabled")) and user.get("role") == "passenger",
        )

    def login_url(self, return_to: str) -> str:
        separator = "&" if "?" in self.login_path else "?"
        return f"{self.base_url}{self.login_path}{separator}{urlencode({'returnTo': return_to})}"
