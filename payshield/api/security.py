"""
Bearer authentication for the API.

Tokens are not verified locally; they are resolved to a user by the
identity provider (Supabase ``GET /auth/v1/user``).
"""

from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Depends, Header

from payshield.config import settings
from payshield.errors import AuthenticationError
from payshield.utils.logging_config import StructuredLogger, user_id_var

logger = StructuredLogger(__name__)


@dataclass
class AuthenticatedUser:
    id: str
    email: Optional[str] = None


class IdentityClient:
    """Resolves a bearer credential to the user it was issued for."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.supabase_url).rstrip("/")
        self.api_key = api_key if api_key is not None else (
            settings.supabase_anon_key or settings.supabase_service_role_key
        )
        self.timeout = timeout or settings.auth_timeout
        self._transport = transport

    async def get_user(self, authorization: str) -> AuthenticatedUser:
        """
        Raises:
            AuthenticationError: If the provider rejects the token or is unreachable
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{self.base_url}/auth/v1/user",
                    headers={"Authorization": authorization, "apikey": self.api_key},
                )
        except httpx.HTTPError as e:
            logger.error("Auth getUser failed", error=str(e))
            raise AuthenticationError("Unable to verify user", original_error=e) from e

        if response.status_code != 200:
            logger.warning("Auth getUser failed", status_code=response.status_code)
            raise AuthenticationError("Unable to verify user")

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict) or not isinstance(body.get("id"), str) or not body["id"]:
            raise AuthenticationError("User not found for token")

        return AuthenticatedUser(id=body["id"], email=body.get("email"))


identity_client = IdentityClient()


def get_identity_client() -> IdentityClient:
    return identity_client


async def get_current_user(
    authorization: Optional[str] = Header(None),
    client: IdentityClient = Depends(get_identity_client),
) -> AuthenticatedUser:
    """
    Dependency for endpoints that act on behalf of a user.

    Requires ``Authorization: Bearer <token>``.
    """
    if not authorization or not authorization.strip():
        raise AuthenticationError("Missing Authorization header")

    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Authorization header must use the Bearer scheme")

    user = await client.get_user(authorization.strip())
    user_id_var.set(user.id)
    return user
