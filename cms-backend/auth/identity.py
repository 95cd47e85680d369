"""
Identity gate.
Maps an identity-provider login (Google ID token) to an internal user record.
Unmapped identities are signed out at the provider and refused; users are never auto-provisioned.
"""

import os
import time
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from database import crud, models
from services.errors import AccessDeniedError, NotRegisteredError

log = logging.getLogger(__name__)

# ─── Config ───────────────────────────────────────────────────────────────────

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_JWKS_URL = os.getenv("GOOGLE_JWKS_URL", "https://www.googleapis.com/oauth2/v3/certs")
GOOGLE_REVOKE_URL = os.getenv("GOOGLE_REVOKE_URL", "https://oauth2.googleapis.com/revoke")
GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")
JWKS_CACHE_SECONDS = 3600


class IdentityError(Exception):
    """The provider token could not be verified"""


@dataclass
class ProviderIdentity:
    email: str
    name: Optional[str] = None
    subject: Optional[str] = None


class GoogleIdentityProvider:
    def __init__(
        self,
        client_id: str = GOOGLE_CLIENT_ID,
        jwks_url: str = GOOGLE_JWKS_URL,
        revoke_url: str = GOOGLE_REVOKE_URL,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.client_id = client_id
        self.jwks_url = jwks_url
        self.revoke_url = revoke_url
        self._transport = transport
        self._jwks: Optional[dict] = None
        self._jwks_fetched_at = 0.0

    def _get_jwks(self) -> dict:
        if self._jwks is None or time.monotonic() - self._jwks_fetched_at > JWKS_CACHE_SECONDS:
            try:
                with httpx.Client(transport=self._transport, timeout=10.0) as client:
                    response = client.get(self.jwks_url)
                    response.raise_for_status()
            except httpx.HTTPError as e:
                raise IdentityError(f"Could not fetch signing keys: {e}") from e
            self._jwks = response.json()
            self._jwks_fetched_at = time.monotonic()
        return self._jwks

    def verify(self, id_token: str) -> ProviderIdentity:
        """Verify signature, audience and issuer of a Google ID token"""
        try:
            claims = jwt.decode(
                id_token,
                self._get_jwks(),
                algorithms=["RS256"],
                audience=self.client_id or None,
                issuer=GOOGLE_ISSUERS,
                options={"verify_aud": bool(self.client_id), "verify_at_hash": False},
            )
        except JWTError as e:
            raise IdentityError(str(e)) from e

        if not claims.get("email"):
            raise IdentityError("Token carries no email")
        if claims.get("email_verified") is False:
            raise IdentityError("Email address is not verified")
        return ProviderIdentity(email=claims["email"], name=claims.get("name"), subject=claims.get("sub"))

    def sign_out(self, access_token: Optional[str]) -> None:
        """Revoke the provider grant. Best-effort: the login is refused either way."""
        if not access_token:
            return
        try:
            with httpx.Client(transport=self._transport, timeout=10.0) as client:
                response = client.post(self.revoke_url, params={"token": access_token})
            if response.status_code != 200:
                log.warning("Provider sign-out returned %s", response.status_code)
        except httpx.HTTPError as e:
            log.warning("Provider sign-out failed: %s", e)


class IdentityGate:
    def __init__(self, provider):
        self.provider = provider

    def resolve(self, db: Session, id_token: str, provider_access_token: Optional[str] = None) -> models.User:
        try:
            identity = self.provider.verify(id_token)
        except IdentityError as e:
            log.warning("Rejected identity token: %s", e)
            raise AccessDeniedError("Identity token is invalid or expired") from e

        user = crud.get_user_by_email(db, identity.email)
        if user is None:
            self.provider.sign_out(provider_access_token)
            log.warning("Login denied for unregistered email %s", identity.email)
            raise NotRegisteredError(
                f"Email {identity.email} is not registered. Contact the administrator for access."
            )

        log.info("User %s logged in as %s", user.email, user.role.value)
        return user


_provider: Optional[GoogleIdentityProvider] = None


def get_identity_provider() -> GoogleIdentityProvider:
    """FastAPI dependency: process-wide identity provider adapter"""
    global _provider
    if _provider is None:
        _provider = GoogleIdentityProvider()
    return _provider
