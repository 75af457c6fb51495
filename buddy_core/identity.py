"""
Identity Provider Module

The identity provider is the service of record for accounts and credentials
(a Clerk-compatible Backend API). This module wraps the handful of calls the
API needs and verifies the signed lifecycle webhooks the provider sends.

No password is ever generated or stored locally. Face sign-ups create
passwordless identities; sessions are issued by buddy_core.sessions.

Usage:
    from buddy_core.identity import get_identity_client

    client = get_identity_client()
    identity = await client.verify_password("alice@example.com", "s3cret")
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx

logger = logging.getLogger(__name__)


class IdentityProviderError(Exception):
    """Raised when the identity provider fails or is not configured."""


class InvalidCredentials(IdentityProviderError):
    """Raised when an email/password pair is rejected."""


class IdentityNotFound(IdentityProviderError):
    """Raised when an identity lookup misses."""


class IdentityConflict(IdentityProviderError):
    """Raised when creating an identity that already exists."""


class WebhookVerificationError(Exception):
    """Raised when a webhook's signature headers are missing or invalid."""


@dataclass
class Identity:
    """An account as known to the identity provider."""

    external_id: str
    email: Optional[str]
    first_name: Optional[str] = None
    last_name: Optional[str] = None


def identity_from_payload(data: Mapping[str, Any]) -> Identity:
    """
    Build an Identity from a provider user object.

    The primary email is the entry of `email_addresses` whose id equals
    `primary_email_address_id`, falling back to the first address.
    """
    addresses = data.get("email_addresses") or []
    primary_id = data.get("primary_email_address_id")

    email = None
    for address in addresses:
        if address.get("id") == primary_id:
            email = address.get("email_address")
            break
    if email is None and addresses:
        email = addresses[0].get("email_address")

    return Identity(
        external_id=data["id"],
        email=email,
        first_name=data.get("first_name") or None,
        last_name=data.get("last_name") or None,
    )


class IdentityProviderClient:
    """
    Async HTTP client for the identity provider's backend API.

    Args:
        base_url: API root, e.g. "https://api.clerk.com/v1".
        secret_key: Backend secret key sent as a bearer token.
        timeout_sec: Per-request timeout.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        secret_key: Optional[str],
        timeout_sec: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._secret_key = secret_key
        self.timeout_sec = timeout_sec
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._secret_key)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if not self.is_configured:
            raise IdentityProviderError("Identity provider secret key not set")

        headers = {"Authorization": f"Bearer {self._secret_key}"}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout_sec,
                transport=self._transport,
            ) as client:
                return await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Identity provider request failed: {method} {path}: {e}")
            raise IdentityProviderError(f"Identity provider unreachable: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        logger.error(
            f"Identity provider error during {action}: "
            f"{response.status_code} {response.text[:300]}"
        )
        raise IdentityProviderError(
            f"Identity provider error during {action} ({response.status_code})"
        )

    async def find_identity_by_email(self, email: str) -> Optional[Identity]:
        """
        Look up an identity by email address.

        Returns:
            The identity, or None if no account uses this email.
        """
        response = await self._request("GET", "/users", params={"email_address": email})
        self._raise_for_status(response, "user lookup")

        users = response.json()
        if not users:
            return None
        return identity_from_payload(users[0])

    async def get_identity(self, external_id: str) -> Identity:
        """
        Fetch an identity by its provider ID.

        Raises:
            IdentityNotFound: If the provider returns 404.
        """
        response = await self._request("GET", f"/users/{external_id}")
        if response.status_code == 404:
            raise IdentityNotFound(f"Identity {external_id} not found")
        self._raise_for_status(response, "user fetch")
        return identity_from_payload(response.json())

    async def verify_password(self, email: str, password: str) -> Identity:
        """
        Check an email/password pair.

        Returns:
            The verified identity.

        Raises:
            InvalidCredentials: If the account doesn't exist or the password
                                is wrong. The two cases are not distinguished.
        """
        identity = await self.find_identity_by_email(email)
        if identity is None:
            raise InvalidCredentials("Invalid email or password")

        response = await self._request(
            "POST",
            f"/users/{identity.external_id}/verify_password",
            json={"password": password},
        )
        if response.status_code in (400, 401, 404, 422):
            raise InvalidCredentials("Invalid email or password")
        self._raise_for_status(response, "password verification")

        if not response.json().get("verified", False):
            raise InvalidCredentials("Invalid email or password")

        return identity

    async def create_identity(
        self,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Identity:
        """
        Create an account with the identity provider.

        Without a password the account is created passwordless.

        Raises:
            IdentityConflict: If the email is already registered.
        """
        body: Dict[str, Any] = {
            "email_address": [email],
            "first_name": first_name,
            "last_name": last_name,
        }
        if password:
            body["password"] = password
        else:
            body["skip_password_requirement"] = True

        response = await self._request("POST", "/users", json=body)
        if response.status_code == 422:
            raise IdentityConflict(f"Could not create identity for {email}")
        self._raise_for_status(response, "user creation")

        identity = identity_from_payload(response.json())
        logger.info(f"Created identity {identity.external_id}")
        return identity

    async def update_credential(self, external_id: str, new_password: str) -> None:
        """
        Set a new password on an identity.

        Raises:
            IdentityNotFound: If the identity doesn't exist.
        """
        response = await self._request(
            "PATCH", f"/users/{external_id}", json={"password": new_password}
        )
        if response.status_code == 404:
            raise IdentityNotFound(f"Identity {external_id} not found")
        self._raise_for_status(response, "credential update")
        logger.info(f"Updated credential for identity {external_id}")


class WebhookVerifier:
    """
    Verify Svix-style signed webhook deliveries.

    The signed content is "{svix-id}.{svix-timestamp}.{raw body}", signed with
    HMAC-SHA256 using the base64-decoded part of a "whsec_..." secret. The
    svix-signature header holds one or more space-separated "v1,<base64>"
    entries; any one matching is enough.

    Args:
        secret: Webhook signing secret ("whsec_..." or raw base64).
        tolerance_sec: Maximum allowed clock skew for svix-timestamp.
    """

    def __init__(self, secret: Optional[str], tolerance_sec: int = 300):
        if not secret:
            raise ValueError("Webhook secret must be configured")
        if secret.startswith("whsec_"):
            secret = secret[len("whsec_"):]
        self._key = base64.b64decode(secret)
        self.tolerance_sec = tolerance_sec

    def sign(self, msg_id: str, timestamp: int, body: bytes) -> str:
        """Compute the "v1,<base64>" signature for a delivery."""
        signed = f"{msg_id}.{timestamp}.".encode() + body
        digest = hmac.new(self._key, signed, hashlib.sha256).digest()
        return "v1," + base64.b64encode(digest).decode()

    def verify(self, body: bytes, headers: Mapping[str, str], now: Optional[float] = None) -> Dict[str, Any]:
        """
        Verify a delivery and return its decoded JSON payload.

        Args:
            body: Raw request body, exactly as received.
            headers: Request headers (case-insensitive mapping).
            now: Current UNIX time, for tests.

        Raises:
            WebhookVerificationError: On missing headers, stale timestamp,
                                      bad signature or non-JSON body.
        """
        msg_id = headers.get("svix-id")
        timestamp_header = headers.get("svix-timestamp")
        signature_header = headers.get("svix-signature")

        if not msg_id or not timestamp_header or not signature_header:
            raise WebhookVerificationError("Missing svix headers")

        try:
            timestamp = int(timestamp_header)
        except ValueError:
            raise WebhookVerificationError("Invalid svix-timestamp")

        current = time.time() if now is None else now
        if abs(current - timestamp) > self.tolerance_sec:
            raise WebhookVerificationError("Webhook timestamp outside tolerance")

        expected = self.sign(msg_id, timestamp, body)
        candidates = signature_header.split()
        if not any(hmac.compare_digest(expected, candidate) for candidate in candidates):
            raise WebhookVerificationError("No matching signature")

        try:
            return json.loads(body)
        except ValueError:
            raise WebhookVerificationError("Webhook body is not JSON")


# Singleton instance
_identity_client: Optional[IdentityProviderClient] = None


def get_identity_client() -> IdentityProviderClient:
    """Get or create the singleton IdentityProviderClient from config."""
    global _identity_client

    if _identity_client is None:
        from buddy_core.config import get_identity_config

        config = get_identity_config()
        _identity_client = IdentityProviderClient(
            base_url=config.get("base_url", "https://api.clerk.com/v1"),
            secret_key=config.get("secret_key"),
            timeout_sec=float(config.get("timeout_sec", 10.0)),
        )

    return _identity_client


def get_webhook_verifier() -> WebhookVerifier:
    """
    Build a WebhookVerifier from config.

    Raises:
        ValueError: If no webhook secret is configured.
    """
    from buddy_core.config import get_identity_config

    config = get_identity_config()
    return WebhookVerifier(
        secret=config.get("webhook_secret"),
        tolerance_sec=int(config.get("webhook_tolerance_sec", 300)),
    )
