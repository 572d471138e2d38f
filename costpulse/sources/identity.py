"""
Azure AD client-credential token provider.

Tokens are cached in the SnapshotCache and reused until they enter the final
safety margin of their lifetime. A failed exchange always raises AuthError;
there is no stale-token fallback.
"""
from datetime import timedelta

import httpx

from costpulse.config import settings
from costpulse.core.cache import SnapshotCache
from costpulse.models import AzureCredentials, CachedToken, utcnow
from costpulse.observability.logger import get_logger

log = get_logger("sources.identity")

DEFAULT_EXPIRES_IN = 3600


class AuthError(Exception):
    """Token exchange was rejected, unreachable, or returned garbage."""


class TokenProvider:
    def __init__(
        self,
        credentials: AzureCredentials | None,
        cache: SnapshotCache,
        login_url: str | None = None,
        scope: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.credentials = credentials
        self.cache = cache
        self.login_url = (login_url or settings.login_url).rstrip("/")
        self.scope = scope or f"{settings.cost_management_url.rstrip('/')}/.default"
        self.timeout = timeout or settings.request_timeout_seconds
        self._transport = transport

    def is_configured(self) -> bool:
        return self.credentials is not None

    def invalidate(self):
        """Drop the cached token so the next call performs a fresh exchange."""
        self.cache.clear_token()
        log.info("token_invalidated")

    async def get_token(self) -> str:
        cached = self.cache.get_token()
        if cached:
            return cached.value

        if self.credentials is None:
            raise AuthError("Azure credentials are not configured")

        token = await self._request_token(self.credentials)
        self.cache.store_token(token)
        log.info("token_issued", expires_at=token.expires_at.isoformat())
        return token.value

    async def _request_token(self, credentials: AzureCredentials) -> CachedToken:
        url = f"{self.login_url}/{credentials.tenant_id}/oauth2/v2.0/token"
        form = {
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "scope": self.scope,
            "grant_type": "client_credentials",
        }

        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self._transport) as client:
                response = await client.post(url, data=form)
        except httpx.HTTPError as e:
            log.error("token_request_error", error=str(e))
            raise AuthError(f"Token request failed: {e}") from e

        if not response.is_success:
            detail = _error_description(response)
            log.error("token_rejected", status=response.status_code, detail=detail)
            raise AuthError(f"Authentication failed: {response.status_code}" + (f" - {detail}" if detail else ""))

        try:
            payload = response.json()
            value = payload["access_token"]
            expires_in = int(payload.get("expires_in", DEFAULT_EXPIRES_IN))
        except (ValueError, KeyError, TypeError) as e:
            raise AuthError(f"Malformed token response: {e}") from e

        if not isinstance(value, str) or not value or expires_in <= 0:
            raise AuthError("Malformed token response: missing token or expiry")

        issued_at = utcnow()
        return CachedToken(value=value, issued_at=issued_at, expires_at=issued_at + timedelta(seconds=expires_in))


def _error_description(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("error_description") or body.get("error")
    return None
