from datetime import datetime, timezone
import httpx
from loguru import logger
from ...core.config import settings
from .entity import EntityVerificationResult


class RegistryUnavailableError(Exception):
    """Live registry lookup failed (network error, timeout, unexpected status)."""


class RegistryClient:
    """Thin async client for a national business-registry (ACRA) entity lookup API."""

    def __init__(self, base_url: str | None = None, api_key: str | None = None, timeout: float | None = None):
        self.base_url = (base_url if base_url is not None else settings.acra_api_url) or ""
        self.api_key = api_key if api_key is not None else settings.acra_api_key
        self.timeout = timeout if timeout is not None else settings.acra_timeout_seconds

    def is_available(self) -> bool:
        return bool(self.base_url and self.api_key)

    async def lookup(self, uen: str) -> EntityVerificationResult:
        if not self.is_available():
            raise RegistryUnavailableError("ACRA_API_URL / ACRA_API_KEY not set")

        url = f"{self.base_url.rstrip('/')}/entities/{uen}"
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise RegistryUnavailableError(f"ACRA API request failed: {str(e)}") from e

        if r.status_code == 404:
            return EntityVerificationResult(is_valid=True, exists=False, error="UEN not found")
        if r.status_code != 200:
            raise RegistryUnavailableError(f"ACRA API error: {r.status_code}")

        try:
            data = r.json()
        except ValueError as e:
            raise RegistryUnavailableError("ACRA API returned invalid JSON") from e

        logger.debug("ACRA lookup complete", uen=uen, status=data.get("status"))
        return EntityVerificationResult(
            is_valid=True,
            exists=True,
            entity_name=data.get("entityName"),
            entity_type=data.get("entityType"),
            entity_status=data.get("status"),
            gst_registered=data.get("gstRegistered"),
            registration_date=data.get("registrationDate"),
            industry=data.get("primaryActivity"),
            last_updated=data.get("lastUpdated") or datetime.now(timezone.utc).isoformat(),
        )
