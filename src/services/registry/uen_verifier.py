"""
UEN verification with a time-bounded cache and layered fallback sources.

Resolution order for a well-formed identifier:
1. verification cache
2. live ACRA registry (only when configured)
3. deterministic reference registry
4. last resort: identifiers seen on past invoices, then the known-entities set

Concurrent lookups of the same identifier share one resolution through a
per-identifier lock. Batches run in fixed-size concurrent chunks with a pause
between chunks.
"""

import asyncio
from datetime import timedelta
from typing import Awaitable, Callable
from loguru import logger
from ...core.config import settings
from .acra_client import RegistryClient, RegistryUnavailableError
from .cache import VerificationCache
from .entity import EntityVerificationResult
from .formats import is_valid_format, normalize_uen
from .reference_data import ReferenceRegistry


def default_cache() -> VerificationCache:
    return VerificationCache(
        ttl=timedelta(hours=settings.uen_cache_ttl_hours),
        max_entries=settings.uen_cache_max_entries,
        sweep_target=settings.uen_cache_sweep_target,
        evict_count=settings.uen_cache_evict_count,
    )


class EntityVerifier:
    def __init__(
        self,
        cache: VerificationCache | None = None,
        registry_client: RegistryClient | None = None,
        reference: ReferenceRegistry | None = None,
        store=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        chunk_size: int | None = None,
        chunk_delay_ms: int | None = None,
    ):
        self.cache = cache if cache is not None else default_cache()
        self.registry_client = registry_client if registry_client is not None else RegistryClient()
        self.reference = reference or ReferenceRegistry(clock=self.cache.clock)
        self.store = store
        self.sleep = sleep
        self.chunk_size = chunk_size or settings.uen_batch_chunk_size
        self.chunk_delay_ms = settings.uen_batch_delay_ms if chunk_delay_ms is None else chunk_delay_ms
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    async def verify(self, identifier: str) -> EntityVerificationResult:
        uen = normalize_uen(identifier)

        cached = self.cache.get(uen)
        if cached is not None:
            logger.debug("UEN verification cache hit", uen=uen)
            return cached

        if not is_valid_format(uen):
            return EntityVerificationResult(is_valid=False, exists=False, error="Invalid UEN format")

        lock = self._locks.setdefault(uen, asyncio.Lock())
        self._lock_users[uen] = self._lock_users.get(uen, 0) + 1
        try:
            async with lock:
                # another caller may have resolved it while we waited
                cached = self.cache.get(uen)
                if cached is not None:
                    return cached
                return await self._resolve_and_cache(uen)
        finally:
            self._lock_users[uen] -= 1
            if not self._lock_users[uen]:
                del self._lock_users[uen]
                del self._locks[uen]

    async def _resolve_and_cache(self, uen: str) -> EntityVerificationResult:
        try:
            result = await self._resolve(uen)
        except Exception as e:
            logger.exception("UEN verification error", uen=uen)
            result = self._last_resort(uen)
            if result.exists:
                self.cache.put(uen, result)
            else:
                logger.error("UEN could not be verified by any source", uen=uen, error=str(e))
            return result

        self.cache.put(uen, result)
        logger.info("UEN verified", uen=uen, exists=result.exists, status=result.entity_status)
        return result

    async def _resolve(self, uen: str) -> EntityVerificationResult:
        if self.registry_client.is_available():
            try:
                return await self.registry_client.lookup(uen)
            except RegistryUnavailableError as e:
                logger.warning("ACRA lookup failed, falling back to reference registry", uen=uen, error=str(e))
        return self.reference.lookup(uen)

    def _last_resort(self, uen: str) -> EntityVerificationResult:
        if self.store is not None:
            try:
                invoices = self.store.find_by_identifier(uen)
                if invoices:
                    invoice = invoices[0]
                    is_vendor = invoice.get("vendor_uen") == uen
                    name = invoice.get("vendor_name") if is_vendor else invoice.get("customer_name")
                    logger.warning("UEN resolved from past invoices", uen=uen, as_vendor=is_vendor)
                    return EntityVerificationResult(
                        is_valid=True,
                        exists=True,
                        entity_name=name or f"Entity {uen}",
                        entity_type="UNKNOWN",
                        entity_status="PRESUMED_ACTIVE",
                        gst_registered=is_vendor,
                        last_updated=self.cache.clock().isoformat(),
                    )

                entity = self.store.find_known_entity(uen)
                if entity:
                    logger.warning("UEN resolved from known entities", uen=uen)
                    return EntityVerificationResult(
                        is_valid=True,
                        exists=True,
                        entity_name=entity.get("name"),
                        entity_type=entity.get("type"),
                        entity_status=entity.get("status"),
                        gst_registered=entity.get("gst_registered"),
                        registration_date=entity.get("registration_date"),
                        industry=entity.get("industry"),
                        last_updated=entity.get("updated_at"),
                    )
            except Exception:
                logger.exception("Record store lookup failed", uen=uen)

        return EntityVerificationResult(
            is_valid=is_valid_format(uen),
            exists=False,
            error="Verification service unavailable",
        )

    async def verify_batch(self, identifiers: list[str]) -> dict[str, EntityVerificationResult]:
        results: dict[str, EntityVerificationResult] = {}
        size = self.chunk_size

        for start in range(0, len(identifiers), size):
            chunk = identifiers[start:start + size]
            chunk_results = await asyncio.gather(*(self.verify(uen) for uen in chunk))
            results.update(zip(chunk, chunk_results))

            if start + size < len(identifiers):
                await self.sleep(self.chunk_delay_ms / 1000)

        logger.info("Batch UEN verification complete", requested=len(identifiers), unique=len(results))
        return results
