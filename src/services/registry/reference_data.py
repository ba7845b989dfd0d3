"""
Deterministic reference registry used when no live ACRA integration is configured.

Known identifiers resolve to fixed records. Unknown but well-formed identifiers
whose first four characters form a plausible registration year are synthesised
deterministically, so repeated runs give the same answer.
"""

import zlib
from datetime import datetime, timezone
from typing import Callable
from .entity import EntityVerificationResult
from .formats import entity_type_for

REFERENCE_ENTITIES: dict[str, dict] = {
    "201234567A": {
        "entity_name": "ABC TRADING PTE. LTD.",
        "entity_type": "LOCAL_COMPANY",
        "entity_status": "LIVE",
        "gst_registered": True,
        "registration_date": "2020-01-15",
        "industry": "Wholesale Trade",
    },
    "199912345K": {
        "entity_name": "XYZ SERVICES PTE. LTD.",
        "entity_type": "LOCAL_COMPANY",
        "entity_status": "LIVE",
        "gst_registered": True,
        "registration_date": "1999-12-01",
        "industry": "Professional Services",
    },
    "53234567M": {
        "entity_name": "JOHN DOE ENTERPRISE",
        "entity_type": "SOLE_PROPRIETORSHIP",
        "entity_status": "LIVE",
        "gst_registered": False,
        "registration_date": "2015-06-20",
        "industry": "Retail Trade",
    },
    "T20LL1234A": {
        "entity_name": "INNOVATIVE TECH LLP",
        "entity_type": "LLP",
        "entity_status": "LIVE",
        "gst_registered": True,
        "registration_date": "2020-03-10",
        "industry": "Information Technology",
    },
    "198801234W": {
        "entity_name": "OLD COMPANY PTE. LTD.",
        "entity_type": "LOCAL_COMPANY",
        "entity_status": "STRUCK_OFF",
        "gst_registered": False,
        "registration_date": "1988-01-01",
        "industry": "Manufacturing",
    },
}


class ReferenceRegistry:
    def __init__(self, entities: dict[str, dict] | None = None, clock: Callable[[], datetime] | None = None):
        self.entities = REFERENCE_ENTITIES if entities is None else entities
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def lookup(self, uen: str) -> EntityVerificationResult:
        now = self.clock()
        data = self.entities.get(uen)
        if data:
            return EntityVerificationResult(is_valid=True, exists=True, last_updated=now.isoformat(), **data)

        year = uen[:4]
        if year.isdigit() and 1900 <= int(year) <= now.year:
            return EntityVerificationResult(
                is_valid=True,
                exists=True,
                entity_name=f"COMPANY {uen}",
                entity_type=entity_type_for(uen),
                entity_status="LIVE",
                # ~70% registered, stable per identifier
                gst_registered=zlib.crc32(uen.encode()) % 10 < 7,
                registration_date=f"{year}-01-01",
                industry="General Business",
                last_updated=now.isoformat(),
            )

        return EntityVerificationResult(is_valid=True, exists=False, error="UEN not found")
