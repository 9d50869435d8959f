"""marina_sync.sanitize

Row sanitizer for the service schedule sheet.

sanitize_service_row() turns one coerced sheet row into a canonical service
record plus a skip decision.  It never raises: malformed dates and statuses
become fallbacks recorded in `warnings`, and a row that must not be written
carries a skip_reason other than SKIP_NONE.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from marina_sync.dates import parse_smart_date
from marina_sync.normalize import (
    compact_phone,
    content_hash_id,
    normalize_location_text,
    normalize_space,
    slug_name,
    trim,
)
from marina_sync.status import is_ingestion_exempt, map_status

SERVICE_ID_PREFIX = "sheet-svc-"
VESSEL_ID_PREFIX = "sheet-vessel-"
DEFAULT_JOB_TYPE = "PACKAGE"

SKIP_NONE = "NONE"
SKIP_MISSING_REQUIRED = "MISSING_REQUIRED"
SKIP_STATUS_FILTERED = "STATUS_FILTERED"


@dataclass
class SanitizedServiceRow:
    id: str
    service_date: date | None
    time_text: str
    vessel_name: str
    address: str
    location: str
    description: str
    contact_name: str
    phone: str | None
    status: str
    deleted: bool = False
    skip_reason: str = SKIP_NONE
    warnings: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.skip_reason != SKIP_NONE

    @property
    def vessel_id(self) -> str:
        return vessel_id_for(self.vessel_name)

    def to_payload(self) -> dict[str, Any]:
        """The `service` record this row should be stored as."""
        return {
            "id": self.id,
            "service_date": self.service_date,
            "time_text": self.time_text,
            "vessel_id": self.vessel_id,
            "vessel_name": self.vessel_name,
            "address": self.address,
            "location": self.location,
            "description": self.description,
            "contact_name": self.contact_name,
            "phone": self.phone,
            "status": self.status,
            "job_type": DEFAULT_JOB_TYPE,
            "deleted_at": None,
        }

    def vessel_payload(self) -> dict[str, Any]:
        """Lightweight parent vessel record derived from this row."""
        return {
            "id": self.vessel_id,
            "name": self.vessel_name,
            "address": self.address,
            "phone": self.phone,
            "active": True,
        }


def vessel_id_for(vessel_name: str) -> str:
    return VESSEL_ID_PREFIX + (slug_name(vessel_name) or "unnamed")


def generate_service_id(
    service_date: date | None,
    raw_date: str,
    vessel_name: str,
    address: str,
    location: str,
    description: str,
    contact_name: str,
    phone: str | None,
) -> str:
    """Deterministic id for a schedule row that carries no id of its own."""
    date_key = service_date.isoformat() if service_date is not None else raw_date
    return content_hash_id(
        SERVICE_ID_PREFIX,
        [date_key, vessel_name, address, location, description, contact_name, phone],
    )


def _text(value: Any) -> str:
    return normalize_space(None if value is None else str(value)) or ""


def sanitize_service_row(row: dict[str, Any]) -> SanitizedServiceRow:
    """Validate and normalize one schedule row; never raises."""
    warnings: list[str] = []

    parsed = parse_smart_date(row.get("service_date"))
    if parsed.used_fallback:
        warnings.append(f"date_fallback:{parsed.source}")

    mapping = map_status(row.get("status"))
    if mapping.used_fallback:
        warnings.append(f"status_fallback:{mapping.token or 'EMPTY'}")

    vessel_name = _text(row.get("vessel_name"))
    address = normalize_location_text(_text(row.get("address")))
    location = normalize_location_text(_text(row.get("location")))
    description = _text(row.get("description"))
    contact_name = _text(row.get("contact_name"))
    phone = compact_phone(None if row.get("phone") is None else str(row.get("phone")))

    supplied_id = trim(None if row.get("id") is None else str(row.get("id")))
    record_id = supplied_id or generate_service_id(
        parsed.date, parsed.raw, vessel_name, address, location,
        description, contact_name, phone,
    )

    if not vessel_name or not description:
        skip_reason = SKIP_MISSING_REQUIRED
    elif is_ingestion_exempt(mapping.status):
        skip_reason = SKIP_STATUS_FILTERED
    else:
        skip_reason = SKIP_NONE

    return SanitizedServiceRow(
        id=record_id,
        service_date=parsed.date,
        time_text=_text(row.get("time_text")),
        vessel_name=vessel_name,
        address=address,
        location=location,
        description=description,
        contact_name=contact_name,
        phone=phone,
        status=mapping.status,
        deleted=bool(row.get("deleted")),
        skip_reason=skip_reason,
        warnings=warnings,
    )
