"""marina_sync.status

Maps free-text service status cells to the fixed lifecycle enum.

Lookup order: canonical token in STATUS_SYNONYMS, then the ordered substring
checks in _SUBSTRING_RULES, then the SCHEDULED default with used_fallback set.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from marina_sync.normalize import fold_locale_letters

# ---------------------------------------------------------------------------
# Lifecycle states
# ---------------------------------------------------------------------------

SCHEDULED = "SCHEDULED"
IN_PROGRESS = "IN_PROGRESS"
AWAITING_PARTS = "AWAITING_PARTS"
AWAITING_APPROVAL = "AWAITING_APPROVAL"
AWAITING_REPORT = "AWAITING_REPORT"
INSPECTION = "INSPECTION"
COMPLETED = "COMPLETED"
CANCELLED = "CANCELLED"
POSTPONED = "POSTPONED"

VALID_STATUSES = (
    SCHEDULED,
    IN_PROGRESS,
    AWAITING_PARTS,
    AWAITING_APPROVAL,
    AWAITING_REPORT,
    INSPECTION,
    COMPLETED,
    CANCELLED,
    POSTPONED,
)

DEFAULT_STATUS = SCHEDULED

# Closed-out states a stale sheet row must never overwrite or recreate.
INGESTION_EXEMPT_STATUSES = frozenset({COMPLETED, INSPECTION})

STATUS_SYNONYMS = {
    # Turkish sheet vocabulary
    "RANDEVU_VERILDI": SCHEDULED,
    "RANDEVU": SCHEDULED,
    "PLANLANDI": SCHEDULED,
    "PLANLANDI_RANDEVU": SCHEDULED,
    "DEVAM": IN_PROGRESS,
    "DEVAM_EDIYOR": IN_PROGRESS,
    "PARCA": AWAITING_PARTS,
    "PARCA_BEKLIYOR": AWAITING_PARTS,
    "ONAY_BEKLIYOR": AWAITING_APPROVAL,
    "MUSTERI_ONAY_BEKLIYOR": AWAITING_APPROVAL,
    "RAPOR": AWAITING_REPORT,
    "RAPOR_BEKLIYOR": AWAITING_REPORT,
    "KESIF": INSPECTION,
    "KESIF_KONTROL": INSPECTION,
    "TAMAM": COMPLETED,
    "TAMAMLANDI": COMPLETED,
    "BITTI": COMPLETED,
    "IPTAL": CANCELLED,
    "ERTELENDI": POSTPONED,
    # English
    "SCHEDULED": SCHEDULED,
    "IN_PROGRESS": IN_PROGRESS,
    "AWAITING_PARTS": AWAITING_PARTS,
    "AWAITING_APPROVAL": AWAITING_APPROVAL,
    "AWAITING_REPORT": AWAITING_REPORT,
    "INSPECTION": INSPECTION,
    "COMPLETED": COMPLETED,
    "DONE": COMPLETED,
    "CANCELLED": CANCELLED,
    "CANCELED": CANCELLED,
    "POSTPONED": POSTPONED,
}

# Cancellation and postponement are checked before anything that could
# match a longer phrase such as "IPTAL_DEVAM_ETMEYECEK".
_SUBSTRING_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("IPTAL", "CANCEL"), CANCELLED),
    (("ERTEL", "POSTPON"), POSTPONED),
    (("BITTI", "TAMAM"), COMPLETED),
    (("DEVAM", "PROGRESS"), IN_PROGRESS),
    (("PARCA", "PARTS"), AWAITING_PARTS),
    (("ONAY", "APPROV"), AWAITING_APPROVAL),
    (("RAPOR", "REPORT"), AWAITING_REPORT),
    (("KESIF", "KONTROL", "INSPECT"), INSPECTION),
    (("RANDEVU", "PLAN", "SCHEDUL"), SCHEDULED),
)


@dataclass(frozen=True)
class StatusMapping:
    status: str
    token: str
    used_fallback: bool


def canonical_status_token(value: Any) -> str:
    """'Müşteri onay bekliyor ' → 'MUSTERI_ONAY_BEKLIYOR'."""
    if value is None:
        return ""
    v = fold_locale_letters(str(value)).upper()
    v = re.sub(r"[^A-Z0-9]+", "_", v)
    return v.strip("_")


def map_status(value: Any) -> StatusMapping:
    token = canonical_status_token(value)
    if not token:
        return StatusMapping(DEFAULT_STATUS, token, True)

    direct = STATUS_SYNONYMS.get(token)
    if direct is not None:
        return StatusMapping(direct, token, False)

    for needles, status in _SUBSTRING_RULES:
        if any(n in token for n in needles):
            return StatusMapping(status, token, False)

    return StatusMapping(DEFAULT_STATUS, token, True)


def is_ingestion_exempt(status: str | None) -> bool:
    return status in INGESTION_EXEMPT_STATUSES
