"""
Merge externally sourced ticket records into the tickets an event already has.

Vendor payloads name the same thing in many ways, so every logical field is
resolved through an ordered table of candidate key paths; the first non-empty
scalar wins. New vendor shapes only need a new row in these tables.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from schemas import ImportSourceType, TicketStatus
from timeutil import now_ms as _now_ms, to_epoch_ms

DEFAULT_SECTOR = "Geral"
DEFAULT_OWNER = "Importado"

FieldPaths = Tuple[Tuple[str, ...], ...]

CODE_FIELDS: FieldPaths = (
    ("access_code",),
    ("code",),
    ("codigo",),
    ("qr_code",),
    ("barcode",),
    ("id",),
)
SECTOR_FIELDS: FieldPaths = (
    ("sector_name",),
    ("category", "name"),
    ("category",),
    ("sector",),
    ("setor",),
    ("ticket_type", "name"),
)
NAME_FIELDS: FieldPaths = (
    ("name",),
    ("nome",),
    ("customer_name",),
    ("buyer_name",),
    ("customer", "name"),
)
EMAIL_FIELDS: FieldPaths = (("email",), ("customer", "email"))
PHONE_FIELDS: FieldPaths = (("phone",), ("telefone",), ("mobile",), ("customer", "phone"))
DOCUMENT_FIELDS: FieldPaths = (("document",), ("cpf",), ("customer", "document"))
USED_AT_FIELDS: FieldPaths = (("validated_at",), ("used_at",), ("checked_in_at",))

USED_STATUS_VALUES = {"used", "validated", "checked_in"}


@dataclass
class ReconcileStats:
    new: int = 0
    existing: int = 0
    updated: int = 0
    total_found: int = 0


@dataclass
class ReconcileResult:
    to_insert: List[Dict[str, Any]] = field(default_factory=list)
    to_update: List[Dict[str, Any]] = field(default_factory=list)
    stats: ReconcileStats = field(default_factory=ReconcileStats)
    sectors_affected: Dict[str, int] = field(default_factory=dict)
    discovered_sectors: Set[str] = field(default_factory=set)

    @property
    def has_changes(self) -> bool:
        return bool(self.to_insert or self.to_update)


def _is_scalar(value: Any) -> bool:
    return value is not None and not isinstance(value, (dict, list, tuple, set))


def first_non_empty(record: Mapping[str, Any], paths: FieldPaths) -> Optional[str]:
    for path in paths:
        value: Any = record
        for key in path:
            if not isinstance(value, Mapping):
                value = None
                break
            value = value.get(key)
        if _is_scalar(value) and not isinstance(value, bool):
            text = str(value).strip()
            if text:
                return text
    return None


def normalize_record(record: Mapping[str, Any], source_type: str = ImportSourceType.TICKETS.value) -> Optional[Dict[str, Any]]:
    """Flatten one vendor record. Returns None when no code can be resolved."""
    code = first_non_empty(record, CODE_FIELDS)
    if not code:
        return None

    raw_status = record.get("status")
    raw_used_at = first_non_empty(record, USED_AT_FIELDS)
    used = (
        source_type == ImportSourceType.CHECKINS.value
        or record.get("used") is True
        or (isinstance(raw_status, str) and raw_status.strip().lower() in USED_STATUS_VALUES)
        or bool(raw_used_at)
    )

    details = {"owner_name": first_non_empty(record, NAME_FIELDS) or DEFAULT_OWNER}
    for key, paths in (("email", EMAIL_FIELDS), ("phone", PHONE_FIELDS), ("document", DOCUMENT_FIELDS)):
        value = first_non_empty(record, paths)
        if value:
            details[key] = value

    return {
        "code": code,
        "sector": first_non_empty(record, SECTOR_FIELDS) or DEFAULT_SECTOR,
        "used": used,
        "used_at": to_epoch_ms(raw_used_at),
        "details": details,
    }


def merge_details(current: Optional[Mapping[str, Any]], incoming: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Append-only merge: keys already set on the ticket are never overwritten."""
    merged = dict(current or {})
    for key, value in (incoming or {}).items():
        if merged.get(key) in (None, "") and value not in (None, ""):
            merged[key] = value
    return merged


def merge_sector_names(configured: Iterable[str], discovered: Iterable[str]) -> List[str]:
    names = {name.strip() for name in configured if name and name.strip()}
    names.update(name.strip() for name in discovered if name and name.strip())
    return sorted(names)


def _ticket_field(ticket: Any, name: str) -> Any:
    if isinstance(ticket, Mapping):
        return ticket.get(name)
    return getattr(ticket, name, None)


def reconcile(
    existing_tickets: Iterable[Any],
    incoming_records: Sequence[Mapping[str, Any]],
    *,
    source_type: str = ImportSourceType.TICKETS.value,
    source_tag: str = "api_import",
    seen: Optional[Set[str]] = None,
    now_ms: Optional[int] = None,
) -> ReconcileResult:
    """Classify incoming records against the existing tickets.

    ``seen`` holds codes already handled in the current pass; it is updated in
    place so that several sources processed in a row share it. Records are
    processed in stream order and the first occurrence of a code wins for
    sector and source; a later occurrence that reports a check-in still marks
    a ticket queued for insertion in this pass as USED.
    """
    timestamp = now_ms if now_ms is not None else _now_ms()
    existing = {str(_ticket_field(t, "id")).strip(): t for t in existing_tickets}
    if seen is None:
        seen = set(existing)
    else:
        seen.update(existing)
    upgraded: Set[str] = set()
    pending: Dict[str, Dict[str, Any]] = {}

    result = ReconcileResult()
    for raw in incoming_records:
        if not isinstance(raw, Mapping):
            continue
        record = normalize_record(raw, source_type)
        if record is None:
            continue
        result.stats.total_found += 1
        code = record["code"]
        sector = record["sector"]

        if code not in seen:
            seen.add(code)
            result.discovered_sectors.add(sector)
            result.sectors_affected[sector] = result.sectors_affected.get(sector, 0) + 1
            used = record["used"]
            pending[code] = {
                "id": code,
                "sector": sector,
                "status": TicketStatus.USED.value if used else TicketStatus.AVAILABLE.value,
                "used_at": (record["used_at"] or timestamp) if used else None,
                "source": source_tag,
                "details": record["details"],
            }
            result.to_insert.append(pending[code])
            result.stats.new += 1
            continue

        result.stats.existing += 1
        if not record["used"] or code in upgraded:
            continue
        queued = pending.get(code)
        if queued is not None:
            if queued["status"] != TicketStatus.USED.value:
                queued["status"] = TicketStatus.USED.value
                queued["used_at"] = record["used_at"] or timestamp
                queued["details"] = merge_details(queued["details"], record["details"])
            continue
        ticket = existing.get(code)
        if ticket is None:
            continue
        if _ticket_field(ticket, "status") == TicketStatus.USED.value:
            continue
        upgraded.add(code)
        ticket_sector = _ticket_field(ticket, "sector") or sector
        result.sectors_affected[ticket_sector] = result.sectors_affected.get(ticket_sector, 0) + 1
        result.to_update.append(
            {
                "id": code,
                "sector": ticket_sector,
                "status": TicketStatus.USED.value,
                "used_at": record["used_at"] or timestamp,
                "source": _ticket_field(ticket, "source"),
                "details": merge_details(_ticket_field(ticket, "details"), record["details"]),
            }
        )
        result.stats.updated += 1

    return result
