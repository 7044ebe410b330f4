from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from schemas import ScanLogEntry, ScanStatus, TicketStatus
from timeutil import now_ms as _now_ms

ALL_SECTORS = "All"


@dataclass
class ScanOutcome:
    status: ScanStatus
    message: str
    ticket: Any
    log_entry: ScanLogEntry
    alert_message: Optional[str] = None


def extract_code(decoded_text: str) -> str:
    """Turn the raw scanner payload into a ticket code.

    QR codes sometimes carry a full URL; the code is then the last path segment
    (when longer than 4 characters) or the ``code`` query parameter.
    """
    code = (decoded_text or "").strip()
    if not code.lower().startswith(("http://", "https://")):
        return code
    try:
        parsed = urlparse(code)
    except ValueError:
        return code
    last_segment = parsed.path.rstrip("/").split("/")[-1] if parsed.path else ""
    if len(last_segment) > 4:
        return last_segment
    query_code = parse_qs(parsed.query).get("code")
    if query_code and query_code[0].strip():
        return query_code[0].strip()
    return code


def alert_message_of(ticket: Any) -> Optional[str]:
    details = getattr(ticket, "details", None) or {}
    message = details.get("alert_message")
    if message and str(message).strip():
        return str(message).strip()
    return None


def validate(
    code: str,
    ticket: Any,
    target_sector: Optional[str] = None,
    *,
    confirm_alert: bool = False,
    device_id: Optional[str] = None,
    operator: Optional[str] = None,
    now_ms: Optional[int] = None,
) -> ScanOutcome:
    """Decide the outcome of one scan attempt.

    Rejections never touch the ticket. A VALID outcome marks the ticket USED in
    place. Every call yields exactly one log entry, which the caller persists.
    """
    timestamp = now_ms if now_ms is not None else _now_ms()
    alert_message = None

    if not code:
        status = ScanStatus.INVALID
        message = "Empty code"
    elif ticket is None:
        status = ScanStatus.INVALID
        message = f"Ticket not found: {code}"
    elif ticket.status == TicketStatus.USED.value:
        status = ScanStatus.USED
        message = "Ticket already used"
    elif target_sector and target_sector != ALL_SECTORS and ticket.sector != target_sector:
        status = ScanStatus.WRONG_SECTOR
        message = f"Wrong sector: ticket is for {ticket.sector}, gate is {target_sector}"
    else:
        alert_message = alert_message_of(ticket)
        if alert_message and not confirm_alert:
            status = ScanStatus.ALERT_REQUIRED
            message = "Operator confirmation required"
        else:
            status = ScanStatus.VALID
            message = f"Access granted to sector {ticket.sector}"
            ticket.status = TicketStatus.USED.value
            ticket.used_at = timestamp

    log_entry = ScanLogEntry(
        ticket_id=code,
        status=status,
        timestamp=timestamp,
        device_id=device_id,
        operator=operator,
        sector=ticket.sector if ticket is not None else None,
    )
    return ScanOutcome(status=status, message=message, ticket=ticket, log_entry=log_entry, alert_message=alert_message)
