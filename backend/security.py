from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Set

from schemas import ScanStatus

UNKNOWN = "Unknown"

OPERATOR_MIN_ATTEMPTS = 5
OPERATOR_MAX_ERROR_RATE = 15.0
DEVICE_MIN_ATTEMPTS = 10

THREAT_HIGH = 50
THREAT_MEDIUM = 20


@dataclass
class DuplicateTicket:
    ticket_id: str
    count: int
    operators: List[str]
    devices: List[str]


@dataclass
class OperatorRisk:
    name: str
    total: int
    invalid: int
    used: int
    error_rate: float


@dataclass
class DeviceLoad:
    device_id: str
    total: int
    errors: int
    error_rate: float


@dataclass
class SecurityReport:
    duplicate_tickets: List[DuplicateTicket]
    suspicious_operators: List[OperatorRisk]
    hot_devices: List[DeviceLoad]

    @property
    def threat_level(self) -> str:
        return threat_level(self)


@dataclass
class OperatorActivity:
    name: str
    total: int = 0
    valid: int = 0
    invalid: int = 0
    used: int = 0
    wrong_sector: int = 0
    error: int = 0
    alert: int = 0
    last_seen: int = 0
    sectors: Dict[str, int] = field(default_factory=dict)


def _field(entry: Any, name: str) -> Any:
    if isinstance(entry, dict):
        return entry.get(name)
    return getattr(entry, name, None)


def _status(entry: Any) -> str:
    status = _field(entry, "status")
    return status.value if isinstance(status, ScanStatus) else str(status)


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def analyze(log: Iterable[Any]) -> SecurityReport:
    """Flag repeated tickets, error-prone operators and noisy devices.

    Recomputed from the full log on every call; nothing is kept between calls.
    """
    used_counts: Dict[str, int] = {}
    used_operators: Dict[str, Set[str]] = {}
    used_devices: Dict[str, Set[str]] = {}
    operators: Dict[str, List[int]] = {}  # name -> [total, invalid, used]
    devices: Dict[str, List[int]] = {}  # id -> [total, errors]

    for entry in log:
        status = _status(entry)
        ticket_id = _field(entry, "ticket_id")
        operator = _field(entry, "operator") or UNKNOWN
        device = _field(entry, "device_id") or UNKNOWN

        if status == ScanStatus.USED.value:
            used_counts[ticket_id] = used_counts.get(ticket_id, 0) + 1
            used_operators.setdefault(ticket_id, set()).add(operator)
            used_devices.setdefault(ticket_id, set()).add(device)

        op = operators.setdefault(operator, [0, 0, 0])
        op[0] += 1
        if status == ScanStatus.INVALID.value:
            op[1] += 1
        elif status == ScanStatus.USED.value:
            op[2] += 1

        dev = devices.setdefault(device, [0, 0])
        dev[0] += 1
        if status != ScanStatus.VALID.value:
            dev[1] += 1

    duplicates = [
        DuplicateTicket(
            ticket_id=ticket_id,
            count=count,
            operators=sorted(used_operators[ticket_id]),
            devices=sorted(used_devices[ticket_id]),
        )
        for ticket_id, count in used_counts.items()
        if count > 1
    ]
    duplicates.sort(key=lambda d: (-d.count, d.ticket_id))

    suspicious = []
    for name, (total, invalid, used) in operators.items():
        rate = _rate(invalid + used, total)
        if total > OPERATOR_MIN_ATTEMPTS and rate > OPERATOR_MAX_ERROR_RATE:
            suspicious.append(OperatorRisk(name=name, total=total, invalid=invalid, used=used, error_rate=rate))
    suspicious.sort(key=lambda o: (-o.error_rate, o.name))

    hot = [
        DeviceLoad(device_id=device_id, total=total, errors=errors, error_rate=_rate(errors, total))
        for device_id, (total, errors) in devices.items()
        if total > DEVICE_MIN_ATTEMPTS
    ]
    hot.sort(key=lambda d: (-d.error_rate, d.device_id))

    return SecurityReport(duplicate_tickets=duplicates, suspicious_operators=suspicious, hot_devices=hot)


def threat_level(report: SecurityReport) -> str:
    score = len(report.duplicate_tickets) * 5 + len(report.suspicious_operators) * 10
    if score > THREAT_HIGH:
        return "HIGH"
    if score > THREAT_MEDIUM:
        return "MEDIUM"
    return "LOW"


_ACTIVITY_FIELDS = {
    ScanStatus.VALID.value: "valid",
    ScanStatus.INVALID.value: "invalid",
    ScanStatus.USED.value: "used",
    ScanStatus.WRONG_SECTOR.value: "wrong_sector",
    ScanStatus.ERROR.value: "error",
    ScanStatus.ALERT_REQUIRED.value: "alert",
}


def operator_activity(log: Iterable[Any]) -> List[OperatorActivity]:
    activity: Dict[str, OperatorActivity] = {}
    for entry in log:
        name = _field(entry, "operator") or UNKNOWN
        stats = activity.setdefault(name, OperatorActivity(name=name))
        stats.total += 1
        counter = _ACTIVITY_FIELDS.get(_status(entry))
        if counter:
            setattr(stats, counter, getattr(stats, counter) + 1)
        stats.last_seen = max(stats.last_seen, _field(entry, "timestamp") or 0)
        sector = _field(entry, "sector") or UNKNOWN
        stats.sectors[sector] = stats.sectors.get(sector, 0) + 1
    return sorted(activity.values(), key=lambda a: (-a.valid, a.name))
