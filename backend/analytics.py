"""
Dashboard aggregation over an in-memory ticket list.

Everything here is a pure function of the tickets and the grouping
configuration; the clock is never read, so identical input gives identical
output.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from functools import cached_property
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from schemas import TicketStatus, ViewMode
from settings import HISTOGRAM_BUCKET_MINUTES
from timeutil import is_valid_timestamp


@dataclass(frozen=True)
class SourcePolicy:
    counts_when_available: bool = True


DEFAULT_POLICY = SourcePolicy()

# Sources whose tickets are placeholders: they only count once used.
SOURCE_POLICIES: Dict[str, SourcePolicy] = {
    "manual_locator": SourcePolicy(counts_when_available=False),
}


@dataclass
class Summary:
    total: int
    scanned: int
    remaining: int
    percentage: float


@dataclass
class SectorRow:
    key: str
    display_name: str
    total: int
    scanned: int
    remaining: int
    percentage: float
    is_group: bool = False
    sub_sectors: List[str] = field(default_factory=list)


@dataclass
class TimeBucket:
    time: str
    counts: Dict[str, int]
    total: int


@dataclass
class Peak:
    time: str
    count: int


@dataclass
class AnalyticsReport:
    summary: Summary
    table: List[SectorRow]
    histogram: "TimeHistogram"
    entries_by_sector: Dict[str, int]


def normalize(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def _field(ticket: Any, name: str) -> Any:
    if isinstance(ticket, dict):
        return ticket.get(name)
    return getattr(ticket, name, None)


def is_used(ticket: Any) -> bool:
    return _field(ticket, "status") == TicketStatus.USED.value


def counts_toward_total(ticket: Any) -> bool:
    status = _field(ticket, "status")
    if status == TicketStatus.STANDBY.value:
        return False
    if status == TicketStatus.USED.value:
        return True
    return SOURCE_POLICIES.get(_field(ticket, "source") or "", DEFAULT_POLICY).counts_when_available


def percentage_of(scanned: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(scanned / total * 100, 1)


def tally(tickets: Iterable[Any]) -> Tuple[int, int]:
    total = scanned = 0
    for ticket in tickets:
        if not counts_toward_total(ticket):
            continue
        total += 1
        if is_used(ticket):
            scanned += 1
    return total, scanned


def filter_by_sector(tickets: Iterable[Any], sector_filter: Optional[Iterable[str]]) -> List[Any]:
    if sector_filter is None:
        return [t for t in tickets if _field(t, "sector")]
    allowed = {normalize(name) for name in sector_filter}
    return [t for t in tickets if _field(t, "sector") and normalize(_field(t, "sector")) in allowed]


def summarize(tickets: Iterable[Any], sector_filter: Optional[Iterable[str]] = None) -> Summary:
    total, scanned = tally(filter_by_sector(tickets, sector_filter))
    return Summary(total=total, scanned=scanned, remaining=max(0, total - scanned), percentage=percentage_of(scanned, total))


def group_membership(groups: Sequence[Any]) -> Dict[str, Any]:
    """Map normalized sector name to its group; the first group claiming a sector wins."""
    membership: Dict[str, Any] = {}
    for group in groups:
        for sector in _field(group, "included_sectors") or []:
            membership.setdefault(normalize(sector), group)
    return membership


def _row(key: str, display_name: str, tickets: Iterable[Any], is_group: bool = False, sub_sectors=None) -> SectorRow:
    total, scanned = tally(tickets)
    return SectorRow(
        key=key,
        display_name=display_name,
        total=total,
        scanned=scanned,
        remaining=max(0, total - scanned),
        percentage=percentage_of(scanned, total),
        is_group=is_group,
        sub_sectors=list(sub_sectors or []),
    )


def known_sectors(tickets: Iterable[Any], sector_names: Sequence[str] = ()) -> List[str]:
    """Configured sector names plus any sector seen on a ticket, first spelling wins."""
    seen: Dict[str, str] = {}
    for name in list(sector_names) + [_field(t, "sector") for t in tickets]:
        if name and name.strip() and normalize(name) not in seen:
            seen[normalize(name)] = name.strip()
    return list(seen.values())


def sector_table(
    tickets: Sequence[Any],
    mode: ViewMode = ViewMode.RAW,
    groups: Sequence[Any] = (),
    sector_filter: Optional[Iterable[str]] = None,
    sector_names: Sequence[str] = (),
) -> List[SectorRow]:
    filtered = filter_by_sector(tickets, sector_filter)
    by_sector: Dict[str, List[Any]] = {}
    for ticket in filtered:
        by_sector.setdefault(normalize(_field(ticket, "sector")), []).append(ticket)

    allowed = None if sector_filter is None else {normalize(name) for name in sector_filter}
    sectors = [s for s in known_sectors(tickets, sector_names) if allowed is None or normalize(s) in allowed]

    rows: List[SectorRow] = []
    claimed = set()
    if ViewMode(mode) == ViewMode.GROUPED:
        membership = group_membership(groups)
        for group in groups:
            members = [s for s in sectors if membership.get(normalize(s)) is group]
            if not members:
                continue
            claimed.update(normalize(s) for s in members)
            group_tickets = [t for s in members for t in by_sector.get(normalize(s), [])]
            rows.append(_row(f"group_{_field(group, 'id')}", _field(group, "name"), group_tickets, True, members))

    for sector in sectors:
        if normalize(sector) in claimed:
            continue
        rows.append(_row(f"sector_{sector}", sector, by_sector.get(normalize(sector), [])))

    rows.sort(key=lambda row: (not row.is_group, row.display_name.casefold(), row.display_name))
    return rows


def bucket_key(used_at_ms: int, bucket_minutes: int, tz: tzinfo) -> str:
    local = datetime.fromtimestamp(used_at_ms / 1000, tz=tz)
    minutes = (local.hour * 60 + local.minute) // bucket_minutes * bucket_minutes
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


class TimeHistogram:
    """Entry counts per time-of-day bucket.

    Iterating yields TimeBucket objects in ascending key order; the sequence
    can be iterated any number of times. Buckets are computed on first use.
    """

    def __init__(
        self,
        tickets: Sequence[Any],
        bucket_minutes: int = HISTOGRAM_BUCKET_MINUTES,
        tz: tzinfo = timezone.utc,
        label_for=None,
    ):
        if bucket_minutes <= 0 or bucket_minutes > 24 * 60:
            raise ValueError("bucket_minutes must be between 1 and 1440")
        self._tickets = tickets
        self.bucket_minutes = bucket_minutes
        self.tz = tz
        self._label_for = label_for or (lambda ticket: _field(ticket, "sector"))

    @cached_property
    def _entries(self) -> List[Any]:
        return [t for t in self._tickets if is_used(t) and is_valid_timestamp(_field(t, "used_at"))]

    @cached_property
    def _buckets(self) -> Dict[str, Counter]:
        buckets: Dict[str, Counter] = {}
        for ticket in self._entries:
            key = bucket_key(_field(ticket, "used_at"), self.bucket_minutes, self.tz)
            buckets.setdefault(key, Counter())[self._label_for(ticket)] += 1
        return buckets

    def __iter__(self) -> Iterator[TimeBucket]:
        for key in sorted(self._buckets):
            counts = self._buckets[key]
            yield TimeBucket(time=key, counts=dict(sorted(counts.items())), total=sum(counts.values()))

    def __len__(self) -> int:
        return len(self._buckets)

    @property
    def peak(self) -> Peak:
        peak = Peak(time="-", count=0)
        for bucket in self:
            if bucket.total > peak.count:
                peak = Peak(time=bucket.time, count=bucket.total)
        return peak

    @property
    def first_access(self) -> Optional[int]:
        return min((_field(t, "used_at") for t in self._entries), default=None)

    @property
    def last_access(self) -> Optional[int]:
        return max((_field(t, "used_at") for t in self._entries), default=None)


def entries_by_sector(tickets: Iterable[Any], sector_names: Sequence[str] = ()) -> Dict[str, int]:
    used = [t for t in tickets if is_used(t)]
    counts = Counter(normalize(_field(t, "sector")) for t in used)
    return {name: counts[normalize(name)] for name in known_sectors(used, sector_names) if counts[normalize(name)] > 0}


def aggregate(
    tickets: Sequence[Any],
    mode: ViewMode = ViewMode.RAW,
    groups: Sequence[Any] = (),
    sector_filter: Optional[Iterable[str]] = None,
    *,
    sector_names: Sequence[str] = (),
    bucket_minutes: int = HISTOGRAM_BUCKET_MINUTES,
    tz: tzinfo = timezone.utc,
) -> AnalyticsReport:
    mode = ViewMode(mode)
    if sector_filter is not None:
        sector_filter = list(sector_filter)
    filtered = filter_by_sector(tickets, sector_filter)

    label_for = None
    if mode == ViewMode.GROUPED:
        membership = group_membership(groups)

        def label_for(ticket):
            group = membership.get(normalize(_field(ticket, "sector")))
            return _field(group, "name") if group is not None else _field(ticket, "sector")

    return AnalyticsReport(
        summary=summarize(filtered),
        table=sector_table(tickets, mode, groups, sector_filter, sector_names),
        histogram=TimeHistogram(filtered, bucket_minutes, tz, label_for),
        entries_by_sector=entries_by_sector(filtered, sector_names),
    )
