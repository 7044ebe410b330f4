from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional

from settings import DEFAULT_IMPORT_INTERVAL_MINUTES


class TicketStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    USED = "USED"
    STANDBY = "STANDBY"


class ScanStatus(str, Enum):
    VALID = "VALID"
    USED = "USED"
    INVALID = "INVALID"
    ERROR = "ERROR"
    WRONG_SECTOR = "WRONG_SECTOR"
    ALERT_REQUIRED = "ALERT_REQUIRED"


class ViewMode(str, Enum):
    RAW = "raw"
    GROUPED = "grouped"


class ImportSourceType(str, Enum):
    TICKETS = "tickets"
    PARTICIPANTS = "participants"
    BUYERS = "buyers"
    CHECKINS = "checkins"
    GOOGLE_SHEETS = "google_sheets"


class EventCreate(BaseModel):
    name: str
    sector_names: List[str] = []


class EventUpdate(BaseModel):
    name: Optional[str] = None
    is_hidden: Optional[bool] = None


class Event(BaseModel):
    id: str
    name: str
    is_hidden: bool = False
    sector_names: List[str] = []
    hidden_sectors: List[str] = []

    model_config = ConfigDict(from_attributes=True)


class SectorSettings(BaseModel):
    sector_names: List[str]
    hidden_sectors: List[str] = []


class SectorGroupIn(BaseModel):
    id: Optional[str] = None
    name: str
    included_sectors: List[str] = []


class SectorGroup(SectorGroupIn):
    id: str
    position: int = 0

    model_config = ConfigDict(from_attributes=True)


class ImportSourceIn(BaseModel):
    id: Optional[str] = None
    name: str
    url: str
    token: Optional[str] = None
    type: ImportSourceType = ImportSourceType.TICKETS
    external_event_id: Optional[str] = None
    auto_import: bool = False


class ImportSource(ImportSourceIn):
    id: str
    last_import_time: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class Ticket(BaseModel):
    id: str
    event_id: str
    sector: str
    status: TicketStatus
    used_at: Optional[int] = None
    source: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(from_attributes=True)


class CodeBatchRequest(BaseModel):
    codes: List[str]
    sector: Optional[str] = None


class AlertBatchRequest(CodeBatchRequest):
    alert_message: str


class BatchResult(BaseModel):
    added: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0
    not_found: int = 0


class ScanRequest(BaseModel):
    code: str
    sector: Optional[str] = None
    device_id: Optional[str] = None
    operator: Optional[str] = None
    confirm_alert: bool = False


class ScanResponse(BaseModel):
    status: ScanStatus
    message: str
    ticket: Optional[Ticket] = None
    alert_message: Optional[str] = None


class ScanLogEntry(BaseModel):
    id: Optional[str] = None
    event_id: Optional[str] = None
    ticket_id: str
    status: ScanStatus
    timestamp: int
    device_id: Optional[str] = None
    operator: Optional[str] = None
    sector: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TicketLookupResponse(BaseModel):
    ticket: Ticket
    history: List[ScanLogEntry]


class Summary(BaseModel):
    total: int
    scanned: int
    remaining: int
    percentage: float

    model_config = ConfigDict(from_attributes=True)


class SectorRow(BaseModel):
    key: str
    display_name: str
    total: int
    scanned: int
    remaining: int
    percentage: float
    is_group: bool = False
    sub_sectors: List[str] = []

    model_config = ConfigDict(from_attributes=True)


class TimeBucket(BaseModel):
    time: str
    counts: Dict[str, int]
    total: int

    model_config = ConfigDict(from_attributes=True)


class Peak(BaseModel):
    time: str
    count: int

    model_config = ConfigDict(from_attributes=True)


class Histogram(BaseModel):
    buckets: List[TimeBucket]
    first_access: Optional[int] = None
    last_access: Optional[int] = None
    peak: Peak


class AnalyticsResponse(BaseModel):
    event_id: str
    mode: ViewMode
    summary: Summary
    table: List[SectorRow]
    histogram: Histogram
    entries_by_sector: Dict[str, int]


class DuplicateTicket(BaseModel):
    ticket_id: str
    count: int
    operators: List[str]
    devices: List[str]

    model_config = ConfigDict(from_attributes=True)


class OperatorRisk(BaseModel):
    name: str
    total: int
    invalid: int
    used: int
    error_rate: float

    model_config = ConfigDict(from_attributes=True)


class DeviceLoad(BaseModel):
    device_id: str
    total: int
    errors: int
    error_rate: float

    model_config = ConfigDict(from_attributes=True)


class SecurityResponse(BaseModel):
    event_id: str
    threat_level: str
    duplicate_tickets: List[DuplicateTicket]
    suspicious_operators: List[OperatorRisk]
    hot_devices: List[DeviceLoad]


class OperatorActivity(BaseModel):
    name: str
    total: int
    valid: int
    invalid: int
    used: int
    wrong_sector: int
    error: int
    alert: int
    last_seen: int
    sectors: Dict[str, int]

    model_config = ConfigDict(from_attributes=True)


class ImportLog(BaseModel):
    id: str
    event_id: str
    timestamp: int
    source_name: str
    new_count: int = 0
    existing_count: int = 0
    updated_count: int = 0
    sectors_affected: Dict[str, int] = {}
    status: str
    error_message: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ImportRunRequest(BaseModel):
    source_ids: Optional[List[str]] = None


class ImportRunResponse(BaseModel):
    event_id: str
    logs: List[ImportLog]


class AutoImportStart(BaseModel):
    interval_minutes: int = Field(default=DEFAULT_IMPORT_INTERVAL_MINUTES, ge=1, le=240)


class AutoImportStatus(BaseModel):
    event_id: str
    running: bool
    interval_minutes: Optional[int] = None


class AdminLoginRequest(BaseModel):
    username: str
    password: str


class ScannerLoginRequest(BaseModel):
    operator: str
    device_id: str
    event_id: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
