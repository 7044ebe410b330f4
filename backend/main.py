from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo
import csv
import io
import logging
import secrets

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
import schemas
from analytics import aggregate
from app_state import AppState, load_state, save_state
from database import engine, get_db
from errors import BatchCommitError
from importer import ImportPoller, ImportRunner
from logging_config import setup_logging
from scan_validator import extract_code, validate
from security import analyze, operator_activity
from settings import (
    ADMIN_PASSWORD,
    ADMIN_TOKEN_HOURS,
    ADMIN_USERNAME,
    ALGORITHM,
    APP_STATE_FILE,
    AUTH_DISABLED,
    DISPLAY_TIMEZONE,
    HISTOGRAM_BUCKET_MINUTES,
    LOG_FILE,
    LOG_FORMAT,
    LOG_LEVEL,
    SCANNER_TOKEN_HOURS,
    SECRET_KEY,
)
from store import TicketStore

setup_logging(LOG_LEVEL, LOG_FORMAT, LOG_FILE)
logger = logging.getLogger("gateflow")

models.Base.metadata.create_all(bind=engine)

# ------------- WebSocket Manager -------------
class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, event_id: str, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.setdefault(event_id, []).append(websocket)

    def disconnect(self, event_id: str, websocket: WebSocket):
        connections = self.active_connections.get(event_id, [])
        if websocket in connections:
            connections.remove(websocket)

    async def broadcast(self, event_id: str, message: dict):
        for connection in list(self.active_connections.get(event_id, [])):
            try:
                await connection.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                self.disconnect(event_id, connection)

manager = ConnectionManager()
# -------------------------------------------

import_runner = ImportRunner()
import_poller = ImportPoller(import_runner)


def scan_update_message(event_id: str, ticket_id: str, sector: Optional[str], status: str) -> dict:
    return {
        "type": "scan_update",
        "event_id": event_id,
        "ticket_id": ticket_id,
        "sector": sector,
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await import_poller.stop_all()


app = FastAPI(title="GateFlow API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

admin_bearer = HTTPBearer(auto_error=False)
scanner_bearer = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta | None = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def get_admin_actor(credentials: HTTPAuthorizationCredentials | None = Depends(admin_bearer)) -> dict:
    if AUTH_DISABLED:
        return {"username": ADMIN_USERNAME, "role": "admin"}
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing admin token")
    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid admin token") from exc
    username: str | None = payload.get("sub")
    if not username or payload.get("role") != "admin":
        raise HTTPException(status_code=401, detail="Invalid admin token")
    return {"username": username, "role": "admin"}


def get_scanner_user(credentials: HTTPAuthorizationCredentials | None = Depends(scanner_bearer)) -> dict:
    if credentials is None:
        if AUTH_DISABLED:
            return {"operator": None, "device_id": None, "event_id": None, "role": "scanner"}
        raise HTTPException(status_code=401, detail="Missing scanner token")
    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid scanner token") from exc
    operator: str | None = payload.get("sub")
    role: str | None = payload.get("role")
    if not operator or role not in {"scanner", "admin"}:
        raise HTTPException(status_code=401, detail="Invalid scanner token")
    return {
        "operator": operator if role == "scanner" else None,
        "device_id": payload.get("device_id"),
        "event_id": payload.get("event_id"),
        "role": role,
    }


def get_event_or_404(event_id: str, db: Session) -> models.Event:
    event = db.get(models.Event, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


def display_tz():
    if DISPLAY_TIMEZONE.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(DISPLAY_TIMEZONE)


def clean_codes(codes: List[str]) -> List[str]:
    unique: Dict[str, None] = {}
    for code in codes:
        code = (code or "").strip()
        if code:
            unique.setdefault(code, None)
    return list(unique)


def resolve_sector(event: models.Event, sector: Optional[str]) -> str:
    sector_names = list(event.sector_names or [])
    if not sector_names:
        raise HTTPException(status_code=400, detail="Configure at least one sector first")
    if sector is None:
        return sector_names[0]
    if sector not in sector_names:
        raise HTTPException(status_code=400, detail=f"Unknown sector: {sector}")
    return sector


def write_tickets(store: TicketStore, records: List[dict]) -> None:
    try:
        store.upsert(records)
    except BatchCommitError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.get("/")
def read_root():
    return {"message": "Welcome to GateFlow API"}


@app.post("/auth/admin-login", response_model=schemas.TokenResponse)
def admin_login(req: schemas.AdminLoginRequest):
    valid_user = secrets.compare_digest(req.username, ADMIN_USERNAME)
    valid_password = secrets.compare_digest(req.password, ADMIN_PASSWORD)
    if not (valid_user and valid_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_access_token({"sub": req.username, "role": "admin"}, timedelta(hours=ADMIN_TOKEN_HOURS))
    return {"access_token": token}


@app.post("/auth/scanner-login", response_model=schemas.TokenResponse)
def scanner_login(req: schemas.ScannerLoginRequest, db: Session = Depends(get_db)):
    if not req.operator.strip() or not req.device_id.strip():
        raise HTTPException(status_code=400, detail="Operator and device are required")
    if req.event_id:
        get_event_or_404(req.event_id, db)
    token = create_access_token(
        {"sub": req.operator.strip(), "role": "scanner", "device_id": req.device_id.strip(), "event_id": req.event_id},
        timedelta(hours=SCANNER_TOKEN_HOURS),
    )
    return {"access_token": token}


# ------------- Events -------------

@app.post("/events/", response_model=schemas.Event)
def create_event(req: schemas.EventCreate, db: Session = Depends(get_db), actor: dict = Depends(get_admin_actor)):
    if not req.name.strip():
        raise HTTPException(status_code=400, detail="Event name cannot be blank")
    event = models.Event(name=req.name.strip(), sector_names=clean_codes(req.sector_names), hidden_sectors=[])
    db.add(event)
    db.commit()
    db.refresh(event)
    logger.info("event %s created by %s", event.id, actor["username"], extra={"event_id": event.id})
    return event


@app.get("/events/", response_model=List[schemas.Event])
def list_events(include_hidden: bool = False, db: Session = Depends(get_db)):
    query = db.query(models.Event)
    if not include_hidden:
        query = query.filter(models.Event.is_hidden.is_(False))
    return query.order_by(models.Event.name).all()


@app.get("/events/{event_id}", response_model=schemas.Event)
def get_event(event_id: str, db: Session = Depends(get_db)):
    return get_event_or_404(event_id, db)


@app.patch("/events/{event_id}", response_model=schemas.Event)
def update_event(
    event_id: str,
    req: schemas.EventUpdate,
    db: Session = Depends(get_db),
    actor: dict = Depends(get_admin_actor),
):
    event = get_event_or_404(event_id, db)
    if req.name is not None:
        if not req.name.strip():
            raise HTTPException(status_code=400, detail="Event name cannot be blank")
        event.name = req.name.strip()
    if req.is_hidden is not None:
        event.is_hidden = req.is_hidden
    db.commit()
    db.refresh(event)
    return event


def purge_event(db: Session, event: models.Event) -> None:
    for model in (models.Ticket, models.ScanLog, models.SectorGroup, models.ImportSource, models.ImportLog):
        db.query(model).filter(model.event_id == event.id).delete(synchronize_session=False)
    db.delete(event)
    db.commit()


@app.delete("/events/{event_id}")
async def delete_event(event_id: str, db: Session = Depends(get_db), actor: dict = Depends(get_admin_actor)):
    event = await run_in_threadpool(get_event_or_404, event_id, db)
    await import_poller.stop(event_id)
    await run_in_threadpool(purge_event, db, event)
    logger.info("event %s deleted by %s", event_id, actor["username"], extra={"event_id": event_id})
    return {"status": "deleted", "event_id": event_id}


@app.put("/events/{event_id}/sectors", response_model=schemas.Event)
def update_sectors(
    event_id: str,
    req: schemas.SectorSettings,
    db: Session = Depends(get_db),
    actor: dict = Depends(get_admin_actor),
):
    event = get_event_or_404(event_id, db)
    if any(not name.strip() for name in req.sector_names):
        raise HTTPException(status_code=400, detail="Sector names cannot be blank")
    event.sector_names = clean_codes(req.sector_names)
    event.hidden_sectors = [name for name in clean_codes(req.hidden_sectors) if name in event.sector_names]
    db.commit()
    db.refresh(event)
    return event


@app.get("/events/{event_id}/groups", response_model=List[schemas.SectorGroup])
def list_groups(event_id: str, db: Session = Depends(get_db)):
    get_event_or_404(event_id, db)
    return (
        db.query(models.SectorGroup)
        .filter(models.SectorGroup.event_id == event_id)
        .order_by(models.SectorGroup.position)
        .all()
    )


@app.put("/events/{event_id}/groups", response_model=List[schemas.SectorGroup])
def replace_groups(
    event_id: str,
    groups: List[schemas.SectorGroupIn],
    db: Session = Depends(get_db),
    actor: dict = Depends(get_admin_actor),
):
    get_event_or_404(event_id, db)
    if any(not group.name.strip() for group in groups):
        raise HTTPException(status_code=400, detail="Group name cannot be blank")
    db.query(models.SectorGroup).filter(models.SectorGroup.event_id == event_id).delete(synchronize_session=False)
    created = []
    for position, group in enumerate(groups):
        row = models.SectorGroup(
            event_id=event_id,
            name=group.name.strip(),
            included_sectors=clean_codes(group.included_sectors),
            position=position,
        )
        if group.id:
            row.id = group.id
        db.add(row)
        created.append(row)
    db.commit()
    for row in created:
        db.refresh(row)
    return created


@app.get("/events/{event_id}/import-sources", response_model=List[schemas.ImportSource])
def list_import_sources(event_id: str, db: Session = Depends(get_db), actor: dict = Depends(get_admin_actor)):
    get_event_or_404(event_id, db)
    return (
        db.query(models.ImportSource)
        .filter(models.ImportSource.event_id == event_id)
        .order_by(models.ImportSource.position)
        .all()
    )


@app.put("/events/{event_id}/import-sources", response_model=List[schemas.ImportSource])
def replace_import_sources(
    event_id: str,
    sources: List[schemas.ImportSourceIn],
    db: Session = Depends(get_db),
    actor: dict = Depends(get_admin_actor),
):
    get_event_or_404(event_id, db)
    current = {
        source.id: source
        for source in db.query(models.ImportSource).filter(models.ImportSource.event_id == event_id).all()
    }
    kept = []
    for position, req in enumerate(sources):
        if not req.url.strip():
            raise HTTPException(status_code=400, detail=f"Source {req.name} has no URL")
        source = current.pop(req.id, None) if req.id else None
        if source is None:
            source = models.ImportSource(event_id=event_id)
            if req.id:
                source.id = req.id
            db.add(source)
        source.name = req.name.strip()
        source.url = req.url.strip()
        source.token = req.token
        source.type = req.type.value
        source.external_event_id = req.external_event_id
        source.auto_import = req.auto_import
        source.position = position
        kept.append(source)
    for stale in current.values():
        db.delete(stale)
    db.commit()
    for source in kept:
        db.refresh(source)
    return kept


# ------------- Tickets -------------

@app.get("/events/{event_id}/tickets", response_model=List[schemas.Ticket])
def list_tickets(
    event_id: str,
    status: Optional[schemas.TicketStatus] = None,
    sector: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: dict = Depends(get_admin_actor),
):
    get_event_or_404(event_id, db)
    query = db.query(models.Ticket).filter(models.Ticket.event_id == event_id)
    if status is not None:
        query = query.filter(models.Ticket.status == status.value)
    if sector:
        query = query.filter(models.Ticket.sector == sector)
    return query.order_by(models.Ticket.id).all()


@app.get("/events/{event_id}/tickets/{code}", response_model=schemas.TicketLookupResponse)
def lookup_ticket(event_id: str, code: str, db: Session = Depends(get_db), actor: dict = Depends(get_admin_actor)):
    get_event_or_404(event_id, db)
    ticket = TicketStore(db, event_id).get(code.strip())
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    history = (
        db.query(models.ScanLog)
        .filter(models.ScanLog.event_id == event_id, models.ScanLog.ticket_id == ticket.id)
        .order_by(models.ScanLog.timestamp.desc())
        .all()
    )
    return schemas.TicketLookupResponse(
        ticket=schemas.Ticket.model_validate(ticket),
        history=[schemas.ScanLogEntry.model_validate(entry) for entry in history],
    )


@app.post("/events/{event_id}/tickets/manual", response_model=schemas.BatchResult)
def add_tickets(
    event_id: str,
    req: schemas.CodeBatchRequest,
    db: Session = Depends(get_db),
    actor: dict = Depends(get_admin_actor),
):
    event = get_event_or_404(event_id, db)
    sector = resolve_sector(event, req.sector)
    store = TicketStore(db, event_id)
    existing = store.fetch_map()
    codes = clean_codes(req.codes)
    to_add = [code for code in codes if code not in existing]
    write_tickets(store, [
        {"id": code, "sector": sector, "status": schemas.TicketStatus.AVAILABLE.value, "source": "manual_direct"}
        for code in to_add
    ])
    return schemas.BatchResult(added=len(to_add), skipped=len(codes) - len(to_add))


@app.post("/events/{event_id}/tickets/locators", response_model=schemas.BatchResult)
def add_locators(
    event_id: str,
    req: schemas.CodeBatchRequest,
    db: Session = Depends(get_db),
    actor: dict = Depends(get_admin_actor),
):
    event = get_event_or_404(event_id, db)
    sector = resolve_sector(event, req.sector)
    store = TicketStore(db, event_id)
    existing = store.fetch_map()
    result = schemas.BatchResult()
    records = []
    for code in clean_codes(req.codes):
        ticket = existing.get(code)
        if ticket is not None and ticket.status == schemas.TicketStatus.USED.value:
            result.skipped += 1
            continue
        if ticket is None:
            records.append({"id": code, "sector": sector, "status": schemas.TicketStatus.AVAILABLE.value, "source": "manual_locator"})
            result.added += 1
        else:
            records.append({"id": code, "sector": sector, "source": "manual_locator"})
            result.updated += 1
    write_tickets(store, records)
    return result


@app.post("/events/{event_id}/tickets/alerts", response_model=schemas.BatchResult)
def add_alerts(
    event_id: str,
    req: schemas.AlertBatchRequest,
    db: Session = Depends(get_db),
    actor: dict = Depends(get_admin_actor),
):
    if not req.alert_message.strip():
        raise HTTPException(status_code=400, detail="Alert message cannot be blank")
    event = get_event_or_404(event_id, db)
    sector = resolve_sector(event, req.sector)
    store = TicketStore(db, event_id)
    existing = store.fetch_map()
    message = req.alert_message.strip()
    result = schemas.BatchResult()
    records = []
    for code in clean_codes(req.codes):
        ticket = existing.get(code)
        if ticket is None:
            records.append({
                "id": code,
                "sector": sector,
                "status": schemas.TicketStatus.AVAILABLE.value,
                "source": "alert_manual",
                "details": {"alert_message": message},
            })
            result.added += 1
        else:
            records.append({"id": code, "details": {**(ticket.details or {}), "alert_message": message}})
            result.updated += 1
    write_tickets(store, records)
    return result


@app.post("/events/{event_id}/tickets/remove", response_model=schemas.BatchResult)
def remove_tickets(
    event_id: str,
    req: schemas.CodeBatchRequest,
    db: Session = Depends(get_db),
    actor: dict = Depends(get_admin_actor),
):
    get_event_or_404(event_id, db)
    store = TicketStore(db, event_id)
    existing = store.fetch_map()
    codes = clean_codes(req.codes)
    to_delete = [code for code in codes if code in existing]
    try:
        deleted = store.delete(to_delete)
    except BatchCommitError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    logger.info("%d tickets removed from event %s by %s", deleted, event_id, actor["username"], extra={"event_id": event_id})
    return schemas.BatchResult(deleted=deleted, not_found=len(codes) - len(to_delete))


# ------------- Scanning -------------

@app.post("/events/{event_id}/scan", response_model=schemas.ScanResponse)
def scan_ticket(
    event_id: str,
    req: schemas.ScanRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    scanner: dict = Depends(get_scanner_user),
):
    get_event_or_404(event_id, db)
    if scanner.get("event_id") and scanner["event_id"] != event_id:
        raise HTTPException(status_code=403, detail="Scanner not authorized for this event")
    code = extract_code(req.code)
    ticket = TicketStore(db, event_id).get(code) if code else None
    outcome = validate(
        code,
        ticket,
        req.sector,
        confirm_alert=req.confirm_alert,
        device_id=req.device_id or scanner.get("device_id"),
        operator=req.operator or scanner.get("operator"),
    )
    entry = outcome.log_entry.model_dump(mode="json", exclude={"id", "event_id"})
    try:
        db.add(models.ScanLog(event_id=event_id, **entry))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "failed to record scan of %s for event %s", code, event_id,
            extra={"event_id": event_id, "ticket_id": code, "device_id": entry["device_id"]},
        )
        try:
            db.add(models.ScanLog(event_id=event_id, **{**entry, "status": schemas.ScanStatus.ERROR.value}))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("failed to record the error entry for scan of %s", code, extra={"event_id": event_id})
        return schemas.ScanResponse(status=schemas.ScanStatus.ERROR, message="Failed to update the database")

    logger.debug(
        "scan of %s: %s", code, outcome.status.value,
        extra={"event_id": event_id, "ticket_id": code, "device_id": entry["device_id"], "operator": entry["operator"]},
    )
    if outcome.status == schemas.ScanStatus.VALID:
        background_tasks.add_task(
            manager.broadcast, event_id, scan_update_message(event_id, code, ticket.sector, outcome.status.value)
        )
    return schemas.ScanResponse(
        status=outcome.status,
        message=outcome.message,
        ticket=schemas.Ticket.model_validate(ticket) if ticket is not None else None,
        alert_message=outcome.alert_message,
    )


@app.get("/events/{event_id}/scans", response_model=List[schemas.ScanLogEntry])
def list_scans(
    event_id: str,
    limit: int = Query(500, ge=1, le=20000),
    db: Session = Depends(get_db),
    actor: dict = Depends(get_admin_actor),
):
    get_event_or_404(event_id, db)
    return (
        db.query(models.ScanLog)
        .filter(models.ScanLog.event_id == event_id)
        .order_by(models.ScanLog.timestamp.desc())
        .limit(limit)
        .all()
    )


@app.get("/events/{event_id}/scans/export")
def export_scans(event_id: str, db: Session = Depends(get_db), actor: dict = Depends(get_admin_actor)):
    get_event_or_404(event_id, db)
    rows = (
        db.query(models.ScanLog)
        .filter(models.ScanLog.event_id == event_id)
        .order_by(models.ScanLog.timestamp.desc())
        .all()
    )
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["id", "ticket_id", "status", "timestamp", "sector", "device_id", "operator"])
    for row in rows:
        writer.writerow([row.id, row.ticket_id, row.status, row.timestamp, row.sector, row.device_id, row.operator])
    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=scans-{event_id}.csv"},
    )


# ------------- Analytics & security -------------

def build_analytics(
    event: models.Event,
    db: Session,
    mode: schemas.ViewMode,
    sector_filter: Optional[List[str]],
    bucket_minutes: int,
) -> schemas.AnalyticsResponse:
    tickets = TicketStore(db, event.id).fetch_all()
    groups = (
        db.query(models.SectorGroup)
        .filter(models.SectorGroup.event_id == event.id)
        .order_by(models.SectorGroup.position)
        .all()
    )
    report = aggregate(
        tickets,
        mode,
        groups,
        sector_filter,
        sector_names=event.sector_names or [],
        bucket_minutes=bucket_minutes,
        tz=display_tz(),
    )
    histogram = report.histogram
    return schemas.AnalyticsResponse(
        event_id=event.id,
        mode=mode,
        summary=schemas.Summary.model_validate(report.summary),
        table=[schemas.SectorRow.model_validate(row) for row in report.table],
        histogram=schemas.Histogram(
            buckets=[schemas.TimeBucket.model_validate(bucket) for bucket in histogram],
            first_access=histogram.first_access,
            last_access=histogram.last_access,
            peak=schemas.Peak.model_validate(histogram.peak),
        ),
        entries_by_sector=report.entries_by_sector,
    )


@app.get("/events/{event_id}/analytics", response_model=schemas.AnalyticsResponse)
def event_analytics(
    event_id: str,
    mode: schemas.ViewMode = schemas.ViewMode.RAW,
    sectors: Optional[List[str]] = Query(None),
    bucket_minutes: int = Query(HISTOGRAM_BUCKET_MINUTES, ge=1, le=1440),
    db: Session = Depends(get_db),
    actor: dict = Depends(get_admin_actor),
):
    event = get_event_or_404(event_id, db)
    return build_analytics(event, db, mode, sectors, bucket_minutes)


@app.get("/public/events/{event_id}/stats", response_model=schemas.AnalyticsResponse)
def public_stats(event_id: str, db: Session = Depends(get_db)):
    event = get_event_or_404(event_id, db)
    hidden = set(event.hidden_sectors or [])
    visible = [name for name in event.sector_names or [] if name not in hidden]
    has_groups = db.query(models.SectorGroup).filter(models.SectorGroup.event_id == event_id).count() > 0
    mode = schemas.ViewMode.GROUPED if has_groups else schemas.ViewMode.RAW
    return build_analytics(event, db, mode, visible, HISTOGRAM_BUCKET_MINUTES)


@app.get("/events/{event_id}/security", response_model=schemas.SecurityResponse)
def event_security(event_id: str, db: Session = Depends(get_db), actor: dict = Depends(get_admin_actor)):
    get_event_or_404(event_id, db)
    log = db.query(models.ScanLog).filter(models.ScanLog.event_id == event_id).all()
    report = analyze(log)
    return schemas.SecurityResponse(
        event_id=event_id,
        threat_level=report.threat_level,
        duplicate_tickets=[schemas.DuplicateTicket.model_validate(d) for d in report.duplicate_tickets],
        suspicious_operators=[schemas.OperatorRisk.model_validate(o) for o in report.suspicious_operators],
        hot_devices=[schemas.DeviceLoad.model_validate(d) for d in report.hot_devices],
    )


@app.get("/events/{event_id}/operators", response_model=List[schemas.OperatorActivity])
def event_operators(event_id: str, db: Session = Depends(get_db), actor: dict = Depends(get_admin_actor)):
    get_event_or_404(event_id, db)
    log = db.query(models.ScanLog).filter(models.ScanLog.event_id == event_id).all()
    return [schemas.OperatorActivity.model_validate(a) for a in operator_activity(log)]


# ------------- Imports -------------

@app.post("/events/{event_id}/import/run", response_model=schemas.ImportRunResponse)
async def run_import(
    event_id: str,
    req: schemas.ImportRunRequest | None = None,
    db: Session = Depends(get_db),
    actor: dict = Depends(get_admin_actor),
):
    await run_in_threadpool(get_event_or_404, event_id, db)
    source_ids = req.source_ids if req else None
    logs = await import_runner.run(event_id, source_ids=source_ids)
    return schemas.ImportRunResponse(event_id=event_id, logs=logs)


@app.post("/events/{event_id}/auto-import/start", response_model=schemas.AutoImportStatus)
async def start_auto_import(
    event_id: str,
    req: schemas.AutoImportStart,
    db: Session = Depends(get_db),
    actor: dict = Depends(get_admin_actor),
):
    await run_in_threadpool(get_event_or_404, event_id, db)
    import_poller.start(event_id, req.interval_minutes * 60)
    return schemas.AutoImportStatus(event_id=event_id, running=True, interval_minutes=req.interval_minutes)


@app.post("/events/{event_id}/auto-import/stop", response_model=schemas.AutoImportStatus)
async def stop_auto_import(event_id: str, actor: dict = Depends(get_admin_actor)):
    await import_poller.stop(event_id)
    return schemas.AutoImportStatus(event_id=event_id, running=False)


@app.get("/events/{event_id}/auto-import", response_model=schemas.AutoImportStatus)
def auto_import_status(event_id: str, actor: dict = Depends(get_admin_actor)):
    interval = import_poller.interval_of(event_id)
    return schemas.AutoImportStatus(
        event_id=event_id,
        running=import_poller.is_running(event_id),
        interval_minutes=int(interval // 60) if interval else None,
    )


@app.get("/events/{event_id}/import-logs", response_model=List[schemas.ImportLog])
def list_import_logs(
    event_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: dict = Depends(get_admin_actor),
):
    get_event_or_404(event_id, db)
    return (
        db.query(models.ImportLog)
        .filter(models.ImportLog.event_id == event_id)
        .order_by(models.ImportLog.timestamp.desc())
        .limit(limit)
        .all()
    )


# ------------- Dashboard state -------------

@app.get("/app-state", response_model=AppState)
def get_app_state(actor: dict = Depends(get_admin_actor)):
    return load_state(APP_STATE_FILE)


@app.put("/app-state", response_model=AppState)
def put_app_state(state: AppState, actor: dict = Depends(get_admin_actor)):
    save_state(state, APP_STATE_FILE)
    return state


@app.websocket("/ws/events/{event_id}")
async def websocket_scans(websocket: WebSocket, event_id: str):
    await manager.connect(event_id, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(event_id, websocket)
