import uuid
from sqlalchemy import JSON, BigInteger, Boolean, Column, ForeignKey, Integer, String
from database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class Event(Base):
    __tablename__ = "events"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, index=True)
    is_hidden = Column(Boolean, default=False)
    sector_names = Column(JSON, default=list)
    hidden_sectors = Column(JSON, default=list)


class Ticket(Base):
    __tablename__ = "tickets"

    # the ticket code is only unique inside its event
    event_id = Column(String, ForeignKey("events.id"), primary_key=True)
    id = Column(String, primary_key=True)
    sector = Column(String, index=True)
    status = Column(String, default="AVAILABLE")  # AVAILABLE, USED, STANDBY
    used_at = Column(BigInteger, nullable=True)  # epoch milliseconds
    source = Column(String, nullable=True)  # api_import, cloud_sync, manual_direct, manual_locator, alert_manual
    details = Column(JSON, nullable=True)


class ScanLog(Base):
    __tablename__ = "scan_logs"

    id = Column(String, primary_key=True, default=new_id)
    event_id = Column(String, ForeignKey("events.id"), index=True)
    ticket_id = Column(String, index=True)
    status = Column(String)  # VALID, USED, INVALID, ERROR, WRONG_SECTOR, ALERT_REQUIRED
    timestamp = Column(BigInteger, index=True)
    device_id = Column(String, nullable=True)
    operator = Column(String, nullable=True)
    sector = Column(String, nullable=True)


class SectorGroup(Base):
    __tablename__ = "sector_groups"

    id = Column(String, primary_key=True, default=new_id)
    event_id = Column(String, ForeignKey("events.id"), index=True)
    name = Column(String)
    included_sectors = Column(JSON, default=list)
    position = Column(Integer, default=0)


class ImportSource(Base):
    __tablename__ = "import_sources"

    id = Column(String, primary_key=True, default=new_id)
    event_id = Column(String, ForeignKey("events.id"), index=True)
    name = Column(String)
    url = Column(String)
    token = Column(String, nullable=True)
    type = Column(String, default="tickets")  # tickets, participants, buyers, checkins, google_sheets
    external_event_id = Column(String, nullable=True)
    auto_import = Column(Boolean, default=False)
    last_import_time = Column(BigInteger, nullable=True)
    position = Column(Integer, default=0)


class ImportLog(Base):
    __tablename__ = "import_logs"

    id = Column(String, primary_key=True, default=new_id)
    event_id = Column(String, ForeignKey("events.id"), index=True)
    timestamp = Column(BigInteger, index=True)
    source_name = Column(String)
    new_count = Column(Integer, default=0)
    existing_count = Column(Integer, default=0)
    updated_count = Column(Integer, default=0)
    sectors_affected = Column(JSON, default=dict)
    status = Column(String, default="success")  # success, error
    error_message = Column(String, nullable=True)
