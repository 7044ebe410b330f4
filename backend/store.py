import logging
from typing import Any, Dict, Iterator, List, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from errors import BatchCommitError
from settings import WRITE_BATCH_SIZE

logger = logging.getLogger(__name__)

T = TypeVar("T")

TICKET_FIELDS = ("sector", "status", "used_at", "source", "details")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start:start + size]


class TicketStore:
    """Ticket persistence for one event, written in chunks of one transaction each."""

    def __init__(self, db: Session, event_id: str, batch_size: int = WRITE_BATCH_SIZE):
        self.db = db
        self.event_id = event_id
        self.batch_size = batch_size

    def fetch_all(self) -> List[models.Ticket]:
        return self.db.query(models.Ticket).filter(models.Ticket.event_id == self.event_id).all()

    def fetch_map(self) -> Dict[str, models.Ticket]:
        return {ticket.id: ticket for ticket in self.fetch_all()}

    def get(self, code: str):
        return (
            self.db.query(models.Ticket)
            .filter(models.Ticket.event_id == self.event_id, models.Ticket.id == code)
            .first()
        )

    def upsert(self, records: Sequence[Dict[str, Any]]) -> int:
        """Insert or update tickets by code. Returns the number of records written.

        A failing chunk is rolled back and raised as BatchCommitError; chunks
        committed before it remain applied.
        """
        committed = 0
        for chunk in chunked(list(records), self.batch_size):
            try:
                for record in chunk:
                    self._apply(record)
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.error("ticket upsert failed for event %s after %d records", self.event_id, committed)
                raise BatchCommitError(committed, str(exc)) from exc
            committed += len(chunk)
        return committed

    def delete(self, codes: Sequence[str]) -> int:
        deleted = 0
        for chunk in chunked(list(codes), self.batch_size):
            try:
                deleted_in_chunk = (
                    self.db.query(models.Ticket)
                    .filter(models.Ticket.event_id == self.event_id, models.Ticket.id.in_(list(chunk)))
                    .delete(synchronize_session=False)
                )
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                raise BatchCommitError(deleted, str(exc)) from exc
            deleted += deleted_in_chunk
        return deleted

    def _apply(self, record: Dict[str, Any]) -> None:
        ticket = self.db.get(models.Ticket, (self.event_id, record["id"]))
        if ticket is None:
            ticket = models.Ticket(event_id=self.event_id, id=record["id"])
            self.db.add(ticket)
        elif ticket.status == "USED" and record.get("status", "USED") != "USED":
            # USED is terminal
            record = {k: v for k, v in record.items() if k not in ("status", "used_at")}
        for name in TICKET_FIELDS:
            if name in record:
                setattr(ticket, name, record[name])
