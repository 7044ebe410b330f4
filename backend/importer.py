import asyncio
import contextlib
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

import httpx
from sqlalchemy.orm import Session

import models
import schemas
from database import SessionLocal
from errors import BatchCommitError, ImportFetchError
from feeds import fetch_records
from reconciler import merge_sector_names, reconcile
from settings import IMPORT_MAX_PAGES, IMPORT_PER_PAGE, IMPORT_TIMEOUT_SECONDS, WRITE_BATCH_SIZE
from store import TicketStore
from timeutil import now_ms

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = ("id", "sector", "status", "used_at", "source", "details")


def default_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=IMPORT_TIMEOUT_SECONDS, follow_redirects=True)


async def run_db(func: Callable, *args):
    """Run a blocking database step in a worker thread.

    If the caller is cancelled the step still runs to completion before the
    cancellation propagates, so a chunk is never cut off halfway and the
    session is not closed under a running thread.
    """
    task = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        await asyncio.wait({task})
        raise


class ImportRunner:
    """Runs import cycles: fetch every selected source, reconcile, write in chunks.

    Cycles for the same event are serialized through a per-event lock, so a
    manual run never interleaves with the background poller.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        client_factory: Callable[[], httpx.AsyncClient] = default_client,
        batch_size: int = WRITE_BATCH_SIZE,
        per_page: int = IMPORT_PER_PAGE,
        max_pages: int = IMPORT_MAX_PAGES,
    ):
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.batch_size = batch_size
        self.per_page = per_page
        self.max_pages = max_pages
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, event_id: str) -> asyncio.Lock:
        if event_id not in self._locks:
            self._locks[event_id] = asyncio.Lock()
        return self._locks[event_id]

    async def run(
        self,
        event_id: str,
        source_ids: Optional[Sequence[str]] = None,
        auto_only: bool = False,
        source_tag: str = "api_import",
    ) -> List[schemas.ImportLog]:
        async with self.lock_for(event_id):
            return await self._run_cycle(event_id, source_ids, auto_only, source_tag)

    async def _run_cycle(self, event_id, source_ids, auto_only, source_tag) -> List[schemas.ImportLog]:
        db = self.session_factory()
        try:
            loaded = await run_db(self._load, db, event_id, source_ids, auto_only)
            if loaded is None:
                logger.warning("import skipped: event %s not found", event_id, extra={"event_id": event_id})
                return []
            sources, existing = loaded
            if not sources:
                return []

            store = TicketStore(db, event_id, self.batch_size)
            # tickets written by earlier sources in this cycle are added as they land
            seen = set(existing)
            discovered: Set[str] = set()
            logs: List[schemas.ImportLog] = []

            async with self.client_factory() as client:
                for source in sources:
                    entry = await self._import_source(client, store, existing, seen, discovered, source, source_tag)
                    if entry is not None:
                        logs.append(entry)

            if discovered:
                await run_db(self._merge_sectors, db, event_id, discovered)
            return logs
        finally:
            db.close()

    @staticmethod
    def _load(db: Session, event_id: str, source_ids, auto_only: bool):
        event = db.get(models.Event, event_id)
        if event is None:
            return None
        query = db.query(models.ImportSource).filter(models.ImportSource.event_id == event_id)
        if source_ids is not None:
            query = query.filter(models.ImportSource.id.in_(list(source_ids)))
        if auto_only:
            query = query.filter(models.ImportSource.auto_import.is_(True))
        sources = [schemas.ImportSource.model_validate(s) for s in query.order_by(models.ImportSource.position)]
        tickets = TicketStore(db, event_id).fetch_all()
        existing = {t.id: {name: getattr(t, name) for name in SNAPSHOT_FIELDS} for t in tickets}
        return sources, existing

    async def _import_source(self, client, store, existing, seen, discovered, source, source_tag):
        context = {"event_id": store.event_id, "source": source.name}
        try:
            records = await fetch_records(client, source, per_page=self.per_page, max_pages=self.max_pages)
        except ImportFetchError as exc:
            logger.warning("import from %s failed: %s", source.name, exc, extra=context)
            return await run_db(self._record_failure, store, source.name, str(exc))
        return await run_db(self._apply, store, existing, seen, discovered, source, source_tag, records)

    def _apply(self, store, existing, seen, discovered, source, source_tag, records) -> Optional[schemas.ImportLog]:
        context = {"event_id": store.event_id, "source": source.name}
        pass_seen = set(seen)
        try:
            result = reconcile(existing.values(), records, source_type=source.type, source_tag=source_tag, seen=pass_seen)
        except (TypeError, ValueError, ArithmeticError) as exc:
            error = ImportFetchError(source.name, f"unreadable records: {exc}")
            logger.warning("import from %s failed: %s", source.name, error, extra=context)
            return self._record_failure(store, source.name, str(error))

        written = result.to_insert + result.to_update
        try:
            store.upsert(written)
        except BatchCommitError as exc:
            self._remember(existing, seen, written[:exc.committed])
            logger.warning("import from %s failed: %s", source.name, exc, extra=context)
            return self._record_failure(store, source.name, str(exc))
        self._remember(existing, seen, written)
        seen.update(pass_seen)
        discovered.update(result.discovered_sectors)

        db = store.db
        db.query(models.ImportSource).filter(models.ImportSource.id == source.id).update(
            {models.ImportSource.last_import_time: now_ms()}, synchronize_session=False
        )
        stats = result.stats
        logger.info(
            "import from %s: %d found, %d new, %d existing, %d updated",
            source.name, stats.total_found, stats.new, stats.existing, stats.updated,
            extra=context,
        )
        if not (stats.new or stats.updated):
            db.commit()
            return None
        return self._write_log(
            db,
            store.event_id,
            source.name,
            new_count=stats.new,
            existing_count=stats.existing,
            updated_count=stats.updated,
            sectors_affected=result.sectors_affected,
        )

    @staticmethod
    def _remember(existing: Dict[str, Dict[str, Any]], seen: Set[str], records: Sequence[Dict[str, Any]]) -> None:
        for record in records:
            existing[record["id"]] = dict(record)
            seen.add(record["id"])

    def _record_failure(self, store: TicketStore, source_name: str, message: str) -> schemas.ImportLog:
        return self._write_log(store.db, store.event_id, source_name, status="error", error_message=message)

    @staticmethod
    def _merge_sectors(db: Session, event_id: str, discovered: Set[str]) -> None:
        event = db.get(models.Event, event_id)
        configured = list(event.sector_names or [])
        if discovered.issubset(configured):
            return
        event.sector_names = merge_sector_names(configured, discovered)
        db.commit()
        logger.info("event %s sectors updated to %s", event_id, event.sector_names, extra={"event_id": event_id})

    @staticmethod
    def _write_log(db: Session, event_id: str, source_name: str, status: str = "success", **fields) -> schemas.ImportLog:
        entry = models.ImportLog(event_id=event_id, timestamp=now_ms(), source_name=source_name, status=status, **fields)
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return schemas.ImportLog.model_validate(entry)


class ImportPoller:
    """Background import loops, one asyncio task per event."""

    def __init__(self, runner: ImportRunner):
        self.runner = runner
        self._tasks: Dict[str, asyncio.Task] = {}
        self._intervals: Dict[str, float] = {}

    def is_running(self, event_id: str) -> bool:
        task = self._tasks.get(event_id)
        return task is not None and not task.done()

    def interval_of(self, event_id: str) -> Optional[float]:
        return self._intervals.get(event_id) if self.is_running(event_id) else None

    def start(self, event_id: str, interval_seconds: float) -> None:
        if self.is_running(event_id):
            self._tasks[event_id].cancel()
        self._intervals[event_id] = interval_seconds
        self._tasks[event_id] = asyncio.get_running_loop().create_task(self._loop(event_id, interval_seconds))
        logger.info("auto-import started for event %s every %ss", event_id, interval_seconds, extra={"event_id": event_id})

    async def stop(self, event_id: str) -> bool:
        task = self._tasks.pop(event_id, None)
        self._intervals.pop(event_id, None)
        if task is None:
            return False
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("auto-import stopped for event %s", event_id)
        return True

    async def stop_all(self) -> None:
        for event_id in list(self._tasks):
            await self.stop(event_id)

    async def _loop(self, event_id: str, interval_seconds: float) -> None:
        while True:
            try:
                await self.runner.run(event_id, auto_only=True, source_tag="cloud_sync")
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("auto-import cycle failed for event %s", event_id, extra={"event_id": event_id})
            await asyncio.sleep(interval_seconds)
