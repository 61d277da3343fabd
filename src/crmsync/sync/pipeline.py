"""
SyncPipeline: the shared shape of every CRM → local store sync job.

Flow for a single run:
  1. Insert a SyncRun row (status="running")
  2. Check remote credentials (ConfigurationError ends the run here)
  3. Fetch remote nodes → normalize envelope → map → reconcile each record
  4. Finalize the SyncRun row with the counters
     (status="success" or "completed_with_errors")

Errors below the run level never escape: a failed fetch is counted against
its branch, a record that cannot be mapped or written is counted and
skipped. Anything else that escapes _sync() is recorded as status="error"
and re-raised.

Idempotency: every table is keyed by the remote id and the Reconciler fully
replaces existing rows, so re-running a pipeline only converges local state.
"""
import logging
from typing import Any, Callable, Iterable, List, Optional, Type

from sqlmodel import SQLModel

from crmsync.config import get_settings
from crmsync.db.store import LocalStore
from crmsync.errors import PersistenceError, RecordMappingError, RemoteAPIError
from crmsync.remote.envelope import Envelope, unwrap
from crmsync.sync.history import HistoryRecorder, SyncCounts, SyncResult
from crmsync.sync.reconcile import Reconciler

logger = logging.getLogger(__name__)


class SyncPipeline:
    """Base class. Subclasses set job_name and model and implement _sync()."""

    job_name: str = ""
    model: Type[SQLModel]

    def __init__(self, client, engine, *, settings=None):
        """
        Args:
            client: RemoteClient instance (or AsyncMock in tests).
            engine: SQLAlchemy engine (SQLModel create_engine result).
            settings: Settings override; defaults to get_settings().
        """
        self.client = client
        self.engine = engine
        self.settings = settings or get_settings()
        self.store = LocalStore(engine)
        self.reconciler = Reconciler(engine)
        self.recorder = HistoryRecorder(engine)

    async def run(self, trigger: str = "manual") -> SyncResult:
        """
        Execute one full sync and record it in the history table.

        Args:
            trigger: "manual" or "scheduled".

        Returns:
            SyncResult mirroring the finalized SyncRun row.

        Raises:
            ConfigurationError: if remote credentials are missing (after
                recording the error row). Any other exception escaping the
                sync body is recorded and re-raised the same way.
        """
        handle = self.recorder.begin(self.job_name, trigger)
        counts = SyncCounts()
        logger.info("%s starting (%s)", self.job_name, trigger)

        try:
            self.client.ensure_configured()
            await self._sync(counts)
        except Exception as exc:
            self.recorder.fail(handle, str(exc), counts)
            logger.error("%s failed: %s", self.job_name, exc)
            raise

        result = self.recorder.complete(handle, counts)
        logger.info(
            "%s finished with %s: %d inserted, %d updated, %d errors in %.2fs",
            self.job_name,
            result.status,
            result.inserted,
            result.updated,
            result.errors,
            result.duration_seconds,
        )
        return result

    async def _sync(self, counts: SyncCounts) -> None:
        raise NotImplementedError

    def _reconcile_records(
        self,
        records: Iterable[Any],
        counts: SyncCounts,
        mapper: Callable[[Any], Any],
    ) -> None:
        """Map and upsert each record; mapping and write failures are counted, not raised."""
        for raw in records:
            try:
                natural_id, attributes = mapper(raw)
            except RecordMappingError as exc:
                counts.errors += 1
                logger.warning("%s: skipping record: %s", self.job_name, exc)
                continue

            try:
                counts.add(self.reconciler.reconcile(self.model, natural_id, attributes))
            except PersistenceError as exc:
                counts.errors += 1
                logger.warning("%s: %s", self.job_name, exc)


class FlatSyncPipeline(SyncPipeline):
    """
    One remote list → one local table.

    Subclasses implement fetch() and map_record(); named_field is the
    resource-specific list field tried by the envelope normalizer.
    """

    named_field: Optional[str] = None

    async def fetch(self) -> Any:
        raise NotImplementedError

    def map_record(self, raw: Any):
        raise NotImplementedError

    def select_records(self, envelope: Envelope, counts: SyncCounts) -> List[Any]:
        """Pick the records to reconcile out of the normalized envelope."""
        return envelope.records

    async def _sync(self, counts: SyncCounts) -> None:
        try:
            payload = await self.fetch()
        except RemoteAPIError as exc:
            counts.errors += 1
            logger.warning("%s: fetch failed: %s", self.job_name, exc)
            return

        envelope = unwrap(payload, self.named_field)
        records = self.select_records(envelope, counts)
        logger.info(
            "%s: %d records received (%s)", self.job_name, len(records), envelope.strategy
        )
        self._reconcile_records(records, counts, self.map_record)
