"""
Concrete sync pipelines, one per CRM resource.

Flat lists (funnels, loss reasons, units, sales reps) are fetched in one
request. Columns are fetched per local funnel. Opportunities are the deep
case: funnel → column → page, each level able to fail or end on its own.

Order matters between jobs: columns need funnels already synced, and
opportunities need both.
"""
import asyncio
import functools
import logging
from typing import Any, Dict, List, Optional

from crmsync.errors import RemoteAPIError
from crmsync.models.crm import (
    Funnel,
    FunnelColumn,
    LossReason,
    Opportunity,
    OrganizationalUnit,
    SalesRep,
)
from crmsync.remote.envelope import Envelope, unwrap
from crmsync.remote.mappers import (
    map_funnel,
    map_funnel_column,
    map_loss_reason,
    map_opportunity,
    map_organizational_unit,
    map_sales_rep,
)
from crmsync.sync.history import SyncCounts
from crmsync.sync.pipeline import FlatSyncPipeline, SyncPipeline

logger = logging.getLogger(__name__)

FUNNELS_QUERY = "SELECT id FROM funnel ORDER BY id"
COLUMNS_QUERY = (
    "SELECT id, name, total_opportunities FROM funnelcolumn "
    "WHERE funnel_id = :funnel_id ORDER BY sequence, id"
)


# ─── Pagination rules ─────────────────────────────────────────────────────────

def has_next_page(
    page: int, received: int, page_size: int, total_pages: Optional[int]
) -> bool:
    """
    Decide whether to request page+1.

    With a totalPages signal, trust it. Without one, a full page means there
    may be more; a short page is the last.
    """
    if total_pages is not None:
        return page + 1 < total_pages
    return received == page_size


def expected_page_count(page: int, page_size: int, total: Optional[int]) -> int:
    """
    How many records a page would have carried, for counting a failed request.

    Falls back to 1 when no total is known (or the page lies past it).
    """
    if not total or total <= 0:
        return 1
    remaining = total - page * page_size
    if remaining <= 0:
        return 1
    return min(page_size, remaining)


# ─── Flat resources ───────────────────────────────────────────────────────────

class FunnelSync(FlatSyncPipeline):
    job_name = "funnels-sync"
    model = Funnel
    named_field = "funis"

    async def fetch(self) -> Any:
        return await self.client.get_funnels()

    def map_record(self, raw):
        return map_funnel(raw)


class LossReasonSync(FlatSyncPipeline):
    job_name = "loss-reasons-sync"
    model = LossReason
    named_field = "motivos"

    async def fetch(self) -> Any:
        return await self.client.get_loss_reasons()

    def map_record(self, raw):
        return map_loss_reason(raw)


class OrganizationalUnitSync(FlatSyncPipeline):
    """
    Units are the sub-departments ("subs") of one configured parent
    department; the departments endpoint returns the whole tree.
    """

    job_name = "units-sync"
    model = OrganizationalUnit

    async def fetch(self) -> Any:
        return await self.client.get_departments()

    def select_records(self, envelope: Envelope, counts: SyncCounts) -> List[Any]:
        parent_id = self.settings.parent_department_id
        parent = next(
            (
                d for d in envelope.records
                if isinstance(d, dict) and str(d.get("id")) == str(parent_id)
            ),
            None,
        )
        if parent is None:
            counts.errors += 1
            logger.warning("%s: parent department %s not found", self.job_name, parent_id)
            return []

        subs = parent.get("subs")
        if not isinstance(subs, list):
            subs = []
        if not subs:
            logger.info("%s: parent department %s has no subs", self.job_name, parent_id)
        return list(subs)

    def map_record(self, raw):
        return map_organizational_unit(raw)


class SalesRepSync(FlatSyncPipeline):
    job_name = "sales-reps-sync"
    model = SalesRep

    async def fetch(self) -> Any:
        return await self.client.get_users()

    def map_record(self, raw):
        return map_sales_rep(raw)


# ─── Funnel hierarchy ─────────────────────────────────────────────────────────

class FunnelColumnSync(SyncPipeline):
    """Fetches the columns of every locally known funnel, one request per funnel."""

    job_name = "funnel-columns-sync"
    model = FunnelColumn

    async def _sync(self, counts: SyncCounts) -> None:
        funnels = self.store.execute(FUNNELS_QUERY)
        if not funnels:
            logger.warning("%s: no local funnels; run funnels-sync first", self.job_name)
            return

        for i, funnel in enumerate(funnels):
            if i:
                await asyncio.sleep(self.settings.branch_delay_seconds)
            funnel_id = funnel["id"]
            try:
                payload = await self.client.get_funnel_columns(funnel_id)
            except RemoteAPIError as exc:
                counts.errors += 1
                logger.warning("%s: funnel %s failed: %s", self.job_name, funnel_id, exc)
                continue

            records = unwrap(payload, "colunas").records
            logger.info("%s: funnel %s has %d columns", self.job_name, funnel_id, len(records))
            self._reconcile_records(
                records, counts, functools.partial(map_funnel_column, funnel_id=funnel_id)
            )


class OpportunitySync(SyncPipeline):
    """
    Walks funnel → column → page over the already-synced hierarchy.

    A failed page ends only its column's loop; the error counter grows by
    the records that page was expected to carry.
    """

    job_name = "opportunities-sync"
    model = Opportunity

    async def _sync(self, counts: SyncCounts) -> None:
        funnels = self.store.execute(FUNNELS_QUERY)
        if not funnels:
            logger.warning("%s: no local funnels; run funnels-sync first", self.job_name)
            return

        first_branch = True
        for funnel in funnels:
            columns = self.store.execute(COLUMNS_QUERY, {"funnel_id": funnel["id"]})
            if not columns:
                logger.info("%s: funnel %s has no columns", self.job_name, funnel["id"])
                continue

            for column in columns:
                if not first_branch:
                    await asyncio.sleep(self.settings.branch_delay_seconds)
                first_branch = False
                await self._sync_column(funnel["id"], column, counts)

    async def _sync_column(self, funnel_id: int, column: Dict[str, Any], counts: SyncCounts) -> None:
        page_size = self.settings.page_size
        column_id = column["id"]
        # The columns endpoint reports a count; a page envelope's total overrides it
        known_total = column.get("total_opportunities") or None
        mapper = functools.partial(map_opportunity, funnel_id=funnel_id, column_id=column_id)

        page = 0
        while True:
            if page:
                await asyncio.sleep(self.settings.page_delay_seconds)
            try:
                payload = await self.client.get_opportunities_page(
                    funnel_id,
                    column_id,
                    page=page,
                    limit=page_size,
                    status_filter=self.settings.opportunity_status_filter,
                )
            except RemoteAPIError as exc:
                missed = expected_page_count(page, page_size, known_total)
                counts.errors += missed
                logger.warning(
                    "%s: column %s page %d failed (%d records lost): %s",
                    self.job_name, column_id, page, missed, exc,
                )
                return

            envelope = unwrap(payload)
            if envelope.total is not None:
                known_total = envelope.total
            if not envelope.records:
                return

            logger.info(
                "%s: column %s page %d: %d records",
                self.job_name, column_id, page, len(envelope.records),
            )
            self._reconcile_records(envelope.records, counts, mapper)

            if not has_next_page(page, len(envelope.records), page_size, envelope.total_pages):
                return
            page += 1


PIPELINES = {
    cls.job_name: cls
    for cls in (
        SalesRepSync,
        OrganizationalUnitSync,
        FunnelSync,
        LossReasonSync,
        FunnelColumnSync,
        OpportunitySync,
    )
}
