"""
Integration tests for the single-request pipelines and the per-funnel
columns pipeline.

Uses an AsyncMock remote client and an in-memory SQLite DB.
"""
import json
from unittest.mock import AsyncMock, patch

import pytest
from sqlmodel import select

from crmsync.errors import ConfigurationError, RemoteAPIError
from crmsync.models.crm import (
    Funnel,
    FunnelColumn,
    LossReason,
    OrganizationalUnit,
    SalesRep,
)
from crmsync.models.sync import SyncRun
from crmsync.sync.pipelines import (
    PIPELINES,
    FunnelColumnSync,
    FunnelSync,
    LossReasonSync,
    OrganizationalUnitSync,
    SalesRepSync,
)
from crmsync.sync.reconcile import Reconciler

DEPARTMENTS = [
    {"id": 1, "name": "Diretoria", "subs": [{"id": 2, "name": "Financeiro"}]},
    {
        "id": 85,
        "name": "Lojas",
        "subs": [
            {
                "id": 120,
                "name": "Loja Centro",
                "department": 85,
                "subs": [{"id": 121, "name": "GESTÃO CENTRO", "users": [5, 6]}],
            },
            {"id": 130, "name": "Loja Norte", "department": 85, "subs": []},
        ],
    },
]


class TestFunnelSync:
    @pytest.mark.asyncio
    async def test_named_field_envelope(self, engine, test_session, settings, remote):
        remote.get_funnels = AsyncMock(return_value={
            "funis": [{"id": 1, "funil_nome": "Vendas"}, {"id": 2, "funil_nome": "Pós-venda"}],
        })

        result = await FunnelSync(remote, engine, settings=settings).run()

        assert result.job_name == "funnels-sync"
        assert result.status == "success"
        assert result.inserted == 2
        names = [f.name for f in test_session.exec(select(Funnel).order_by(Funnel.id)).all()]
        assert names == ["Vendas", "Pós-venda"]

    @pytest.mark.asyncio
    async def test_rerun_updates(self, engine, settings, remote):
        remote.get_funnels = AsyncMock(return_value=[{"id": 1, "funil_nome": "Vendas"}])
        pipeline = FunnelSync(remote, engine, settings=settings)

        await pipeline.run()
        result = await pipeline.run()

        assert (result.inserted, result.updated) == (0, 1)

    @pytest.mark.asyncio
    async def test_fetch_failure_counts_one_error(self, engine, test_session, settings, remote):
        remote.get_funnels = AsyncMock(side_effect=RemoteAPIError("GET /crm returned 502", 502))

        result = await FunnelSync(remote, engine, settings=settings).run()

        assert result.status == "completed_with_errors"
        assert result.errors == 1
        assert test_session.exec(select(Funnel)).all() == []

    @pytest.mark.asyncio
    async def test_unrecognized_payload_is_empty_success(self, engine, settings, remote):
        remote.get_funnels = AsyncMock(return_value={"message": "ok"})

        result = await FunnelSync(remote, engine, settings=settings).run()

        assert result.status == "success"
        assert result.inserted == 0


class TestLossReasonSync:
    @pytest.mark.asyncio
    async def test_sync(self, engine, test_session, settings, remote):
        remote.get_loss_reasons = AsyncMock(return_value={
            "motivos": [{"id": 1, "motivo": "Preço"}, {"id": 2, "motivo": "Prazo"}, {"motivo": "sem id"}],
        })

        result = await LossReasonSync(remote, engine, settings=settings).run()

        assert result.inserted == 2
        assert result.errors == 1
        assert result.status == "completed_with_errors"
        assert test_session.get(LossReason, 1).reason == "Preço"


class TestOrganizationalUnitSync:
    @pytest.mark.asyncio
    async def test_syncs_subs_of_parent_department(self, engine, test_session, settings, remote):
        remote.get_departments = AsyncMock(return_value=DEPARTMENTS)

        result = await OrganizationalUnitSync(remote, engine, settings=settings).run()

        assert result.status == "success"
        assert result.inserted == 2
        ids = sorted(u.id for u in test_session.exec(select(OrganizationalUnit)).all())
        assert ids == [120, 130]
        centro = test_session.get(OrganizationalUnit, 120)
        assert centro.management_department_id == 121
        assert json.loads(centro.management_user_ids) == [5, 6]

    @pytest.mark.asyncio
    async def test_parent_id_from_settings(self, engine, test_session, settings, remote):
        settings.parent_department_id = 1
        remote.get_departments = AsyncMock(return_value={"data": DEPARTMENTS})

        result = await OrganizationalUnitSync(remote, engine, settings=settings).run()

        assert result.inserted == 1
        assert test_session.get(OrganizationalUnit, 2).name == "Financeiro"

    @pytest.mark.asyncio
    async def test_missing_parent_counts_error(self, engine, settings, remote):
        remote.get_departments = AsyncMock(return_value=[{"id": 1, "subs": []}])

        result = await OrganizationalUnitSync(remote, engine, settings=settings).run()

        assert result.errors == 1
        assert result.inserted == 0
        assert result.status == "completed_with_errors"

    @pytest.mark.asyncio
    async def test_parent_without_subs(self, engine, settings, remote):
        remote.get_departments = AsyncMock(return_value=[{"id": 85, "subs": None}])

        result = await OrganizationalUnitSync(remote, engine, settings=settings).run()

        assert result.status == "success"
        assert result.inserted == 0

    @pytest.mark.asyncio
    async def test_management_users_not_a_list(self, engine, test_session, settings, remote):
        remote.get_departments = AsyncMock(return_value=[{
            "id": 85,
            "subs": [
                {"id": 1, "subs": [{"name": "GESTAO", "users": 5}]},
                {"id": 2, "name": "Good"},
            ],
        }])

        result = await OrganizationalUnitSync(remote, engine, settings=settings).run()

        assert result.status == "success"
        assert result.inserted == 2
        assert test_session.get(OrganizationalUnit, 1).management_user_ids is None
        assert test_session.get(OrganizationalUnit, 2).name == "Good"

    @pytest.mark.asyncio
    async def test_unreadable_unit_counts_error_and_run_continues(self, engine, test_session, settings, remote):
        remote.get_departments = AsyncMock(return_value=[{
            "id": 85,
            "subs": [{"id": 1, "subs": 5}, {"id": 2, "name": "Good"}],
        }])

        result = await OrganizationalUnitSync(remote, engine, settings=settings).run()

        assert result.status == "completed_with_errors"
        assert (result.inserted, result.errors) == (1, 1)
        assert test_session.get(OrganizationalUnit, 1) is None
        run = test_session.get(SyncRun, result.run_id)
        assert run.status == "completed_with_errors"


class TestSalesRepSync:
    @pytest.mark.asyncio
    async def test_sync_preserves_local_flags(self, engine, test_session, settings, remote):
        remote.get_users = AsyncMock(return_value=[
            {"id": 9, "name": "Ana", "lastName": "Silva", "email": "ana@example.com"},
        ])
        pipeline = SalesRepSync(remote, engine, settings=settings)
        await pipeline.run()

        rep = test_session.get(SalesRep, 9)
        assert rep.active is True
        assert rep.status == "active"
        rep.active = False
        test_session.add(rep)
        test_session.commit()

        remote.get_users = AsyncMock(return_value=[
            {"id": 9, "name": "Ana", "lastName": "Souza", "email": "ana@example.com"},
        ])
        result = await pipeline.run()

        assert result.updated == 1
        test_session.expire_all()
        rep = test_session.get(SalesRep, 9)
        assert rep.last_name == "Souza"
        assert rep.active is False


class TestFunnelColumnSync:
    @pytest.mark.asyncio
    async def test_fetches_columns_per_local_funnel(self, engine, test_session, settings, remote):
        reconciler = Reconciler(engine)
        reconciler.reconcile(Funnel, 1, {"name": "Vendas"})
        reconciler.reconcile(Funnel, 2, {"name": "Pós-venda"})
        payloads = {
            1: {"colunas": [{"id": 11, "nome_coluna": "Lead", "sequencia": 1}]},
            2: {"colunas": [{"id": 21, "nome_coluna": "Onboarding", "total_oportunidades": "3"}]},
        }
        remote.get_funnel_columns = AsyncMock(side_effect=lambda funnel_id: payloads[funnel_id])

        result = await FunnelColumnSync(remote, engine, settings=settings).run()

        assert [c.args[0] for c in remote.get_funnel_columns.await_args_list] == [1, 2]
        assert result.inserted == 2
        column = test_session.get(FunnelColumn, 21)
        assert column.funnel_id == 2
        assert column.total_opportunities == 3

    @pytest.mark.asyncio
    async def test_one_funnel_failing_does_not_stop_others(self, engine, test_session, settings, remote):
        reconciler = Reconciler(engine)
        reconciler.reconcile(Funnel, 1, {"name": "Vendas"})
        reconciler.reconcile(Funnel, 2, {"name": "Pós-venda"})

        async def fake(funnel_id):
            if funnel_id == 1:
                raise RemoteAPIError("GET /crmfastloadv2 returned 500", 500)
            return [{"id": 21, "nome_coluna": "Onboarding"}]

        remote.get_funnel_columns = AsyncMock(side_effect=fake)

        result = await FunnelColumnSync(remote, engine, settings=settings).run()

        assert result.errors == 1
        assert result.inserted == 1
        assert result.status == "completed_with_errors"

    @pytest.mark.asyncio
    async def test_pauses_between_funnels_only(self, engine, settings, remote):
        settings.branch_delay_seconds = 0.25
        reconciler = Reconciler(engine)
        reconciler.reconcile(Funnel, 1, {"name": "Vendas"})
        reconciler.reconcile(Funnel, 2, {"name": "Pós-venda"})
        events = []

        async def fake_columns(funnel_id):
            events.append(("get", funnel_id))
            return []

        async def fake_sleep(seconds):
            events.append(("sleep", seconds))

        remote.get_funnel_columns = AsyncMock(side_effect=fake_columns)
        with patch("crmsync.sync.pipelines.asyncio.sleep", AsyncMock(side_effect=fake_sleep)):
            await FunnelColumnSync(remote, engine, settings=settings).run()

        assert events == [("get", 1), ("sleep", 0.25), ("get", 2)]

    @pytest.mark.asyncio
    async def test_no_local_funnels(self, engine, settings, remote):
        result = await FunnelColumnSync(remote, engine, settings=settings).run()

        assert result.status == "success"
        assert result.inserted == 0
        remote.get_funnel_columns.assert_not_awaited()


class TestRunLevel:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("pipeline_cls", list(PIPELINES.values()))
    async def test_missing_configuration_is_error_row(self, pipeline_cls, engine, test_session, settings, remote):
        remote.ensure_configured.side_effect = ConfigurationError("Remote API is not configured")

        with pytest.raises(ConfigurationError):
            await pipeline_cls(remote, engine, settings=settings).run("scheduled")

        run = test_session.exec(select(SyncRun)).one()
        assert run.job_name == pipeline_cls.job_name
        assert run.trigger == "scheduled"
        assert run.status == "error"
        assert run.error_message == "Remote API is not configured"

    def test_every_job_has_a_distinct_name(self):
        assert len(PIPELINES) == 6
        assert all(name.endswith("-sync") for name in PIPELINES)
