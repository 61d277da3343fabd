"""
Local mirrors of the remote CRM resources.

Every table is keyed by the remote natural id: the primary key is never
generated locally, so an upsert by id is safe to repeat across runs.
"""
from datetime import date, datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from crmsync.models.sync import utc_now

NATURAL_KEY = {"autoincrement": False}


class Funnel(SQLModel, table=True):
    """A sales funnel (pipeline)."""

    id: int = Field(primary_key=True, sa_column_kwargs=NATURAL_KEY)
    name: str = Field(index=True)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    synced_at: datetime = Field(default_factory=utc_now)


class FunnelColumn(SQLModel, table=True):
    """One stage (column) of a funnel."""

    id: int = Field(primary_key=True, sa_column_kwargs=NATURAL_KEY)
    name: str
    funnel_id: int = Field(index=True)
    total_opportunities: int = 0
    total_value: float = 0.0
    sequence: int = 0

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    synced_at: datetime = Field(default_factory=utc_now)


class Opportunity(SQLModel, table=True):
    """A deal sitting in a funnel column. Synced page by page per column."""

    id: int = Field(primary_key=True, sa_column_kwargs=NATURAL_KEY)
    title: str
    value: float = 0.0
    funnel_id: Optional[int] = Field(default=None, index=True)
    column_id: Optional[int] = Field(default=None, index=True)
    crm_column: Optional[int] = None  # column id as reported by the remote record
    lead_id: Optional[int] = Field(default=None, index=True)
    sequence: Optional[int] = None
    status: Optional[str] = Field(default=None, index=True)  # "open", "gain", "lost"
    loss_reason: Optional[str] = None
    gain_reason: Optional[str] = None
    expected_close_date: Optional[date] = None
    sale_channel: Optional[str] = None
    campaign: Optional[str] = None
    owner: Optional[str] = None

    last_column_change: Optional[datetime] = None
    last_status_change: Optional[datetime] = None
    gain_date: Optional[datetime] = None
    lost_date: Optional[datetime] = None
    reopen_date: Optional[datetime] = None

    await_column_approved: bool = False
    await_column_approved_user: Optional[str] = None
    reject_approval: bool = False
    reject_approval_desc: Optional[str] = None
    archived: bool = False

    # Nested structures kept as JSON text
    conf_installment_json: Optional[str] = None
    fields_json: Optional[str] = None
    lead_data_json: Optional[str] = None

    remote_created_at: Optional[datetime] = None
    remote_updated_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    synced_at: datetime = Field(default_factory=utc_now)


class LossReason(SQLModel, table=True):
    """Reason a deal was marked lost."""

    id: int = Field(primary_key=True, sa_column_kwargs=NATURAL_KEY)
    reason: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    synced_at: datetime = Field(default_factory=utc_now)


class OrganizationalUnit(SQLModel, table=True):
    """A sub-department of the configured parent department."""

    id: int = Field(primary_key=True, sa_column_kwargs=NATURAL_KEY)
    name: str = ""
    department_id: Optional[int] = None
    show_sac360: int = 0
    show_crm: int = 0
    remote_created_at: Optional[datetime] = None
    remote_updated_at: Optional[datetime] = None

    subs_json: Optional[str] = None
    users_json: Optional[str] = None
    permissions_groups_json: Optional[str] = None
    voip_json: Optional[str] = None
    branches_json: Optional[str] = None
    accs_json: Optional[str] = None
    google_business_messages_json: Optional[str] = None

    management_department_id: Optional[int] = None
    management_user_ids: Optional[str] = None  # JSON list of user ids

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    synced_at: datetime = Field(default_factory=utc_now)


class SalesRep(SQLModel, table=True):
    """A non-blocked remote user acting as a sales rep."""

    id: int = Field(primary_key=True, sa_column_kwargs=NATURAL_KEY)
    name: str = ""
    last_name: str = ""
    email: str = Field(default="", index=True)
    cpf: Optional[str] = None
    username: str = ""
    birth_date: date = date(1900, 1, 1)
    telephone: Optional[str] = None
    photo: Optional[str] = None
    admin: int = 0
    branch: Optional[str] = None
    position_company: Optional[str] = None
    skills: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    whatsapp_automation: Optional[str] = None
    last_login: Optional[datetime] = None
    last_action: Optional[datetime] = None

    # Local-only: set on first insert, never touched by sync
    active: bool = True
    status: str = "active"

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    synced_at: datetime = Field(default_factory=utc_now)
