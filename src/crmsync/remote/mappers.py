"""
Remote record mappers.

Convert raw dicts from the CRM API into (natural_id, attributes) pairs whose
attribute keys map directly onto the SQLModel columns in crmsync.models.crm.
No DB access here; the pipelines hand the result to the Reconciler.

The remote API mixes snake_case and camelCase, sends numbers as strings in
places, and uses ISO 8601 timestamps with or without a "Z" suffix. All of
that is absorbed here so the models only ever see clean Python values.
Timestamps without an offset are taken to be UTC.

Every mapper raises RecordMappingError when the record has no usable id or
has a shape it cannot read; nothing else escapes a mapper.
"""
import functools
import json
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Tuple

from crmsync.errors import RecordMappingError

DEFAULT_BIRTH_DATE = date(1900, 1, 1)
MANAGEMENT_MARKERS = ("GESTÃO", "GESTAO")

Mapped = Tuple[int, Dict[str, Any]]


def natural_id(raw: Any) -> int:
    """Extract the remote id, the local primary key for every resource."""
    if not isinstance(raw, dict):
        raise RecordMappingError(f"Expected an object, got {type(raw).__name__}")
    value = raw.get("id")
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise RecordMappingError(f"Record id is not an integer: {value!r}")
    if isinstance(value, float):
        value = int(value)
    if value in (None, "", 0, "0"):
        raise RecordMappingError(f"Record has no id: {str(raw)[:200]}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise RecordMappingError(f"Record id is not an integer: {value!r}") from exc


def _record_mapper(fn):
    """Turn any shape error raised while mapping into RecordMappingError."""

    @functools.wraps(fn)
    def wrapper(raw, **kwargs):
        try:
            return fn(raw, **kwargs)
        except RecordMappingError:
            raise
        except (TypeError, ValueError, AttributeError, KeyError) as exc:
            raise RecordMappingError(
                f"Cannot map record {str(raw)[:200]}: {exc.__class__.__name__}: {exc}"
            ) from exc

    return wrapper


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 / "YYYY-MM-DD HH:MM:SS" string into aware UTC. Invalid → None."""
    if not value or not isinstance(value, str):
        return None
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_date(value: Any) -> Optional[date]:
    """Keep only the date part of an ISO string. Invalid → None."""
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip().split("T")[0].split(" ")[0])
    except ValueError:
        return None


def _as_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _json_or_none(value: Any) -> Optional[str]:
    return json.dumps(value) if value else None


def _text_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


# ─── Funnel hierarchy ─────────────────────────────────────────────────────────

@_record_mapper
def map_funnel(raw: Dict[str, Any]) -> Mapped:
    funnel_id = natural_id(raw)
    return funnel_id, {"name": raw.get("funil_nome") or f"Funnel {funnel_id}"}


@_record_mapper
def map_funnel_column(raw: Dict[str, Any], *, funnel_id: int) -> Mapped:
    """
    Args:
        raw: Column dict from the per-funnel columns endpoint.
        funnel_id: Funnel that was queried; the column payload does not
                   carry it.
    """
    column_id = natural_id(raw)
    return column_id, {
        "name": raw.get("nome_coluna") or f"Column {column_id}",
        "funnel_id": funnel_id,
        "total_opportunities": _as_int(raw.get("total_oportunidades")) or 0,
        "total_value": _as_float(raw.get("valor_total")),
        "sequence": _as_int(raw.get("sequencia")) or 0,
    }


@_record_mapper
def map_opportunity(raw: Dict[str, Any], *, funnel_id: int, column_id: int) -> Mapped:
    """
    Normalize an opportunity record.

    The column and funnel being paginated are recorded alongside the
    remote's own `crm_column` so a record can always be traced back to
    the branch that synced it.
    """
    opportunity_id = natural_id(raw)
    return opportunity_id, {
        "title": raw.get("title") or "Untitled",
        "value": _as_float(raw.get("value")),
        "funnel_id": funnel_id,
        "column_id": column_id,
        "crm_column": _as_int(raw.get("crm_column")),
        "lead_id": _as_int(raw.get("lead_id")),
        "sequence": _as_int(raw.get("sequence")),
        "status": raw.get("status") or None,
        "loss_reason": _text_or_none(raw.get("loss_reason")),
        "gain_reason": _text_or_none(raw.get("gain_reason")),
        "expected_close_date": _parse_date(raw.get("expectedCloseDate")),
        "sale_channel": _text_or_none(raw.get("sale_channel")),
        "campaign": _text_or_none(raw.get("campaign")),
        "owner": _text_or_none(raw.get("user")),
        "last_column_change": _parse_datetime(raw.get("last_column_change")),
        "last_status_change": _parse_datetime(raw.get("last_status_change")),
        "gain_date": _parse_datetime(raw.get("gain_date")),
        "lost_date": _parse_datetime(raw.get("lost_date")),
        "reopen_date": _parse_datetime(raw.get("reopen_date")),
        "await_column_approved": bool(raw.get("await_column_approved")),
        "await_column_approved_user": _text_or_none(raw.get("await_column_approved_user")),
        "reject_approval": bool(raw.get("reject_appro")),
        "reject_approval_desc": _text_or_none(raw.get("reject_appro_desc")),
        "archived": bool(raw.get("archived")),
        "conf_installment_json": _json_or_none(raw.get("conf_installment")),
        "fields_json": _json_or_none(raw.get("fields")),
        "lead_data_json": _json_or_none(raw.get("dataLead")),
        "remote_created_at": _parse_datetime(raw.get("createDate")),
        "remote_updated_at": _parse_datetime(raw.get("updateDate")),
    }


# ─── Flat resources ───────────────────────────────────────────────────────────

@_record_mapper
def map_loss_reason(raw: Dict[str, Any]) -> Mapped:
    return natural_id(raw), {"reason": raw.get("motivo") or None}


def find_management_sub(unit: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the sub-department whose name marks it as the unit's management team."""
    for sub in unit.get("subs") or []:
        if not isinstance(sub, dict):
            continue
        name = str(sub.get("name") or "").upper()
        if any(marker in name for marker in MANAGEMENT_MARKERS):
            return sub
    return None


@_record_mapper
def map_organizational_unit(raw: Dict[str, Any]) -> Mapped:
    """
    Normalize a sub-department of the configured parent department.

    Dates arrive as createDate/updateDate or create_date/update_date
    depending on the API version; the department id as `department` or
    `department_id`.
    """
    unit_id = natural_id(raw)

    management_id = None
    management_users = None
    management = find_management_sub(raw)
    if management is not None:
        management_id = _as_int(management.get("id"))
        users = management.get("users")
        if not isinstance(users, list):
            users = []
        users = [u for u in users if u is not None]
        management_users = json.dumps(users) if users else None

    permissions = raw.get("permissionsGroups") or raw.get("permissions_groups")
    return unit_id, {
        "name": raw.get("name") or "",
        "department_id": _as_int(raw.get("department") or raw.get("department_id")),
        "show_sac360": _as_int(raw.get("show_sac360")) or 0,
        "show_crm": _as_int(raw.get("show_crm")) or 0,
        "remote_created_at": _parse_datetime(raw.get("createDate") or raw.get("create_date")),
        "remote_updated_at": _parse_datetime(raw.get("updateDate") or raw.get("update_date")),
        "subs_json": _json_or_none(raw.get("subs")),
        "users_json": _json_or_none(raw.get("users")),
        "permissions_groups_json": _json_or_none(permissions),
        "voip_json": _json_or_none(raw.get("voip")),
        "branches_json": _json_or_none(raw.get("branches")),
        "accs_json": _json_or_none(raw.get("accs")),
        "google_business_messages_json": _json_or_none(raw.get("google_business_messages")),
        "management_department_id": management_id,
        "management_user_ids": management_users,
    }


@_record_mapper
def map_sales_rep(raw: Dict[str, Any]) -> Mapped:
    """
    Normalize a remote user. birth_date is mandatory locally, so a missing or
    invalid value falls back to 1900-01-01.
    """
    rep_id = natural_id(raw)
    return rep_id, {
        "name": raw.get("name") or "",
        "last_name": raw.get("lastName") or "",
        "email": raw.get("email") or "",
        "cpf": _text_or_none(raw.get("cpf")),
        "username": raw.get("username") or "",
        "birth_date": _parse_date(raw.get("birthDate")) or DEFAULT_BIRTH_DATE,
        "telephone": _text_or_none(raw.get("telephone")),
        "photo": _text_or_none(raw.get("photo")),
        "admin": _as_int(raw.get("admin")) or 0,
        "branch": _text_or_none(raw.get("branch")),
        "position_company": _text_or_none(raw.get("position_company")),
        "skills": _text_or_none(raw.get("skills")),
        "state": _text_or_none(raw.get("state")),
        "city": _text_or_none(raw.get("city")),
        "whatsapp_automation": _text_or_none(raw.get("whatsapp_automation")),
        "last_login": _parse_datetime(raw.get("last_login")),
        "last_action": _parse_datetime(raw.get("last_action")),
    }
