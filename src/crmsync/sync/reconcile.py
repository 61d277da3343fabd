"""
Insert-or-replace of one remote record into its local table.

The remote CRM is the sole authority: when a row already exists every
mirrored attribute is overwritten, with no field-level diffing. Columns the
mapper does not produce (local-only flags, created_at) are left alone.
"""
import enum
from typing import Any, Dict, Type

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel

from crmsync.errors import PersistenceError
from crmsync.models.sync import utc_now


class Outcome(str, enum.Enum):
    INSERTED = "inserted"
    UPDATED = "updated"


class Reconciler:
    """Upserts records keyed by their remote natural id."""

    def __init__(self, engine):
        self.engine = engine

    def reconcile(
        self,
        model: Type[SQLModel],
        natural_id: int,
        attributes: Dict[str, Any],
    ) -> Outcome:
        """
        Insert the record if its id is unknown, otherwise fully replace it.

        Args:
            model: SQLModel table class whose primary key is the natural id.
            natural_id: Remote id, reused verbatim as the primary key.
            attributes: Mirrored column values from a mapper.

        Returns:
            Outcome.INSERTED or Outcome.UPDATED.

        Raises:
            PersistenceError: if the write fails.
        """
        now = utc_now()
        try:
            with Session(self.engine) as s:
                existing = s.get(model, natural_id)
                if existing is None:
                    row = model(
                        id=natural_id,
                        created_at=now,
                        updated_at=now,
                        synced_at=now,
                        **attributes,
                    )
                    s.add(row)
                    s.commit()
                    return Outcome.INSERTED

                for k, v in attributes.items():
                    setattr(existing, k, v)
                existing.updated_at = now
                existing.synced_at = now
                s.add(existing)
                s.commit()
                return Outcome.UPDATED

        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Failed to write {model.__name__} {natural_id}: {exc}"
            ) from exc
