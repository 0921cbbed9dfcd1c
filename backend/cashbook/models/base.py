from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import event

from ..errors import ImmutableRecordError


@dataclass(frozen=True)
class Reference:
    """
    Tagged pointer to the record that caused a ledger entry.

    Used for display and audit only; business rules never branch on it.
    """
    kind: str
    id: int

    @classmethod
    def of(cls, record) -> "Reference":
        return cls(kind=record.__tablename__, id=record.id)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "id": self.id}


class ReferenceMixin:
    """Columns for a polymorphic ``{kind, id}`` reference."""

    @property
    def reference(self) -> Reference | None:
        if self.reference_kind is None or self.reference_id is None:
            return None
        return Reference(self.reference_kind, self.reference_id)

    @reference.setter
    def reference(self, value: Reference | None) -> None:
        self.reference_kind = value.kind if value else None
        self.reference_id = value.id if value else None


def make_append_only(model) -> None:
    """Reject ORM updates and deletes of persisted rows of ``model``."""

    @event.listens_for(model, "before_update")
    def _reject_update(mapper, connection, target):
        raise ImmutableRecordError(f"{model.__tablename__} rows are append-only")

    @event.listens_for(model, "before_delete")
    def _reject_delete(mapper, connection, target):
        raise ImmutableRecordError(f"{model.__tablename__} rows are append-only")
