"""
Read-only audit queries over a reflected lifecycle table.

Used by the command line, where no mapped class is available. Queries are
built from the same active/deleted templates as the repository.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Table, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoSuchTableError
from sqlalchemy.schema import MetaData

from .mixins import LIFECYCLE_FIELDS
from .models import EntityStatus


class TableAuditor:
    """Inspect soft-delete state of one table without mutating it."""

    def __init__(self, engine: Engine, table_name: str):
        self.engine = engine
        try:
            self.table = Table(table_name, MetaData(), autoload_with=engine)
        except NoSuchTableError:
            raise ValueError(f"Table {table_name} does not exist") from None

        missing = [
            name for name in ("id",) + LIFECYCLE_FIELDS if name not in self.table.c
        ]
        if missing:
            raise ValueError(
                f"Table {table_name} is missing lifecycle columns: {', '.join(missing)}"
            )

    def _count(self, status: EntityStatus) -> int:
        stmt = (
            select(func.count())
            .select_from(self.table)
            .where(self.table.c.status == status.value)
        )
        with self.engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())

    def summary(self) -> Dict[str, int]:
        """Return active, inactive and total row counts."""
        active = self._count(EntityStatus.ACTIVE)
        inactive = self._count(EntityStatus.INACTIVE)
        return {"active": active, "inactive": inactive, "total": active + inactive}

    def deleted(
        self,
        actor: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """
        List soft-deleted rows, newest deletion first.

        Args:
            actor: Only rows deleted by this actor
            since: Only rows deleted at or after this time
            until: Only rows deleted at or before this time
        """
        c = self.table.c
        criteria = [c.status == EntityStatus.INACTIVE.value]
        if actor:
            criteria.append(c.deleted_by == actor)
        if since:
            criteria.append(c.deleted_at >= since)
        if until:
            criteria.append(c.deleted_at <= until)

        stmt = (
            select(c.id, c.deleted_at, c.deleted_by, c.updated_by)
            .where(*criteria)
            .order_by(c.deleted_at.desc())
        )
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(stmt)]
