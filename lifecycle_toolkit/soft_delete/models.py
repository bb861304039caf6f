"""
Data models for soft delete operations.

These models define the lifecycle status values, serializable snapshots of a
record's lifecycle fields, and deletion reports for audit tooling.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EntityStatus(str, Enum):
    """Lifecycle status of a soft-deletable record."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class LifecycleSnapshot(BaseModel):
    """Point-in-time copy of a record's lifecycle and audit fields."""

    model_config = ConfigDict(use_enum_values=True, from_attributes=True)

    id: str = Field(..., description="Record identifier")
    entity_type: str = Field(..., description="Name of the record type")
    status: EntityStatus = Field(..., description="Lifecycle status")
    deleted_at: Optional[datetime] = Field(None, description="When it was deactivated")
    deleted_by: Optional[str] = Field(None, description="Who deactivated it")
    created_at: Optional[datetime] = Field(None, description="When it was created")
    updated_at: Optional[datetime] = Field(None, description="Last mutation time")
    created_by: Optional[str] = Field(None, description="Who created it")
    updated_by: Optional[str] = Field(None, description="Who last mutated it")

    @model_validator(mode="after")
    def validate_status_coupling(self) -> "LifecycleSnapshot":
        """Ensure deletion stamps are present exactly when inactive."""
        active = self.status == EntityStatus.ACTIVE
        stamped = self.deleted_at is not None or self.deleted_by is not None
        complete = self.deleted_at is not None and self.deleted_by is not None
        if active and stamped:
            raise ValueError("Active records cannot carry deletion stamps")
        if not active and not complete:
            raise ValueError("Inactive records require deleted_at and deleted_by")
        return self


class DeletionReport(BaseModel):
    """Model for deletion audit reports."""

    start_date: datetime = Field(..., description="Report period start")
    end_date: datetime = Field(..., description="Report period end")
    entity_type: str = Field(..., description="Record type covered by the report")
    total_deletions: int = Field(0, description="Records currently deleted in period")
    by_actor: Dict[str, int] = Field(
        default_factory=dict, description="Deletions by actor"
    )
    by_day: Dict[str, int] = Field(
        default_factory=dict, description="Deletions by ISO calendar day"
    )

    def add_deletion(self, actor: str, deleted_at: datetime) -> None:
        """Add a deletion to the report statistics."""
        self.total_deletions += 1

        self.by_actor[actor] = self.by_actor.get(actor, 0) + 1

        day = deleted_at.date().isoformat()
        self.by_day[day] = self.by_day.get(day, 0) + 1
