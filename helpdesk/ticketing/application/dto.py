"""
Ticketing Application DTOs
==========================

Data Transfer Objects exchanged with the outer request/scheduling layer.

These Pydantic models handle validation of incoming requests and
serialization of operation results. Following YAGNI - only what's needed.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from helpdesk.config import Priority, TicketStatus
from helpdesk.ticketing.domain import TicketChanges


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]
TicketStatusStr = Literal["TODO", "IN_PROGRESS", "WAITING_VENDOR", "RESOLVED", "CANCELLED"]


# ========== Request DTOs ==========

class TicketCreateDTO(BaseModel):
    """DTO for opening a ticket."""
    requester_id: str = Field(..., min_length=1, description="Requester user ID")
    title: str = Field(..., min_length=1, max_length=500, description="Ticket title")
    description: str = Field(..., min_length=1, description="Initial message")
    priority: PriorityStr = Field(default="MEDIUM", description="Ticket priority")
    number: Optional[str] = Field(None, description="Human-facing number, if already assigned")
    attachments: List[str] = Field(default_factory=list)


class BulkUpdateFields(BaseModel):
    """Fields applied to every ticket of a bulk update."""
    status: Optional[TicketStatusStr] = None
    priority: Optional[PriorityStr] = None
    assignee_id: Optional[str] = None

    def to_changes(self) -> TicketChanges:
        return TicketChanges(
            status=TicketStatus(self.status) if self.status else None,
            priority=Priority(self.priority) if self.priority else None,
        )


# ========== Response DTOs ==========

class BulkUpdateResult(BaseModel):
    """Outcome of a bulk update."""
    updated_count: int = Field(..., description="Tickets changed and persisted")
    failed_ids: List[str] = Field(default_factory=list, description="Tickets skipped")


class ScanReport(BaseModel):
    """Outcome of one breach scanner run."""
    scanned_at: datetime
    resolution_breached_ids: List[str] = Field(default_factory=list)
    first_response_breached_ids: List[str] = Field(default_factory=list)
    failed_ids: List[str] = Field(default_factory=list)

    @property
    def breach_count(self) -> int:
        return len(self.resolution_breached_ids) + len(self.first_response_breached_ids)
