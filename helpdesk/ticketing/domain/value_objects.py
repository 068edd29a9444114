"""
Ticketing Value Objects
=======================

Immutable value objects for the ticketing domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

from helpdesk.config import Priority, TicketStatus, VALID_PRIORITIES, WEEKDAYS
from helpdesk.core import ConfigurationException


# Resolution / first-response budgets (minutes) used when the policy table is empty
DEFAULT_POLICY_MINUTES: Dict[Priority, Dict[str, int]] = {
    Priority.LOW: {"resolution_minutes": 2880, "response_minutes": 60},       # 48h
    Priority.MEDIUM: {"resolution_minutes": 1440, "response_minutes": 60},    # 24h
    Priority.HIGH: {"resolution_minutes": 480, "response_minutes": 60},       # 8h
    Priority.CRITICAL: {"resolution_minutes": 120, "response_minutes": 60},   # 2h
}


class SLACalculator:
    """
    Pure functions for SLA clock arithmetic.

    Stateless utility class - all timer math in one place.
    """

    @staticmethod
    def calculate_deadline(
        started_at: datetime,
        budget_minutes: int,
        paused_minutes: int = 0
    ) -> datetime:
        """
        Calculate a deadline from a clock start.

        Args:
            started_at: When the clock started
            budget_minutes: Policy budget for the clock
            paused_minutes: Accumulated pause to add on top

        Returns:
            The deadline
        """
        return started_at + timedelta(minutes=budget_minutes + paused_minutes)

    @staticmethod
    def paused_minutes(paused: timedelta) -> int:
        """Whole minutes charged for a pause, rounded up."""
        if paused <= timedelta(0):
            return 0
        return math.ceil(paused.total_seconds() / 60)

    @staticmethod
    def next_weekday(now: datetime, weekday: str) -> date:
        """
        Next occurrence of a weekday strictly after `now`'s date.

        Example:
            now = Friday 2026-10-23, weekday = "friday" -> 2026-10-30
        """
        target = WEEKDAYS.index(weekday.lower())
        days_ahead = (target - now.weekday()) % 7 or 7
        return now.date() + timedelta(days=days_ahead)


@dataclass(frozen=True)
class SLAPolicy:
    """Budgets for one priority level."""
    priority: Priority
    resolution_budget_minutes: int
    response_budget_minutes: int

    @property
    def resolution_budget(self) -> timedelta:
        return timedelta(minutes=self.resolution_budget_minutes)

    @property
    def response_budget(self) -> timedelta:
        return timedelta(minutes=self.response_budget_minutes)


class SLAPolicyTable(BaseModel):
    """
    Priority -> SLA budgets lookup.

    Read by every SLA (re)calculation. Safe to share between concurrent
    readers; replaced wholesale when the table changes.
    """
    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    policies: Dict[Priority, SLAPolicy] = Field(default_factory=dict)

    @field_validator("policies")
    @classmethod
    def validate_policies(cls, v: Dict[Priority, SLAPolicy]) -> Dict[Priority, SLAPolicy]:
        """A table must not be empty at first use."""
        if not v:
            raise ValueError("SLA policy table cannot be empty")
        return v

    @classmethod
    def from_policies(cls, policies) -> "SLAPolicyTable":
        """Build a table from an iterable of SLAPolicy."""
        return cls(policies={p.priority: p for p in policies})

    @classmethod
    def defaults(cls) -> "SLAPolicyTable":
        """Built-in defaults, used to seed an empty store."""
        return SLAConfig().to_policy_table()

    def get(self, priority: Priority) -> SLAPolicy:
        """Get the policy for a priority."""
        try:
            return self.policies[Priority(priority)]
        except (KeyError, ValueError):
            raise ConfigurationException(
                f"No SLA policy configured for priority {priority}",
                {"priority": str(priority)}
            )

    def resolution_budget_minutes(self, priority: Priority) -> int:
        return self.get(priority).resolution_budget_minutes

    def response_budget_minutes(self, priority: Priority) -> int:
        return self.get(priority).response_budget_minutes


class PolicyDefaults(BaseModel):
    """Budgets for one priority as written in the config file."""
    resolution_minutes: int = Field(ge=1, description="Resolution budget in minutes")
    response_minutes: int = Field(ge=1, description="First-response budget in minutes")


class VendorScheduleConfig(BaseModel):
    """When the vendor visits; used for the vendor-wait audit note."""
    visit_weekday: Optional[str] = Field(
        default=None,
        description="Weekday name; None falls back to settings.vendor_visit_weekday"
    )

    @field_validator("visit_weekday")
    @classmethod
    def validate_weekday(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if v not in WEEKDAYS:
            raise ValueError(f"visit_weekday must be one of {WEEKDAYS}")
        return v


class SLAConfig(BaseModel):
    """
    SLA configuration loaded from YAML.

    Carries the defaults used to seed an empty policy table and the vendor
    schedule. This is a value object - immutable and defined by its attributes.
    """
    default_policies: Dict[str, PolicyDefaults] = Field(
        default_factory=dict,
        validate_default=True,
        description="Seed budgets in minutes by priority"
    )
    vendor_schedule: VendorScheduleConfig = Field(default_factory=VendorScheduleConfig)

    @field_validator("default_policies", mode="before")
    @classmethod
    def validate_default_policies(cls, v: Optional[dict]) -> dict:
        """Normalise priority keys and fill every missing priority."""
        v = {str(k).upper(): val for k, val in (v or {}).items()}

        unknown = set(v) - {p.value for p in VALID_PRIORITIES}
        if unknown:
            raise ValueError(f"Unknown priorities in default_policies: {sorted(unknown)}")

        for priority in VALID_PRIORITIES:
            if priority.value not in v:
                v[priority.value] = dict(DEFAULT_POLICY_MINUTES[priority])

        return v

    def to_policy_table(self) -> SLAPolicyTable:
        """Convert the seed section into a policy table."""
        return SLAPolicyTable.from_policies(
            SLAPolicy(
                priority=Priority(key),
                resolution_budget_minutes=value.resolution_minutes,
                response_budget_minutes=value.response_minutes,
            )
            for key, value in self.default_policies.items()
        )


@dataclass(frozen=True)
class TicketChanges:
    """
    Requested changes for a ticket.

    Fields left as None are not requested.
    """
    status: Optional[TicketStatus] = None
    priority: Optional[Priority] = None

    @property
    def is_empty(self) -> bool:
        return self.status is None and self.priority is None
