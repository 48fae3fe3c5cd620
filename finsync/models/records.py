"""
Record Models for finsync

These models define the strict schemas for the rows we mirror from the
remote backend. They are designed to:
1. Validate raw rows (JSON or spreadsheet strings) at the boundary
2. Be immutable once observed - changes produce new instances
3. Carry their own table name and ordering for the sync store

DESIGN DECISION: Records are frozen Pydantic v2 models.
Readers receive snapshots of these, so a reader can never corrupt
the store by mutating a record it was handed.
"""

import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """Direction of money for a transaction."""
    INCOME = "income"
    EXPENSE = "expense"


class GoalStatus(str, Enum):
    """Progress status of a savings goal."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# =============================================================================
# SYNCED RECORDS
# =============================================================================

class SyncedRecord(BaseModel):
    """
    Base for every row the sync store mirrors.

    Subclasses declare which table they live in and how a snapshot
    of them should be ordered.
    """
    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    table_name: ClassVar[str] = ""
    order_by: ClassVar[str] = "id"
    order_descending: ClassVar[bool] = False

    id: str = Field(
        ...,
        min_length=1,
        description="Stable unique identifier"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of the record"
    )
    client_ref: Optional[str] = Field(
        default=None,
        description="Correlation reference of the optimistic write that created it"
    )

    def replace(self, patch: dict[str, Any]) -> "SyncedRecord":
        """Return a validated copy with `patch` applied."""
        data = self.model_dump()
        data.update(patch)
        return type(self).model_validate(data)


class Transaction(SyncedRecord):
    """
    A single income or expense entry.

    Amounts are signed: expenses created through the session are
    stored negative, income positive.
    """
    table_name: ClassVar[str] = "transactions"
    order_by: ClassVar[str] = "date"
    order_descending: ClassVar[bool] = True

    type: TransactionType = Field(
        ...,
        description="income or expense"
    )
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Free-text category chosen by the user"
    )
    amount: Decimal = Field(
        ...,
        decimal_places=2,
        description="Signed amount"
    )
    date: dt.date = Field(
        ...,
        description="Day the transaction happened"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500,
    )

    @property
    def magnitude(self) -> Decimal:
        return abs(self.amount)


class Goal(SyncedRecord):
    """A savings goal with a target amount and a deadline."""
    table_name: ClassVar[str] = "goals"
    order_by: ClassVar[str] = "deadline"
    order_descending: ClassVar[bool] = False

    title: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    target: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount to reach"
    )
    current: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        decimal_places=2,
        description="Amount saved so far"
    )
    deadline: dt.date
    description: Optional[str] = Field(
        default=None,
        max_length=1000,
    )
    status: GoalStatus = GoalStatus.IN_PROGRESS


# =============================================================================
# DRAFTS - user input before an id exists
# =============================================================================

class TransactionDraft(BaseModel):
    """
    What the user typed into the add-transaction form.

    The amount is entered unsigned; the sign comes from the type.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType = TransactionType.EXPENSE
    category: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    date: dt.date = Field(default_factory=dt.date.today)
    description: Optional[str] = Field(default=None, max_length=500)

    def to_row(self, owner_id: str) -> dict[str, Any]:
        signed = -self.amount if self.type == TransactionType.EXPENSE else self.amount
        return {
            "user_id": owner_id,
            "type": self.type.value,
            "category": self.category,
            "amount": signed,
            "date": self.date,
            "description": self.description,
        }


class GoalDraft(BaseModel):
    """What the user typed into the add-goal form."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=100)
    target: Decimal = Field(..., gt=0, decimal_places=2)
    current: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    deadline: dt.date
    description: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode='after')
    def validate_deadline(self) -> 'GoalDraft':
        """A new goal cannot already be overdue."""
        if self.deadline < dt.date.today():
            raise ValueError("Deadline cannot be in the past")
        return self

    def to_row(self, owner_id: str) -> dict[str, Any]:
        status = (
            GoalStatus.COMPLETED if self.current >= self.target
            else GoalStatus.IN_PROGRESS
        )
        return {
            "user_id": owner_id,
            "title": self.title,
            "category": self.category,
            "target": self.target,
            "current": self.current,
            "deadline": self.deadline,
            "description": self.description,
            "status": status.value,
        }
