"""
Finance Data Models

Envelope budgeting records and the computed monthly budget view.

CRITICAL: Money is always an integer number of minor units (cents).
Positive transaction amounts are inflows, negative amounts are outflows.
Floats never appear in stored amounts.

DESIGN DECISION: MonthlyAssignment is an upsert target keyed by
(category_id, month), not an append log. "Cumulative assigned" is then a
pure function of the current table contents.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from src.dates import ensure_aware
from src.models.calendar import new_id
from src.models.month import MonthKey


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CASH = "cash"
    CREDIT_CARD = "credit_card"


class AccountGroup(str, Enum):
    """
    Account grouping.

    Only CASH accounts are on-budget: their money must be assigned to
    categories. LOANS and TRACKING accounts are outside the budget.
    """
    CASH = "cash"
    LOANS = "loans"
    TRACKING = "tracking"

    @property
    def on_budget(self) -> bool:
        return self is AccountGroup.CASH


class TargetType(str, Enum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    YEARLY = "yearly"


class RefillType(str, Enum):
    """
    How a target treats money rolled over from earlier months.

    REFILL:    top the category up to the target; rollover counts.
    SET_ASIDE: assign the full target every month; rollover ignored.
    """
    REFILL = "refill"
    SET_ASIDE = "set_aside"


# =============================================================================
# LEDGER RECORDS
# =============================================================================

class Account(BaseModel):
    """A money account. Balance = start_balance + sum(transactions)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    user_id: str
    name: str = Field(..., min_length=1, max_length=100)
    account_type: AccountType = AccountType.CHECKING
    group: AccountGroup = AccountGroup.CASH
    on_budget: bool = True
    start_balance: int = Field(default=0, description="Opening balance in cents")
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    is_archived: bool = False
    sort_order: int = 0


class CategoryGroup(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    user_id: str
    name: str = Field(..., min_length=1, max_length=100)
    sort_order: int = 0
    is_hidden: bool = False


class Category(BaseModel):
    """A budget category ("envelope")."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    user_id: str
    group_id: str
    name: str = Field(..., min_length=1, max_length=100)
    sort_order: int = 0
    is_hidden: bool = False


class CategoryTarget(BaseModel):
    """At most one per category."""

    category_id: str
    user_id: str
    target_type: TargetType = TargetType.MONTHLY
    amount: int = Field(..., ge=0, description="Target amount in cents")
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    refill_type: RefillType = RefillType.REFILL


class MonthlyAssignment(BaseModel):
    """Money assigned to a category for one month. One row per key."""

    user_id: str
    category_id: str
    month: str = Field(..., description="YYYY-MM")
    assigned: int = Field(default=0, description="Assigned amount in cents")
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("month")
    @classmethod
    def validate_month(cls, v: str) -> str:
        MonthKey.parse(v)
        return v

    @property
    def key(self) -> tuple[str, str]:
        return self.category_id, self.month


class LedgerTransaction(BaseModel):
    """A signed money movement on an account, optionally categorized."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    user_id: str
    account_id: str
    category_id: Optional[str] = None
    date: datetime
    amount: int = Field(..., description="Cents; + inflow, - outflow")
    payee: Optional[str] = Field(default=None, max_length=200)
    memo: Optional[str] = Field(default=None, max_length=500)
    is_cleared: bool = False
    transfer_account_id: Optional[str] = None

    @field_validator("date")
    @classmethod
    def make_aware(cls, v: datetime) -> datetime:
        return ensure_aware(v)


# =============================================================================
# COMPUTED BUDGET VIEW
# =============================================================================

class TargetProgress(BaseModel):
    target_type: TargetType
    amount: int
    day_of_month: Optional[int] = None
    refill_type: RefillType
    needed: int = Field(..., ge=0, description="Still to assign this month")
    progress: float = Field(..., ge=0.0, le=1.0)

    @property
    def is_funded(self) -> bool:
        return self.needed == 0


class CategoryBudgetView(BaseModel):
    category_id: str
    assigned: int = Field(..., description="Assigned this month")
    activity: int = Field(..., description="Transaction sum within this month")
    available: int = Field(..., description="Cumulative assigned + cumulative activity")
    target: Optional[TargetProgress] = None

    @property
    def is_overspent(self) -> bool:
        return self.available < 0


class GroupBudget(BaseModel):
    group: CategoryGroup
    categories: list[Category] = Field(default_factory=list)
    budgets: list[CategoryBudgetView] = Field(default_factory=list)


class MonthBudget(BaseModel):
    """
    Budget snapshot for one month.

    Zero-sum identity:
        ready_to_assign + total_available == total_budget_balance
    """

    month: str
    ready_to_assign: int
    total_budget_balance: int
    total_available: int
    category_groups: list[GroupBudget] = Field(default_factory=list)

    def budget_for(self, category_id: str) -> Optional[CategoryBudgetView]:
        for group in self.category_groups:
            for view in group.budgets:
                if view.category_id == category_id:
                    return view
        return None

    @property
    def all_budgets(self) -> list[CategoryBudgetView]:
        return [view for group in self.category_groups for view in group.budgets]


class AccountBalance(BaseModel):
    account: Account
    balance: int


# =============================================================================
# MONEY FORMATTING
# =============================================================================

def cents_to_display(cents: int) -> str:
    """12345 -> "123,45"; -5 -> "-0,05"."""
    sign = "-" if cents < 0 else ""
    units, rest = divmod(abs(cents), 100)
    return f"{sign}{units},{rest:02d}"


def format_currency(cents: int, currency: str = "EUR") -> str:
    """7000 -> "€70,00"."""
    symbol = "€" if currency == "EUR" else currency
    return f"{symbol}{cents_to_display(cents)}"


def parse_amount(value: str) -> int:
    """
    Parse a user-entered amount into cents.

    Accepts "123,45", "123.45", "€ 12" and "-3,5". Unparseable input
    yields 0, matching how an empty amount field is treated.
    """
    cleaned = "".join(ch for ch in value if ch.isdigit() or ch in ",.-")
    cleaned = cleaned.replace(",", ".")
    if not cleaned or cleaned in ("-", ".", "-."):
        return 0
    negative = cleaned.startswith("-")
    cleaned = cleaned.lstrip("-")
    whole, _, fraction = cleaned.partition(".")
    fraction = fraction.replace(".", "")
    try:
        units = int(whole or "0")
    except ValueError:
        return 0
    # Round half up on the third decimal
    digits = (fraction + "000")[:3]
    cents = units * 100 + int(digits[:2])
    if int(digits[2]) >= 5:
        cents += 1
    return -cents if negative else cents
