"""
Envelope Budget Calculator

DESIGN DECISION: The budget is DERIVED, never stored.
Only two things are persisted: what the user assigned to each category
per month, and the transactions. Every figure in the monthly view is
recomputed from those on each call, so there is no running balance that
could drift out of sync with the ledger.

Per category c and month M:
    assigned   = assignment row (c, M), or 0
    activity   = sum of c's transactions dated in [start(M), end(M))
    available  = sum of assignments for months <= M
               + sum of c's transactions dated before end(M)

Money not yet given a job:
    ready_to_assign = on-budget account balances at end(M)
                    - sum of available over the visible categories

ZERO-SUM: ready_to_assign + sum(available) == total_budget_balance,
exactly, for every month and every history.
"""

from collections import defaultdict
from typing import Iterable, Optional

import structlog

from src.models.finance import (
    Category,
    CategoryBudgetView,
    CategoryGroup,
    CategoryTarget,
    GroupBudget,
    LedgerTransaction,
    MonthBudget,
    MonthlyAssignment,
    RefillType,
    TargetProgress,
)
from src.models.month import MonthKey
from src.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)


def compute_target_progress(
    target: CategoryTarget,
    assigned: int,
    activity: int,
    available: int,
) -> TargetProgress:
    """
    How much is still needed this month to meet `target`.

    REFILL counts money rolled over from earlier months toward the target;
    SET_ASIDE asks for the full amount every month regardless.
    """
    if target.refill_type is RefillType.REFILL:
        carryover = max(0, available - assigned - activity)
        needed = max(0, target.amount - assigned - carryover)
    else:
        needed = max(0, target.amount - assigned)

    if target.amount > 0:
        progress = min(1.0, max(0.0, (target.amount - needed) / target.amount))
    else:
        progress = 1.0

    return TargetProgress(
        target_type=target.target_type,
        amount=target.amount,
        day_of_month=target.day_of_month,
        refill_type=target.refill_type,
        needed=needed,
        progress=progress,
    )


class BudgetCalculator:
    """
    Computes monthly budget snapshots.

    `compute` is pure and works on rows already loaded.
    `compute_month` loads those rows for one user and delegates.

    GUARANTEES:
    - Same stored rows in, same snapshot out
    - No writes, ever
    - The zero-sum identity holds by construction
    """

    def __init__(self, storage: Optional[LedgerStorageInterface] = None):
        self._storage = storage

    @staticmethod
    def compute(
        month: MonthKey,
        groups: list[tuple[CategoryGroup, list[Category]]],
        assignments: Iterable[MonthlyAssignment],
        transactions: Iterable[LedgerTransaction],
        targets: Iterable[CategoryTarget],
        total_budget_balance: int,
    ) -> MonthBudget:
        """
        Build the snapshot for `month` from pre-loaded rows.

        Rows outside the categories in `groups`, assignments after `month`
        and transactions dated on or after the month's end are ignored, so
        callers may pass broader result sets.
        """
        month_key = str(month)
        month_start, month_end = month.range()

        category_ids = {c.id for _, categories in groups for c in categories}

        assigned_now: dict[str, int] = defaultdict(int)
        assigned_total: dict[str, int] = defaultdict(int)
        for row in assignments:
            if row.category_id not in category_ids or row.month > month_key:
                continue
            assigned_total[row.category_id] += row.assigned
            if row.month == month_key:
                assigned_now[row.category_id] = row.assigned

        activity_now: dict[str, int] = defaultdict(int)
        activity_total: dict[str, int] = defaultdict(int)
        for tx in transactions:
            if tx.category_id not in category_ids or tx.date >= month_end:
                continue
            activity_total[tx.category_id] += tx.amount
            if tx.date >= month_start:
                activity_now[tx.category_id] += tx.amount

        target_by_category = {
            t.category_id: t for t in targets if t.category_id in category_ids
        }

        total_available = 0
        group_budgets = []
        for group, categories in groups:
            views = []
            for category in categories:
                assigned = assigned_now[category.id]
                activity = activity_now[category.id]
                available = assigned_total[category.id] + activity_total[category.id]
                total_available += available

                target = target_by_category.get(category.id)
                views.append(CategoryBudgetView(
                    category_id=category.id,
                    assigned=assigned,
                    activity=activity,
                    available=available,
                    target=(
                        compute_target_progress(target, assigned, activity, available)
                        if target is not None else None
                    ),
                ))
            group_budgets.append(GroupBudget(
                group=group,
                categories=categories,
                budgets=views,
            ))

        return MonthBudget(
            month=month_key,
            ready_to_assign=total_budget_balance - total_available,
            total_budget_balance=total_budget_balance,
            total_available=total_available,
            category_groups=group_budgets,
        )

    async def budget_balance(self, user_id: str, month: MonthKey) -> int:
        """Sum of on-budget account balances as of the end of `month`."""
        accounts = await self._storage.list_accounts(user_id, on_budget_only=True)
        if not accounts:
            return 0
        activity = await self._storage.sum_transactions(
            user_id,
            account_ids=[a.id for a in accounts],
            date_before=month.end,
        )
        return sum(a.start_balance for a in accounts) + activity

    async def compute_month(self, user_id: str, month: MonthKey) -> MonthBudget:
        """Load one user's ledger rows and compute the snapshot for `month`."""
        if self._storage is None:
            raise RuntimeError("BudgetCalculator needs storage to load a month")

        groups = await self._storage.list_groups_with_categories(user_id)
        category_ids = [c.id for _, categories in groups for c in categories]

        if category_ids:
            assignments = await self._storage.list_assignments(
                user_id, category_ids, up_to_month=str(month)
            )
            transactions = await self._storage.list_transactions(
                user_id, category_ids=category_ids, date_before=month.end
            )
            targets = await self._storage.list_targets(user_id, category_ids)
        else:
            assignments, transactions, targets = [], [], []

        budget = self.compute(
            month,
            groups,
            assignments,
            transactions,
            targets,
            total_budget_balance=await self.budget_balance(user_id, month),
        )

        logger.debug(
            "budget_computed",
            user_id=user_id,
            month=budget.month,
            ready_to_assign=budget.ready_to_assign,
            categories=len(category_ids),
        )
        return budget
