import logging
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from models import Budget
from periods import Period
from repositories import BudgetRepository


logger = logging.getLogger(__name__)

ALLOWED_BUDGET_CATEGORIES = (
    "Food",
    "Housing",
    "Travel",
    "Utilities",
    "Entertainment",
    "Other",
)
_ALLOWED_LOWER = {name.lower() for name in ALLOWED_BUDGET_CATEGORIES}


def is_linkable_category(category: Optional[str]) -> bool:
    return bool(category) and category.strip().lower() in _ALLOWED_LOWER


def budget_window(budget: Budget) -> Period:
    return Period(f"budget-{budget.id}", budget.start_date, budget.end_date)


def match_budget(
    user_id: int,
    category: Optional[str],
    on_date: date,
    budgets: Iterable[Budget],
) -> Optional[Budget]:
    """First active budget of ``user_id`` covering the category and date."""
    if not is_linkable_category(category):
        return None
    wanted = category.strip().lower()
    for budget in budgets:
        if budget.user_id != user_id or not budget.active:
            continue
        if (budget.category or "").strip().lower() != wanted:
            continue
        if budget_window(budget).contains(on_date):
            return budget
    return None


class BudgetLinker:
    def __init__(self, budgets: BudgetRepository) -> None:
        self.budgets = budgets

    def link(
        self, user_id: int, category: Optional[str], on_date: date
    ) -> Optional[int]:
        if not is_linkable_category(category):
            return None
        try:
            candidates = self.budgets.find_active_for_user_category_window(
                user_id, category, on_date
            )
        except SQLAlchemyError as exc:
            logger.warning(
                f"budget_link: lookup failed user_id={user_id} "
                f"category={category} error={exc!r}"
            )
            self.budgets.rollback()
            return None
        match = match_budget(user_id, category, on_date, candidates)
        return match.id if match else None
