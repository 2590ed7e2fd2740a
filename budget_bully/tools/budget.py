"""Suggested spending limits: 50/30/20 split of average monthly income.

Income is averaged over the trailing INCOME_WINDOW_MONTHS. Each bucket's
share of income is divided between its categories in proportion to what was
actually spent in them over the same window.
"""

import logging
from collections import defaultdict
from datetime import date
from typing import Iterable, Optional

from budget_bully.models import Account, BudgetCategory, CategoryLimit, Transaction

logger = logging.getLogger(__name__)

INCOME_WINDOW_MONTHS = 5

NEEDS = [
    BudgetCategory.BANK_FEES,
    BudgetCategory.GROCERIES,
    BudgetCategory.INSURANCE,
    BudgetCategory.RENT_AND_UTILITIES,
    BudgetCategory.TRANSPORTATION,
]
WANTS = [
    BudgetCategory.EATING_OUT,
    BudgetCategory.ENTERTAINMENT,
    BudgetCategory.SUBSCRIPTIONS,
    BudgetCategory.PERSONAL_CARE,
    BudgetCategory.GENERAL_SERVICES,
    BudgetCategory.GENERAL_MERCHANDISE,
    BudgetCategory.TRAVEL,
]
SAVINGS = [
    BudgetCategory.SAVINGS,
    BudgetCategory.LOAN_PAYMENTS,
]

# bucket name → (categories, share of income)
BUCKETS: dict[str, tuple[list[BudgetCategory], float]] = {
    "needs": (NEEDS, 0.50),
    "wants": (WANTS, 0.30),
    "savings": (SAVINGS, 0.20),
}


def window_start(today: date, months: int = INCOME_WINDOW_MONTHS) -> date:
    """First day of the month `months` calendar months before `today`."""
    y, m = divmod(today.year * 12 + (today.month - 1) - months, 12)
    return date(y, m + 1, 1)


def average_monthly_income(
    transactions: Iterable[Transaction],
    accounts: Iterable[Account],
    today: Optional[date] = None,
) -> float:
    """Average monthly inflow into depository accounts over the income window."""
    today = today or date.today()
    start = window_start(today)
    depository = {a.id for a in accounts if a.is_depository}

    total = sum(
        t.amount for t in transactions
        if t.amount > 0 and t.account_id in depository and start <= t.date <= today
    )
    return total / INCOME_WINDOW_MONTHS


def category_spend(transactions: Iterable[Transaction], today: Optional[date] = None) -> dict[BudgetCategory, float]:
    """Absolute outflow per category over the income window."""
    today = today or date.today()
    start = window_start(today)
    spend: dict[BudgetCategory, float] = defaultdict(float)
    for t in transactions:
        if t.amount < 0 and start <= t.date <= today:
            spend[t.category] += abs(t.amount)
    return spend


def compute_limits(
    user_id: str,
    transactions: list[Transaction],
    accounts: list[Account],
    today: Optional[date] = None,
) -> list[CategoryLimit]:
    """Suggested limit for every needs/wants/savings category, plus INCOME.

    Sign convention: the INCOME entry's limit is the NEGATIVE of average
    monthly income, i.e. an income ceiling expressed as a negative spending
    limit. Every other limit is >= 0.
    """
    today = today or date.today()
    income = average_monthly_income(transactions, accounts, today)
    spend = category_spend(transactions, today)

    limits: list[CategoryLimit] = []
    for bucket, (categories, ratio) in BUCKETS.items():
        bucket_total = sum(spend.get(c, 0.0) for c in categories)
        bucket_budget = income * ratio
        for c in categories:
            share = spend.get(c, 0.0) / bucket_total if bucket_total else 0.0
            limits.append(CategoryLimit(category=c, limit=bucket_budget * share))
        logger.debug("Bucket %s: spend %.2f, budget %.2f", bucket, bucket_total, bucket_budget)

    limits.append(CategoryLimit(category=BudgetCategory.INCOME, limit=-income))
    logger.info("Computed %d limits for user %s (avg monthly income %.2f)", len(limits), user_id, income)
    return limits
