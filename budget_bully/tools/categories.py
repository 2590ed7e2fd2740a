"""Fold Plaid personal-finance categories into the budgeting taxonomy.

Two-stage lookup: a detailed-code override table wins outright; otherwise the
primary code goes through a small remap and, if it names a budget category,
passes through. Anything unrecognised lands in OTHER.
"""

import logging

from budget_bully.models import BudgetCategory

logger = logging.getLogger(__name__)

DETAILED_OVERRIDES: dict[str, BudgetCategory] = {
    # Food and drink
    "FOOD_AND_DRINK_COFFEE": BudgetCategory.EATING_OUT,
    "FOOD_AND_DRINK_FAST_FOOD": BudgetCategory.EATING_OUT,
    "FOOD_AND_DRINK_RESTAURANTS": BudgetCategory.EATING_OUT,
    "FOOD_AND_DRINK_VENDING_MACHINES": BudgetCategory.EATING_OUT,
    "FOOD_AND_DRINK_OTHER_FOOD_AND_DRINK": BudgetCategory.EATING_OUT,
    "FOOD_AND_DRINK_BEER_WINE_AND_LIQUOR": BudgetCategory.ENTERTAINMENT,
    "FOOD_AND_DRINK_GROCERIES": BudgetCategory.GROCERIES,
    # Services and personal care
    "GENERAL_SERVICES_INSURANCE": BudgetCategory.INSURANCE,
    "PERSONAL_CARE_GYMS_AND_FITNESS_CENTERS": BudgetCategory.SUBSCRIPTIONS,
    "PERSONAL_CARE_LAUNDRY_AND_DRY_CLEANING": BudgetCategory.RENT_AND_UTILITIES,
    # Money moved out to savings
    "TRANSFER_OUT_INVESTMENT_AND_RETIREMENT_FUNDS": BudgetCategory.SAVINGS,
    "TRANSFER_OUT_SAVINGS": BudgetCategory.SAVINGS,
}

PRIMARY_REMAP: dict[str, BudgetCategory] = {
    "GOVERNMENT_AND_NON_PROFIT": BudgetCategory.BANK_FEES,
    "HOME_IMPROVEMENT": BudgetCategory.GENERAL_MERCHANDISE,
    "MEDICAL": BudgetCategory.OTHER,
}

# Primary codes that are already budget categories
_PASS_THROUGH = {c.value: c for c in BudgetCategory}


def map_category(detailed_code: str | None, primary_code: str | None) -> BudgetCategory:
    """Return the budget category for a provider (detailed, primary) code pair.

    Total and deterministic: never raises, unknown codes map to OTHER.
    """
    detailed = (detailed_code or "").strip().upper()
    if detailed in DETAILED_OVERRIDES:
        return DETAILED_OVERRIDES[detailed]

    primary = (primary_code or "").strip().upper()
    if primary in PRIMARY_REMAP:
        return PRIMARY_REMAP[primary]
    if primary in _PASS_THROUGH:
        return _PASS_THROUGH[primary]

    if primary:
        logger.debug("Unmapped provider category %s/%s, using OTHER", primary, detailed)
    return BudgetCategory.OTHER
