"""Tests for the provider -> budget category mapping table."""

import pytest

from budget_bully.models import BudgetCategory
from budget_bully.tools.categories import DETAILED_OVERRIDES, PRIMARY_REMAP, map_category

PLAID_PRIMARIES = [
    "INCOME",
    "TRANSFER_IN",
    "TRANSFER_OUT",
    "LOAN_PAYMENTS",
    "BANK_FEES",
    "ENTERTAINMENT",
    "FOOD_AND_DRINK",
    "GENERAL_MERCHANDISE",
    "HOME_IMPROVEMENT",
    "MEDICAL",
    "PERSONAL_CARE",
    "GENERAL_SERVICES",
    "GOVERNMENT_AND_NON_PROFIT",
    "TRANSPORTATION",
    "TRAVEL",
    "RENT_AND_UTILITIES",
]


class TestDetailedOverrides:
    """Detailed codes that move a transaction out of its primary category."""

    @pytest.mark.parametrize(
        "detailed,primary,expected",
        [
            ("FOOD_AND_DRINK_COFFEE", "FOOD_AND_DRINK", BudgetCategory.EATING_OUT),
            ("FOOD_AND_DRINK_FAST_FOOD", "FOOD_AND_DRINK", BudgetCategory.EATING_OUT),
            ("FOOD_AND_DRINK_RESTAURANTS", "FOOD_AND_DRINK", BudgetCategory.EATING_OUT),
            ("FOOD_AND_DRINK_VENDING_MACHINES", "FOOD_AND_DRINK", BudgetCategory.EATING_OUT),
            ("FOOD_AND_DRINK_OTHER_FOOD_AND_DRINK", "FOOD_AND_DRINK", BudgetCategory.EATING_OUT),
            ("FOOD_AND_DRINK_BEER_WINE_AND_LIQUOR", "FOOD_AND_DRINK", BudgetCategory.ENTERTAINMENT),
            ("FOOD_AND_DRINK_GROCERIES", "FOOD_AND_DRINK", BudgetCategory.GROCERIES),
            ("GENERAL_SERVICES_INSURANCE", "GENERAL_SERVICES", BudgetCategory.INSURANCE),
            ("PERSONAL_CARE_GYMS_AND_FITNESS_CENTERS", "PERSONAL_CARE", BudgetCategory.SUBSCRIPTIONS),
            ("PERSONAL_CARE_LAUNDRY_AND_DRY_CLEANING", "PERSONAL_CARE", BudgetCategory.RENT_AND_UTILITIES),
            ("TRANSFER_OUT_INVESTMENT_AND_RETIREMENT_FUNDS", "TRANSFER_OUT", BudgetCategory.SAVINGS),
            ("TRANSFER_OUT_SAVINGS", "TRANSFER_OUT", BudgetCategory.SAVINGS),
        ],
    )
    def test_override(self, detailed, primary, expected):
        assert map_category(detailed, primary) == expected

    def test_table_has_exactly_the_documented_overrides(self):
        assert len(DETAILED_OVERRIDES) == 12

    @pytest.mark.parametrize("primary", PLAID_PRIMARIES + ["", "NOT_A_CODE"])
    def test_detail_wins_over_any_primary(self, primary):
        """The detailed override applies no matter what the primary code says."""
        assert map_category("FOOD_AND_DRINK_COFFEE", primary) == BudgetCategory.EATING_OUT
        assert map_category("TRANSFER_OUT_SAVINGS", primary) == BudgetCategory.SAVINGS

    def test_detail_override_beats_primary_remap(self):
        assert map_category("GENERAL_SERVICES_INSURANCE", "MEDICAL") == BudgetCategory.INSURANCE


class TestPrimaryFallback:
    """Primary codes used when no detailed override matches."""

    @pytest.mark.parametrize(
        "primary,expected",
        [
            ("GOVERNMENT_AND_NON_PROFIT", BudgetCategory.BANK_FEES),
            ("HOME_IMPROVEMENT", BudgetCategory.GENERAL_MERCHANDISE),
            ("MEDICAL", BudgetCategory.OTHER),
        ],
    )
    def test_remapped_primaries(self, primary, expected):
        assert map_category(f"{primary}_SOMETHING", primary) == expected
        assert PRIMARY_REMAP[primary] == expected

    @pytest.mark.parametrize(
        "primary",
        [
            "INCOME",
            "TRANSFER_IN",
            "TRANSFER_OUT",
            "LOAN_PAYMENTS",
            "BANK_FEES",
            "ENTERTAINMENT",
            "FOOD_AND_DRINK",
            "GENERAL_MERCHANDISE",
            "PERSONAL_CARE",
            "GENERAL_SERVICES",
            "TRANSPORTATION",
            "TRAVEL",
            "RENT_AND_UTILITIES",
        ],
    )
    def test_pass_through_primaries(self, primary):
        assert map_category(f"{primary}_OTHER", primary) == BudgetCategory(primary)

    def test_unmatched_food_detail_falls_back_to_primary(self):
        assert map_category("FOOD_AND_DRINK_SOMETHING_NEW", "FOOD_AND_DRINK") == BudgetCategory.FOOD_AND_DRINK


class TestTotality:
    @pytest.mark.parametrize(
        "detailed,primary",
        [
            ("", ""),
            (None, None),
            ("UNKNOWN_DETAIL", "UNKNOWN_PRIMARY"),
            ("", "SOMETHING_PLAID_ADDS_LATER"),
        ],
        ids=["empty", "none", "unknown_both", "unknown_primary"],
    )
    def test_unmapped_codes_are_other(self, detailed, primary):
        assert map_category(detailed, primary) == BudgetCategory.OTHER

    @pytest.mark.parametrize("primary", PLAID_PRIMARIES)
    def test_every_plaid_primary_maps_to_a_budget_category(self, primary):
        result = map_category("", primary)
        assert isinstance(result, BudgetCategory)
        assert map_category("", primary) == result  # deterministic

    def test_codes_are_case_and_whitespace_insensitive(self):
        assert map_category(" food_and_drink_coffee ", "food_and_drink") == BudgetCategory.EATING_OUT
        assert map_category("", " travel ") == BudgetCategory.TRAVEL
