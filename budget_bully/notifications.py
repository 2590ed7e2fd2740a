"""Pick the one push notification to send about freshly synced, unreviewed transactions."""

import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from budget_bully.models import BudgetCategory, CategoryStatus, PushMessage, Transaction

logger = logging.getLogger(__name__)

UNREVIEWED_SUBTITLE = "Unreviewed transactions"
GENERIC_TITLE = "Unreviewed Transactions"
GENERIC_BODY = "You have unreviewed transactions"


@dataclass
class NotificationRule:
    """One category branch of the scan.

    `categories` are the budget categories that put a transaction in this
    branch; `merchant_bodies` are (merchant substring, body) variants tried in
    order before falling back to `body`.
    """
    title: str
    categories: tuple[BudgetCategory, ...]
    body: str
    merchant_bodies: list[tuple[str, str]] = field(default_factory=list)


# Priority order: only the first matching branch is ever reported.
RULES: list[NotificationRule] = [
    NotificationRule(
        title="General Merchandise",
        categories=(BudgetCategory.GENERAL_MERCHANDISE,),
        merchant_bodies=[
            ("Target", "Target strikes again! In for toothpaste, out with a patio set and three candles you'll never light."),
            ("Amazon", "Another Amazon box? Your porch is turning into a warehouse and your wallet into an empty carton."),
        ],
        body="Over budget on shopping? Very generous of you to keep funding the Help Me Stay Broke Foundation.",
    ),
    NotificationRule(
        title="Food and Drink",
        categories=(BudgetCategory.FOOD_AND_DRINK, BudgetCategory.EATING_OUT),
        merchant_bodies=[
            ("Starbucks", "Spending the rent on caramel macchiatos? Pricey way to feel productive."),
            ("McDonald", "Another meal out? Eat like a king, budget like a court jester."),
        ],
        body="Eating out again? If your savings had as much grease as those fries it might not be so slippery.",
    ),
    NotificationRule(
        title="Personal Care",
        categories=(BudgetCategory.PERSONAL_CARE,),
        body="So much skincare your budget needs wrinkle cream. At least you'll look great reading the statement.",
    ),
    NotificationRule(
        title="Entertainment",
        categories=(BudgetCategory.ENTERTAINMENT,),
        body="Over budget on fun again? Less Wolf of Wall Street, more Broke of Main Street.",
    ),
    NotificationRule(
        title="Travel",
        categories=(BudgetCategory.TRAVEL,),
        body="Over budget on travel? Now you can run away from your responsibilities in style.",
    ),
]


def _body_for(rule: NotificationRule, transactions: Sequence[Transaction]) -> str:
    for merchant, body in rule.merchant_bodies:
        if any(merchant in t.name for t in transactions):
            return body
    return rule.body


def select_notification(
    unreviewed: Sequence[Transaction],
    statuses: Mapping[BudgetCategory, CategoryStatus],
    push_token: str = "",
) -> PushMessage:
    """Build the single message to push for `unreviewed` transactions.

    Scans RULES in priority order and reports the first branch that has a
    matching transaction and whose category status is not GOOD. A category
    with no stored status counts as not GOOD. Falls back to a generic
    message when nothing matches.
    """
    for rule in RULES:
        matched = [t for t in unreviewed if t.category in rule.categories]
        if not matched:
            continue
        present = {t.category for t in matched}
        if all(statuses.get(c) == CategoryStatus.GOOD for c in present):
            continue
        logger.info("Notification branch %s chosen (%d transaction(s))", rule.title, len(matched))
        return PushMessage(
            to=push_token,
            title=rule.title,
            subtitle=UNREVIEWED_SUBTITLE,
            body=_body_for(rule, unreviewed),
        )

    return PushMessage(to=push_token, title=GENERIC_TITLE, body=GENERIC_BODY)
