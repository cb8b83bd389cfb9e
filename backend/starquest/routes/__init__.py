"""Aggregate import for all API route modules."""

from . import (
    auth,
    family,
    children,
    quests,
    rewards,
    stars,
    redemptions,
    approvals,
    balances,
    credit,
)

__all__ = [
    "auth",
    "family",
    "children",
    "quests",
    "rewards",
    "stars",
    "redemptions",
    "approvals",
    "balances",
    "credit",
]
