"""Subscription plan catalog.

Usage counters and checkout live in the hosted billing/database platform; this
module only knows what each plan offers and how to describe a user's quota.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

PLANS: Dict[str, Dict[str, Any]] = {
    "slacker": {
        "name": "slacker",
        "display_name": "Slacker",
        "price": 15,
        "story_limit": 10,
        "features": [
            "10 stories per month",
            "All universes",
            "Interactive quizzes",
            "HD image generation",
        ],
    },
    "student": {
        "name": "student",
        "display_name": "Student",
        "price": 25,
        "story_limit": 30,
        "features": [
            "30 stories per month",
            "All universes",
            "Interactive quizzes",
            "HD image generation",
            "Priority support",
        ],
    },
    "nerd": {
        "name": "nerd",
        "display_name": "Nerd",
        "price": 45,
        "story_limit": 50,
        "features": [
            "50 stories per month",
            "All universes",
            "Interactive quizzes",
            "HD image generation",
            "Priority support",
            "Early access to features",
        ],
    },
}


def list_plans() -> List[Dict[str, Any]]:
    return list(PLANS.values())


def get_plan(name: str) -> Optional[Dict[str, Any]]:
    return PLANS.get((name or "").strip().lower())


def subscription_status_message(subscription: Optional[Dict[str, Any]]) -> str:
    """Short quota line for a subscription record (``stories_remaining`` key)."""
    if not subscription:
        return "No active subscription"
    remaining = subscription.get("stories_remaining") or 0
    if remaining <= 0:
        return "Story limit reached"
    return f"{remaining} stories remaining"
