from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class PlanLimits:
    # None means unlimited
    photos_per_event: Optional[int]
    download_all: bool


@dataclass(frozen=True)
class Plan:
    plan_id: str
    name: str
    price_cents: int
    currency: str
    features: tuple[str, ...]
    limits: PlanLimits
    highlighted: bool = False


PLANS: Dict[str, Plan] = {
    "starter": Plan(
        plan_id="starter",
        name="Starter",
        price_cents=900,
        currency="usd",
        features=("Up to 50 photos per event", "QR code and share link", "Photo moderation"),
        limits=PlanLimits(photos_per_event=50, download_all=False),
    ),
    "professional": Plan(
        plan_id="professional",
        name="Professional",
        price_cents=1900,
        currency="usd",
        features=(
            "Up to 200 photos per event",
            "Printable QR posters",
            "Download all photos",
        ),
        limits=PlanLimits(photos_per_event=200, download_all=True),
        highlighted=True,
    ),
    "enterprise": Plan(
        plan_id="enterprise",
        name="Enterprise",
        price_cents=4900,
        currency="usd",
        features=("Unlimited photos", "Download all photos", "Priority support"),
        limits=PlanLimits(photos_per_event=None, download_all=True),
    ),
}


def list_plans() -> list[Plan]:
    return list(PLANS.values())


def get_plan(plan_id: str | None) -> Plan:
    if plan_id and plan_id in PLANS:
        return PLANS[plan_id]
    return PLANS["starter"]
