from dataclasses import dataclass
from typing import Dict, Optional

from app.db.schema import SubscriptionTier


@dataclass(frozen=True)
class Plan:
    tier: SubscriptionTier
    name: str
    price_per_vehicle: float
    period: str
    min_vehicles: int
    max_vehicles: int
    bids_per_month: Optional[int]  # None = unlimited


PLANS: Dict[SubscriptionTier, Plan] = {
    SubscriptionTier.FREE_TRIAL: Plan(
        SubscriptionTier.FREE_TRIAL, "Free Trial", 0, "30 days", 1, 2, 10),
    SubscriptionTier.SMALL_FLEET: Plan(
        SubscriptionTier.SMALL_FLEET, "Small Fleet", 69, "month", 1, 20, None),
    SubscriptionTier.MEDIUM_FLEET: Plan(
        SubscriptionTier.MEDIUM_FLEET, "Medium Fleet", 59, "month", 21, 49, None),
    SubscriptionTier.LARGE_FLEET: Plan(
        SubscriptionTier.LARGE_FLEET, "Large Fleet", 49, "month", 50, 200, None),
    SubscriptionTier.FLEX: Plan(
        SubscriptionTier.FLEX, "Flex", 79, "month", 1, 200, None),
}

TRIAL_DAYS = 30


def get_plan(tier: SubscriptionTier) -> Plan:
    return PLANS.get(tier, PLANS[SubscriptionTier.FREE_TRIAL])


def required_plan(vehicle_count: int) -> Optional[SubscriptionTier]:
    """Cheapest fixed tier that covers the fleet. None when the fleet is too large."""
    if vehicle_count <= 2:
        return SubscriptionTier.FREE_TRIAL
    if vehicle_count <= 20:
        return SubscriptionTier.SMALL_FLEET
    if vehicle_count <= 49:
        return SubscriptionTier.MEDIUM_FLEET
    if vehicle_count <= 200:
        return SubscriptionTier.LARGE_FLEET
    return None


def monthly_total(tier: SubscriptionTier, vehicle_count: int) -> float:
    plan = get_plan(tier)
    billable = min(max(vehicle_count, plan.min_vehicles), plan.max_vehicles)
    return plan.price_per_vehicle * billable
