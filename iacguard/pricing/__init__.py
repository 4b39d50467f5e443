"""Pricing collaborators used by the cost analysis."""

from .aws import (
    EBS_PRICES,
    HOURS_IN_MONTH,
    AWSPricingService,
    PriceCache,
    PricingService,
    ebs_monthly_cost,
    region_multiplier,
)

__all__ = [
    "EBS_PRICES",
    "HOURS_IN_MONTH",
    "AWSPricingService",
    "PriceCache",
    "PricingService",
    "ebs_monthly_cost",
    "region_multiplier",
]
