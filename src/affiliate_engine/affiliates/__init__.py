"""Affiliate profiles: application, approval, levels and rates."""

from affiliate_engine.affiliates.models import Affiliate, AffiliateLevel, AffiliateStatus
from affiliate_engine.affiliates.service import AffiliateService

__all__ = ["Affiliate", "AffiliateLevel", "AffiliateService", "AffiliateStatus"]
