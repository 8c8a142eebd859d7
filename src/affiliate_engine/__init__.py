"""Affiliate attribution and commission settlement engine."""

from affiliate_engine.engine import AffiliateEngine

__version__ = "0.1.0"

__all__ = ["AffiliateEngine", "__version__"]
