"""Click tracking and signup attribution."""

from affiliate_engine.tracking.models import Click, Conversion, ConversionType
from affiliate_engine.tracking.service import AttributionTracker, ConversionLinker

__all__ = ["AttributionTracker", "Click", "Conversion", "ConversionLinker", "ConversionType"]
