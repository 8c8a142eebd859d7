"""HTTP surface for the affiliate engine."""
