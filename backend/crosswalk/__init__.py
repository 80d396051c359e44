"""Requirement–control crosswalk and compliance-drift engine."""
