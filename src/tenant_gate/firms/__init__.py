"""Firm lifecycle and subscription entitlement."""
