"""Tenant access and lifecycle control for the delivery marketplace backend."""
