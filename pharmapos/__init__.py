"""Pharmacy inventory and point-of-sale backend."""
