"""Persistence for the visitor-location and robot ledgers."""
