"""Visitor geolocation: accuracy ranking, resolution waterfall and visitor ledgers."""
