"""Clients for the external text geocoder and IP-geolocation service."""
