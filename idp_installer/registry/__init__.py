"""Clients that fetch plugin information and archives from a location."""
