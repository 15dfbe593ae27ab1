"""Installer configuration: properties, schemas and parsers."""
