"""Installer, upgrader and plugin manager for the Shibboleth Identity Provider."""

__version__ = "5.1.0"
