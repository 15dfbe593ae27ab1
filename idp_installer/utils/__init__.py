"""Shared utilities for the installer."""
