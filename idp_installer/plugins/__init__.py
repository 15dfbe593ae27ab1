"""Plugin management: discovery, compatibility checks, install and removal."""
