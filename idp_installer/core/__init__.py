"""Install and upgrade of an IdP installation."""
