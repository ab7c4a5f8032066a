"""Administrative core of the crypto dashboard: authorization, user roles and audit trail."""

__version__ = "0.1.0"
