"""Multi-tenant attendance tracking data layer."""

__version__ = "0.1.0"
