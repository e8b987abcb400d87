"""Multi-tenant compensation calculation engine."""

__version__ = "1.0.0"
