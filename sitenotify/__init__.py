"""Multi-channel notification dispatch for construction-site workflows."""

__version__ = "0.3.0"
