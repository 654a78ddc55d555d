"""Local code intelligence and multi-tier inference orchestration."""

__version__ = "0.1.0"
