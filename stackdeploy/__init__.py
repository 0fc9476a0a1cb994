"""Single-host deployment orchestrator for a two-tier web application."""

__version__ = "0.1.0"
