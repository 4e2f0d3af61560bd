"""ClawControl: provision OpenClaw AI-agent gateways on cloud VPS instances."""

__version__ = "0.1.0"

__all__ = ["__version__"]
