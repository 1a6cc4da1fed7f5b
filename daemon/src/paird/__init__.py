"""paird - supervisor for paired, long-lived messaging sessions."""

__version__ = "0.1.0"
