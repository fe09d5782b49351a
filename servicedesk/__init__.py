"""Service desk change management backend."""

__version__ = "0.3.0"
