"""Route group exports."""

from . import health, sites, tours

__all__ = ["health", "sites", "tours"]
