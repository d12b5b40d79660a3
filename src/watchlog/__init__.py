"""Watch log: deduplicated, catalog-enriched logging of media watch events."""

__version__ = "0.1.0"

__all__ = ["__version__"]
