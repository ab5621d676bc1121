"""RaidDeck: a terminal dashboard of raid targets."""

__version__ = "0.1.0"

__all__ = ["__version__"]
