"""Live battle statistics overlay core: snapshot ingestion, metric catalog and row building."""

from battle_overlay.version import __version__

__all__ = ["__version__"]
