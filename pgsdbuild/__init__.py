"""PGSD image build and installation tooling."""

from .__version__ import __version__

__all__ = ["__version__"]
