"""snow-plow: keep every tracked flake's pinned inputs fresh in one go."""

__version__ = "0.3.0"

__all__ = ["__version__"]
