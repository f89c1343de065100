"""Coltop 2D raster format: elevation, slope and aspect bands in one file."""

__version__ = "1.0.0"
__all__ = ["c2dformat", "terrain"]