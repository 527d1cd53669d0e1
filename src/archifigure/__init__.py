"""Archifigure - image upload, image generation and 3D mesh generation service."""

__version__ = "0.1.0"

from archifigure.core.config import ArchifigureConfig, config

__all__ = [
    "ArchifigureConfig",
    "config",
]
