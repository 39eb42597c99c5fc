"""
Visualization module for autonomous audiometry results.

This module contains functions for:
- Plotting audiograms from threshold records
- Plotting the level track of a frequency search
"""

from .audiogram import plot_audiogram, plot_search_track

__all__ = ["plot_audiogram", "plot_search_track"]
