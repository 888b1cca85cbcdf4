"""Plotting of 2-D maps produced by the solver."""
from __future__ import annotations

import os as _os

import matplotlib as _mpl
# Ensure a non-interactive backend in headless environments before importing pyplot
if not _os.environ.get('MPLBACKEND'):
    _mpl.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
from matplotlib.collections import PolyCollection

from .diagnostics import find_inverted_elements
from .logging_utils import get_logger

logger = get_logger('slimmap.viz')


def plot_parameterization(uv, faces, outname: str = "map.png", cell_values=None,
                          highlight=None, title=None, cmap: str = 'viridis'):
    """Plot a 2-D triangle map.

    Args:
        uv: (N, 2) target positions
        faces: (M, 3) triangles
        outname: output image path
        cell_values: optional (M,) per-triangle values (e.g. distortion) used for colouring
        highlight: iterable of triangle indices to fill in red; defaults to the inverted ones
        title: optional figure title
    """
    P = np.asarray(uv, dtype=np.float64)
    F = np.asarray(faces, dtype=np.int64)
    if P.ndim != 2 or P.shape[1] != 2:
        raise ValueError(f"uv must be (N, 2), got shape {P.shape}")
    if F.ndim != 2 or F.shape[1] != 3:
        raise ValueError(f"faces must be (M, 3), got shape {F.shape}")
    if highlight is None:
        highlight = [i for i, _ in find_inverted_elements(P, F)]
    highlight = sorted(set(int(i) for i in highlight))

    fig, ax = plt.subplots(figsize=(6, 6))
    polys = P[F]
    if cell_values is not None:
        vals = np.asarray(cell_values, dtype=np.float64)
        coll = PolyCollection(polys, array=np.where(np.isfinite(vals), vals, np.nan), cmap=cmap,
                              edgecolors='k', linewidths=0.2)
        ax.add_collection(coll)
        fig.colorbar(coll, ax=ax, shrink=0.8)
    else:
        ax.add_collection(PolyCollection(polys, facecolors=(0.85, 0.88, 0.95),
                                         edgecolors='k', linewidths=0.2))
    if highlight:
        ax.add_collection(PolyCollection(polys[highlight], facecolors=(0.9, 0.15, 0.15),
                                         edgecolors='k', linewidths=0.4))
    ax.autoscale_view()
    ax.set_aspect('equal')
    ax.set_title(title or f"{F.shape[0]} triangles, {len(highlight)} highlighted")
    fig.savefig(outname, dpi=150)
    plt.close(fig)
    logger.info('wrote %s', outname)
    return outname


__all__ = ['plot_parameterization']
