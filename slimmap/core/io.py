"""Lightweight mesh file I/O for slimmap.

Provides readers/writers for common mesh formats without heavy dependencies:
- read_obj / write_obj: Wavefront OBJ with optional ``vt`` texture coordinates
- read_soft_constraints: pinned vertex table (``index x y [z]`` rows)
- read_msh: Import Gmsh .msh format (ASCII, version 2.2 and 4.1)
- write_vtk: Export legacy VTK format for ParaView/VisIt visualization

All functions use slimmap's canonical data format:
    vertices: (N, 2) or (N, 3) float64 array
    elements: (M, 3) triangles or (M, 4) tetrahedra, int64 array
"""
from __future__ import annotations

import warnings
from typing import Dict, List, Optional, Tuple

import numpy as np

from .logging_utils import get_logger

logger = get_logger('slimmap.io')

# Gmsh element type -> node count (3-node triangle, 4-node tetrahedron)
_GMSH_TYPES = {2: 3, 4: 4}
# VTK cell type per nodes per element
_VTK_TYPES = {3: 5, 4: 10}


def _obj_index(token: str, count: int) -> int:
    i = int(token)
    return i - 1 if i > 0 else count + i


def read_obj(filepath: str) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
    """Read a triangle mesh from a Wavefront OBJ file.

    Returns
    -------
    vertices : (N, 3) ndarray of float64
    faces : (M, 3) ndarray of int64
        Polygons with more than three corners are fan-triangulated.
    uv : (N, 2) ndarray or None
        Texture coordinates per vertex when the file carries ``vt`` lines
        referenced one-to-one by the face corners.
    """
    verts: List[List[float]] = []
    tex: List[List[float]] = []
    faces: List[List[int]] = []
    corner_tex: List[List[int]] = []
    with open(filepath, 'r') as f:
        for raw in f:
            parts = raw.split()
            if not parts or parts[0].startswith('#'):
                continue
            tag = parts[0]
            if tag == 'v':
                verts.append([float(x) for x in parts[1:4]])
            elif tag == 'vt':
                tex.append([float(x) for x in parts[1:3]])
            elif tag == 'f':
                vi, ti = [], []
                for corner in parts[1:]:
                    fields = corner.split('/')
                    vi.append(_obj_index(fields[0], len(verts)))
                    if len(fields) > 1 and fields[1]:
                        ti.append(_obj_index(fields[1], len(tex)))
                for k in range(1, len(vi) - 1):
                    faces.append([vi[0], vi[k], vi[k + 1]])
                    if len(ti) == len(vi):
                        corner_tex.append([ti[0], ti[k], ti[k + 1]])
    if not faces:
        raise ValueError(f"No faces found in OBJ file: {filepath}")
    V = np.array(verts, dtype=np.float64)
    F = np.array(faces, dtype=np.int64)
    uv = None
    if tex and len(corner_tex) == len(faces):
        uv = np.zeros((V.shape[0], 2))
        seen = np.zeros(V.shape[0], dtype=bool)
        T = np.array(corner_tex, dtype=np.int64)
        tex_arr = np.array(tex, dtype=np.float64)
        for fv, ft in zip(F.ravel(), T.ravel()):
            if seen[fv] and not np.allclose(uv[fv], tex_arr[ft]):
                warnings.warn("OBJ texture coordinates are not per-vertex (seams); ignoring vt")
                uv = None
                break
            uv[fv] = tex_arr[ft]
            seen[fv] = True
    logger.debug('read_obj %s: %d vertices, %d faces, uv=%s', filepath, V.shape[0], F.shape[0], uv is not None)
    return V, F, uv


def write_obj(filepath: str, vertices: np.ndarray, faces: np.ndarray,
              uv: Optional[np.ndarray] = None) -> None:
    """Write a triangle mesh (optionally with per-vertex ``vt`` coordinates) as OBJ."""
    V = np.asarray(vertices, dtype=np.float64)
    F = np.asarray(faces, dtype=np.int64)
    if V.ndim != 2 or V.shape[1] not in (2, 3):
        raise ValueError(f"vertices must be (N, 2) or (N, 3), got shape {V.shape}")
    if F.ndim != 2 or F.shape[1] != 3:
        raise ValueError(f"faces must be (M, 3), got shape {F.shape}")
    if V.shape[1] == 2:
        V = np.column_stack([V, np.zeros(len(V))])
    with open(filepath, 'w') as f:
        f.write("# slimmap\n")
        for p in V:
            f.write(f"v {p[0]:.16e} {p[1]:.16e} {p[2]:.16e}\n")
        if uv is not None:
            UV = np.asarray(uv, dtype=np.float64)
            if UV.shape != (V.shape[0], 2):
                raise ValueError(f"uv must be ({V.shape[0]}, 2), got shape {UV.shape}")
            for t in UV:
                f.write(f"vt {t[0]:.16e} {t[1]:.16e}\n")
            for a, b, c in F + 1:
                f.write(f"f {a}/{a} {b}/{b} {c}/{c}\n")
        else:
            for a, b, c in F + 1:
                f.write(f"f {a} {b} {c}\n")


def read_soft_constraints(filepath: str, dim: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
    """Read pinned vertices from a whitespace table of ``index x y [z]`` rows.

    Indices are 0-based; ``#`` starts a comment. Returns ``(indices, targets)``
    with ``targets`` of shape (K, dim). When ``dim`` is given every row must
    carry exactly that many coordinates.
    """
    table = np.loadtxt(filepath, comments='#', ndmin=2)
    if table.size == 0:
        width = dim if dim is not None else 2
        return np.empty((0,), dtype=np.int64), np.empty((0, width))
    ncoord = table.shape[1] - 1
    if ncoord not in (2, 3) or (dim is not None and ncoord != dim):
        expected = f"{dim}" if dim is not None else "2 or 3"
        raise ValueError(f"{filepath}: soft constraint rows need an index and {expected} coordinates, "
                         f"got {table.shape[1]} columns")
    idx = table[:, 0]
    if np.any(idx != np.round(idx)) or np.any(idx < 0):
        raise ValueError(f"{filepath}: soft constraint indices must be non-negative integers")
    logger.debug('read %d soft constraints from %s', table.shape[0], filepath)
    return idx.astype(np.int64), np.ascontiguousarray(table[:, 1:])


def _section(lines: List[str], name: str) -> Tuple[int, int]:
    start = end = None
    for i, line in enumerate(lines):
        if line == f'${name}':
            start = i
        elif line == f'$End{name}':
            end = i
            break
    if start is None or end is None:
        raise ValueError(f"Missing ${name} section in .msh file")
    return start, end


def read_msh(filepath: str) -> Tuple[np.ndarray, np.ndarray]:
    """Read a triangle or tetrahedral mesh from a Gmsh .msh file (ASCII format).

    Supports Gmsh format versions 2.2 and 4.1 (ASCII mode only). When the
    file holds tetrahedra (type 4) those are returned; otherwise the
    3-node triangles (type 2). Other element types are skipped.

    Returns
    -------
    points : (N, 3) ndarray of float64
        Vertex coordinates; the z column is dropped for planar triangle meshes.
    elements : (M, 3) or (M, 4) ndarray of int64
        Connectivity, 0-indexed.

    Raises
    ------
    ValueError
        If the file format is unsupported or contains no triangles or tetrahedra.
    """
    with open(filepath, 'r') as f:
        lines = [line.strip() for line in f]
    if not lines:
        raise ValueError(f"Empty file: {filepath}")

    version = None
    for i, line in enumerate(lines):
        if line.startswith('$MeshFormat'):
            version = float(lines[i + 1].split()[0])
            break
    if version is None:
        raise ValueError("Could not detect Gmsh format version (no $MeshFormat section)")
    logger.debug('read_msh %s: Gmsh format %s', filepath, version)

    if 2.0 <= version < 3.0:
        coords, by_type = _read_msh_v2(lines)
    elif 4.0 <= version < 5.0:
        coords, by_type = _read_msh_v4(lines)
    else:
        raise ValueError(f"Unsupported Gmsh format version: {version}")

    etype = 4 if by_type[4] else 2
    if not by_type[etype]:
        raise ValueError("No triangular or tetrahedral elements found in .msh file")

    node_ids = sorted(coords.keys())
    id_to_idx = {nid: idx for idx, nid in enumerate(node_ids)}
    points = np.array([coords[nid] for nid in node_ids], dtype=np.float64)
    elements = np.array([[id_to_idx[v] for v in el] for el in by_type[etype]], dtype=np.int64)
    if etype == 2 and np.all(points[:, 2] == 0.0):
        points = np.ascontiguousarray(points[:, :2])
    logger.debug('read %d nodes, %d %s', points.shape[0], elements.shape[0],
                 'tetrahedra' if etype == 4 else 'triangles')
    return points, elements


def _read_msh_v2(lines):
    """Parse Gmsh format 2.2 (legacy ASCII format)."""
    node_start, node_end = _section(lines, 'Nodes')
    coords = {}
    for i in range(node_start + 2, node_end):
        parts = lines[i].split()
        coords[int(parts[0])] = (float(parts[1]), float(parts[2]), float(parts[3]))

    elem_start, elem_end = _section(lines, 'Elements')
    by_type: Dict[int, List[List[int]]] = {t: [] for t in _GMSH_TYPES}
    for i in range(elem_start + 2, elem_end):
        parts = lines[i].split()
        elem_type = int(parts[1])
        if elem_type in _GMSH_TYPES:
            # node ids follow: elem_id, type, num_tags, tags...
            first = 3 + int(parts[2])
            by_type[elem_type].append([int(p) for p in parts[first:first + _GMSH_TYPES[elem_type]]])
    return coords, by_type


def _read_msh_v4(lines):
    """Parse Gmsh format 4.1 (modern ASCII format)."""
    node_start, node_end = _section(lines, 'Nodes')
    coords = {}
    i = node_start + 2
    while i < node_end:
        # entity block header: entityDim entityTag parametric numNodesInBlock
        n_block = int(lines[i].split()[3])
        i += 1
        tags = [int(lines[i + j]) for j in range(n_block)]
        i += n_block
        for j in range(n_block):
            xyz = lines[i + j].split()
            coords[tags[j]] = (float(xyz[0]), float(xyz[1]), float(xyz[2]))
        i += n_block

    elem_start, elem_end = _section(lines, 'Elements')
    by_type: Dict[int, List[List[int]]] = {t: [] for t in _GMSH_TYPES}
    i = elem_start + 2
    while i < elem_end:
        # entity block header: entityDim entityTag elementType numElementsInBlock
        header = lines[i].split()
        elem_type, n_block = int(header[2]), int(header[3])
        i += 1
        if elem_type in _GMSH_TYPES:
            k = _GMSH_TYPES[elem_type]
            for j in range(n_block):
                parts = lines[i + j].split()
                by_type[elem_type].append([int(p) for p in parts[1:1 + k]])
        i += n_block
    return coords, by_type


def _write_vtk_data(f, name: str, data, kind: str) -> None:
    data = np.asarray(data)
    if data.ndim == 1:
        f.write(f"SCALARS {name} double 1\n")
        f.write("LOOKUP_TABLE default\n")
        for val in data:
            f.write(f"{val:.16e}\n")
    elif data.ndim == 2 and data.shape[1] in (2, 3):
        if data.shape[1] == 2:
            data = np.column_stack([data, np.zeros(len(data))])
        f.write(f"VECTORS {name} double\n")
        for vec in data:
            f.write(f"{vec[0]:.16e} {vec[1]:.16e} {vec[2]:.16e}\n")
    else:
        warnings.warn(f"Skipping {kind}['{name}'] with unsupported shape {data.shape}")


def write_vtk(filepath: str,
              points: np.ndarray,
              elements: np.ndarray,
              point_data: Optional[Dict[str, np.ndarray]] = None,
              cell_data: Optional[Dict[str, np.ndarray]] = None,
              title: str = "slimmap mesh") -> None:
    """Write a triangle or tetrahedral mesh to legacy VTK format (ASCII).

    Parameters
    ----------
    filepath : str
        Output .vtk file path
    points : (N, 2) or (N, 3) ndarray
        Vertex coordinates. If 2D, z=0 is added.
    elements : (M, 3) or (M, 4) ndarray
        Triangles (VTK type 5) or tetrahedra (VTK type 10), 0-indexed
    point_data, cell_data : dict, optional
        Scalar (N,)/(M,) or vector (., 2|3) fields keyed by name.

    Examples
    --------
    >>> write_vtk('map.vtk', uv, faces, cell_data={'distortion': per_element_energy(...)})
    """
    points = np.asarray(points)
    elements = np.asarray(elements)
    if points.ndim != 2 or points.shape[1] not in (2, 3):
        raise ValueError(f"points must be (N, 2) or (N, 3), got shape {points.shape}")
    if elements.ndim != 2 or elements.shape[1] not in _VTK_TYPES:
        raise ValueError(f"elements must be (M, 3) or (M, 4), got shape {elements.shape}")
    if points.shape[1] == 2:
        points = np.column_stack([points, np.zeros(len(points))])

    n_points, (n_cells, k) = len(points), elements.shape
    with open(filepath, 'w') as f:
        f.write("# vtk DataFile Version 2.0\n")
        f.write(f"{title}\n")
        f.write("ASCII\n")
        f.write("DATASET UNSTRUCTURED_GRID\n")

        f.write(f"POINTS {n_points} double\n")
        for pt in points:
            f.write(f"{pt[0]:.16e} {pt[1]:.16e} {pt[2]:.16e}\n")

        f.write(f"\nCELLS {n_cells} {n_cells * (k + 1)}\n")
        for el in elements:
            f.write(f"{k} " + " ".join(str(int(v)) for v in el) + "\n")

        f.write(f"\nCELL_TYPES {n_cells}\n")
        for _ in range(n_cells):
            f.write(f"{_VTK_TYPES[k]}\n")

        if point_data:
            f.write(f"\nPOINT_DATA {n_points}\n")
            for name, data in point_data.items():
                _write_vtk_data(f, name, data, 'point_data')
        if cell_data:
            f.write(f"\nCELL_DATA {n_cells}\n")
            for name, data in cell_data.items():
                _write_vtk_data(f, name, data, 'cell_data')


__all__ = ['read_obj', 'write_obj', 'read_soft_constraints', 'read_msh', 'write_vtk']
