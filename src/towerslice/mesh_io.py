# mesh_io.py
"""
Mesh input for the tower slicer.

Loads triangle meshes with trimesh and hands them to the sweep as plain
vertex / face arrays (``MeshData``). Topology validation lives here too, so a
broken mesh is rejected before any tower is built.
"""

import logging

import numpy as np
import trimesh

from .errors import MeshLoadError, NonManifoldMeshError

log = logging.getLogger(__name__)

AXIS_NAMES = "XYZ"


class MeshData:
    """Immutable vertex/face arrays plus the axis the mesh is sliced along."""

    def __init__(self, vertices, faces, axis=2):
        vertices = np.array(vertices, dtype=float)
        faces = np.array(faces, dtype=np.int64)
        if vertices.size == 0:
            vertices = vertices.reshape(0, 3)
        if faces.size == 0:
            faces = faces.reshape(0, 3)
        if vertices.ndim != 2 or vertices.shape[1] != 3:
            raise ValueError(f"Vertices must have shape (N, 3), got {vertices.shape}")
        if faces.ndim != 2 or faces.shape[1] != 3:
            raise ValueError(f"Faces must have shape (M, 3), got {faces.shape}")
        if axis not in (0, 1, 2):
            raise ValueError(f"Slicing axis must be 0, 1 or 2, got {axis!r}")
        if not np.all(np.isfinite(vertices)):
            raise ValueError("Vertex coordinates must be finite.")
        if len(faces) and (faces.min() < 0 or faces.max() >= len(vertices)):
            raise ValueError("Face indices out of range for the vertex array.")

        vertices.flags.writeable = False
        faces.flags.writeable = False
        self.vertices = vertices
        self.faces = faces
        self.axis = axis

    @classmethod
    def from_trimesh(cls, mesh: trimesh.Trimesh, axis=2):
        return cls(mesh.vertices, mesh.faces, axis=axis)

    @property
    def heights(self):
        return self.vertices[:, self.axis]

    @property
    def plane_axes(self):
        """The two coordinate axes spanning a slicing plane."""
        return [i for i in range(3) if i != self.axis]

    @property
    def height_range(self):
        if len(self.vertices) == 0:
            return 0.0, 0.0
        h = self.heights
        return float(h.min()), float(h.max())

    def __repr__(self):
        return (f"MeshData({len(self.vertices)} vertices, {len(self.faces)} faces, "
                f"axis={AXIS_NAMES[self.axis]})")


def validate_mesh(mesh: MeshData):
    """Raise NonManifoldMeshError unless every edge joins exactly two faces.

    Also rejects triangles that repeat a vertex and pairs of faces that run
    along a shared edge in the same direction (inconsistent winding).
    """
    faces = mesh.faces
    if len(faces) == 0:
        return

    degenerate = (faces[:, 0] == faces[:, 1]) | (faces[:, 1] == faces[:, 2]) | (faces[:, 2] == faces[:, 0])
    if degenerate.any():
        bad = np.flatnonzero(degenerate)
        raise NonManifoldMeshError(
            f"{len(bad)} degenerate triangle(s) repeat a vertex, first: face {bad[0]} {faces[bad[0]].tolist()}")

    directed = np.concatenate([faces[:, [0, 1]], faces[:, [1, 2]], faces[:, [2, 0]]])
    undirected = np.sort(directed, axis=1)
    edges, counts = np.unique(undirected, axis=0, return_counts=True)
    bad_edges = edges[counts != 2]
    if len(bad_edges):
        raise NonManifoldMeshError(
            f"{len(bad_edges)} edge(s) not shared by exactly two triangles, first: {bad_edges[0].tolist()}",
            edges=bad_edges.tolist())

    runs, run_counts = np.unique(directed, axis=0, return_counts=True)
    if (run_counts > 1).any():
        flipped = runs[run_counts > 1]
        raise NonManifoldMeshError(
            f"{len(flipped)} edge(s) traversed twice in the same direction (inconsistent winding), "
            f"first: {flipped[0].tolist()}", edges=flipped.tolist())


def place_on_bed(mesh: MeshData):
    """Translate so the lowest vertex sits at height 0 and the footprint is centred on the origin."""
    if len(mesh.vertices) == 0:
        return mesh
    lo = mesh.vertices.min(axis=0)
    hi = mesh.vertices.max(axis=0)
    offset = (lo + hi) / 2.0
    offset[mesh.axis] = lo[mesh.axis]
    log.debug(f"Placing mesh on bed, offset {offset}")
    return MeshData(mesh.vertices - offset, mesh.faces, axis=mesh.axis)


def load_mesh(path, axis=2, center=True):
    """Load a triangle mesh file (STL, OBJ, PLY, ...) into ``MeshData``."""
    try:
        mesh = trimesh.load(path, force='mesh')
    except (OSError, ValueError) as e:
        raise MeshLoadError(f"Could not load mesh {path}: {e}") from e

    if not isinstance(mesh, trimesh.Trimesh):
        if isinstance(mesh, trimesh.Scene):
            parts = list(mesh.dump())
            if not parts:
                raise MeshLoadError(f"Scene in {path} contains no geometry")
            mesh = trimesh.util.concatenate(parts)
        else:
            raise MeshLoadError(f"Cannot slice object of type {type(mesh)} from {path}")

    if len(mesh.faces) == 0:
        raise MeshLoadError(f"Mesh {path} contains no triangles")

    log.info(f"Loaded {path}: {len(mesh.vertices)} vertices, {len(mesh.faces)} faces")
    data = MeshData.from_trimesh(mesh, axis=axis)
    return place_on_bed(data) if center else data
