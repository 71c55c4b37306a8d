# errors.py
"""Exceptions raised while loading and slicing a mesh.

Every error here is fatal for the mesh being sliced. When the failure happens
part way through a sweep, ``slice_mesh`` attaches the layers produced so far
as ``partial_layers`` before re-raising.
"""


class SlicerError(Exception):
    """Base class for slicing failures."""

    def __init__(self, message):
        super().__init__(message)
        self.partial_layers = []


class MeshLoadError(SlicerError):
    """The mesh file could not be read or contained no triangles."""


class NonManifoldMeshError(SlicerError):
    """Input mesh is not a closed, consistently wound 2-manifold."""

    def __init__(self, message, edges=None):
        super().__init__(message)
        self.edges = [] if edges is None else [tuple(e) for e in edges]


class _ChainError(SlicerError):
    def __init__(self, message, vertex, height, fragment):
        super().__init__(f"{message} at vertex {vertex} (height {height:.6g}): {fragment}")
        self.vertex = vertex
        self.height = height
        self.fragment = fragment


class UnresolvedFragmentError(_ChainError):
    """Fragments were left open after joining at a vertex event."""

    def __init__(self, vertex, height, fragment):
        super().__init__("Unresolved fragment", vertex, height, fragment)


class RingClosureAssertionError(_ChainError):
    """A chain in the active ring set is not a properly closed ring."""

    def __init__(self, vertex, height, fragment):
        super().__init__("Ring failed closure check", vertex, height, fragment)


class InterpolationRangeError(SlicerError):
    """An active edge does not straddle the requested cut height."""

    def __init__(self, height, edges):
        self.height = height
        self.edges = list(edges)
        shown = ", ".join(str(e) for e in self.edges[:5])
        super().__init__(f"{len(self.edges)} edge(s) do not straddle height {height:.6g}: {shown}")


class SliceTimeoutError(SlicerError):
    """The sweep ran past its wall-clock budget."""
