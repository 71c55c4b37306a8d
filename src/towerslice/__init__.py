"""Tower sweep slicer: closed triangle meshes to layered polygon contours."""

from .errors import (InterpolationRangeError, MeshLoadError, NonManifoldMeshError,
                     RingClosureAssertionError, SlicerError, SliceTimeoutError,
                     UnresolvedFragmentError)
from .mesh_io import MeshData, load_mesh, place_on_bed, validate_mesh
from .slicing import Layer, SliceResult, generate_gcode, slice_mesh, slice_mesh_file
from .tower import (EdgeToken, FaceToken, Fragment, TowerSweep, VertexTower,
                    build_towers, join_fragments, split_on_edge, split_on_edges)

__version__ = "0.1.0"
