import numpy as np
import pytest
import trimesh

from towerslice.errors import MeshLoadError, NonManifoldMeshError
from towerslice.mesh_io import MeshData, load_mesh, place_on_bed, validate_mesh
from towerslice.slicing import slice_mesh


def cube_arrays():
    box = trimesh.creation.box(extents=(1, 1, 1))
    return np.array(box.vertices), np.array(box.faces)


def test_meshdata_is_read_only():
    vertices, faces = cube_arrays()
    mesh = MeshData(vertices, faces)
    with pytest.raises(ValueError):
        mesh.vertices[0, 0] = 5.0
    # the caller's arrays stay writable and untouched
    vertices[0, 0] = 5.0
    assert mesh.vertices[0, 0] != 5.0


def test_meshdata_rejects_bad_shapes():
    with pytest.raises(ValueError):
        MeshData([[0, 0], [1, 1]], [])
    with pytest.raises(ValueError):
        MeshData([[0, 0, 0]], [[0, 1]])
    with pytest.raises(ValueError):
        MeshData([[0, 0, 0]], [[0, 0, 3]])
    with pytest.raises(ValueError):
        MeshData([[0, 0, np.nan]], [])
    with pytest.raises(ValueError):
        MeshData([[0, 0, 0]], [], axis=3)


def test_heights_follow_axis():
    mesh = MeshData([[1, 2, 3], [4, 5, 6]], [], axis=1)
    assert mesh.heights.tolist() == [2, 5]
    assert mesh.plane_axes == [0, 2]
    assert mesh.height_range == (2.0, 5.0)


def test_validate_accepts_closed_mesh():
    vertices, faces = cube_arrays()
    validate_mesh(MeshData(vertices, faces))


def test_missing_face_is_non_manifold():
    vertices, faces = cube_arrays()
    with pytest.raises(NonManifoldMeshError) as info:
        validate_mesh(MeshData(vertices, faces[1:]))
    # the removed triangle leaves its three edges with one neighbour each
    assert len(info.value.edges) == 3


def test_flipped_face_is_rejected():
    vertices, faces = cube_arrays()
    faces[0] = faces[0][::-1]
    with pytest.raises(NonManifoldMeshError, match="winding"):
        validate_mesh(MeshData(vertices, faces))


def test_degenerate_triangle_is_rejected():
    vertices, faces = cube_arrays()
    faces[0, 1] = faces[0, 0]
    with pytest.raises(NonManifoldMeshError, match="degenerate"):
        validate_mesh(MeshData(vertices, faces))


def test_slice_mesh_validates_before_sweeping():
    vertices, faces = cube_arrays()
    with pytest.raises(NonManifoldMeshError):
        slice_mesh(MeshData(vertices, faces[1:]), 0.25)


def test_place_on_bed():
    vertices, faces = cube_arrays()
    mesh = place_on_bed(MeshData(vertices + [3.0, -2.0, 7.0], faces))
    assert np.isclose(mesh.heights.min(), 0.0)
    assert np.allclose(mesh.vertices.min(axis=0)[:2], [-0.5, -0.5])
    assert np.allclose(mesh.vertices.max(axis=0)[:2], [0.5, 0.5])


def test_load_mesh_merges_stl_vertices(tmp_path):
    path = tmp_path / "box.stl"
    trimesh.creation.box(extents=(1, 2, 3)).export(str(path))

    mesh = load_mesh(str(path))
    assert len(mesh.faces) == 12
    assert len(mesh.vertices) == 8
    assert mesh.height_range == pytest.approx((0.0, 3.0))
    validate_mesh(mesh)


def test_load_mesh_without_centering(tmp_path):
    path = tmp_path / "box.stl"
    trimesh.creation.box(extents=(1, 1, 1)).export(str(path))
    mesh = load_mesh(str(path), center=False)
    assert mesh.height_range == pytest.approx((-0.5, 0.5))


def test_load_mesh_missing_file(tmp_path):
    with pytest.raises(MeshLoadError):
        load_mesh(str(tmp_path / "missing.stl"))


def test_load_mesh_without_triangles(monkeypatch):
    monkeypatch.setattr(trimesh, "load", lambda *args, **kwargs: trimesh.Trimesh())
    with pytest.raises(MeshLoadError, match="no triangles"):
        load_mesh("empty.stl")


def test_load_mesh_empty_scene(monkeypatch):
    monkeypatch.setattr(trimesh, "load", lambda *args, **kwargs: trimesh.Scene())
    with pytest.raises(MeshLoadError, match="no geometry"):
        load_mesh("empty.glb")
