#!/usr/bin/env python3
"""
slicing.py

Layer-by-layer perimeter slicer: mesh -> closed contours -> G-code.

Contours come from the incremental tower sweep in ``tower.py``; each layer is
cut at its mid height.
"""

import sys
import math
import argparse
import logging
from functools import reduce

import numpy as np
from shapely.geometry import Polygon

from .errors import SlicerError
from .mesh_io import MeshData, load_mesh, validate_mesh
from .tower import TowerSweep, build_towers

log = logging.getLogger(__name__)


def drop_collinear(loop, tolerance=1e-9):
    """Remove points of a closed 2D loop that lie on the line through their neighbours."""
    if len(loop) < 4:
        return loop
    prev = np.roll(loop, 1, axis=0)
    nxt = np.roll(loop, -1, axis=0)
    a = loop - prev
    b = nxt - loop
    cross = a[:, 0] * b[:, 1] - a[:, 1] * b[:, 0]
    scale = np.linalg.norm(a, axis=1) * np.linalg.norm(b, axis=1)
    keep = np.abs(cross) > tolerance * scale
    return loop[keep] if keep.sum() >= 3 else loop


class Layer:
    """Contours of one layer: ``loops`` are (k, 3) arrays cut at ``height``."""

    def __init__(self, index, bottom, top, height, loops, axis=2):
        self.index = index
        self.bottom = bottom
        self.top = top
        self.height = height
        self.loops = loops
        self.axis = axis

    @property
    def plane_axes(self):
        return [i for i in range(3) if i != self.axis]

    def planar_loops(self):
        """Loops as (k, 2) arrays in the slicing plane."""
        return [loop[:, self.plane_axes] for loop in self.loops]

    def polygons(self, tolerance=1e-9):
        """One shapely Polygon per loop, collinear points removed.

        Loops with fewer than three points enclose nothing and are skipped.
        """
        polys = []
        for loop in self.planar_loops():
            if len(loop) < 3:
                continue
            if tolerance is not None:
                loop = drop_collinear(loop, tolerance)
            polys.append(Polygon(loop))
        return polys

    def region(self):
        """Area enclosed by the layer, holes subtracted (even-odd over loops)."""
        polys = sorted((p for p in self.polygons() if p.is_valid and p.area > 0),
                       key=lambda p: p.area, reverse=True)
        if not polys:
            return Polygon()
        return reduce(lambda acc, p: acc.symmetric_difference(p), polys[1:], polys[0])

    def __len__(self):
        return len(self.loops)

    def __repr__(self):
        return f"Layer(index={self.index}, height={self.height:.4f}, loops={len(self.loops)})"


class SliceResult:
    """Ordered layers of one mesh."""

    def __init__(self, layers, layer_height, axis=2):
        self.layers = layers
        self.layer_height = layer_height
        self.axis = axis

    @property
    def heights(self):
        return [layer.height for layer in self.layers]

    def __len__(self):
        return len(self.layers)

    def __iter__(self):
        return iter(self.layers)

    def __getitem__(self, i):
        return self.layers[i]


def _process_params(kwargs):
    params = {
        'layer_height': kwargs.get('layer_height', 0.2),
        'base_height': kwargs.get('base_height'),
        'time_limit': kwargs.get('time_limit'),
        'validate': kwargs.get('validate', True),
        'verbose': kwargs.get('verbose', False),
    }
    if not params['layer_height'] > 0:
        raise ValueError(f"layer_height must be positive, got {params['layer_height']}")
    return params


def slice_mesh(mesh: MeshData, layer_height=0.2, **kwargs):
    """
    Slice mesh into horizontal contours.

    Layer k spans [base + k*h, base + (k+1)*h] and is cut at its middle;
    ``base_height`` defaults to the lowest vertex. Layers are produced until
    the sweep has passed the top of the mesh.

    On a fatal error the layers finished so far are attached to the
    exception as ``partial_layers``.
    """
    params = _process_params(dict(kwargs, layer_height=layer_height))
    h = params['layer_height']

    if params['validate']:
        validate_mesh(mesh)
    if len(mesh.faces) == 0:
        log.warning("Mesh has no triangles, nothing to slice.")
        return SliceResult([], h, mesh.axis)

    base = params['base_height']
    if base is None:
        base = mesh.height_range[0]

    towers = build_towers(mesh)
    sweep = TowerSweep(mesh, towers, time_limit=params['time_limit'], verbose=params['verbose'])
    log.info(f"Slicing {mesh} with layer height {h}")

    layers = []
    try:
        index = 0
        while not sweep.is_finished:
            bottom = base + index * h
            height = bottom + h / 2.0
            sweep.advance_to_height(height)
            if sweep.is_finished:
                break
            layers.append(Layer(index, bottom, bottom + h, height, sweep.emit(), axis=mesh.axis))
            index += 1
    except SlicerError as e:
        e.partial_layers = layers
        log.error(f"Slicing failed after {len(layers)} layers: {e}")
        raise

    log.info(f"Slicing complete. Generated {len(layers)} layers.")
    return SliceResult(layers, h, mesh.axis)


def slice_mesh_file(path, layer_height=0.2, axis=2, center=True, **kwargs):
    mesh = load_mesh(path, axis=axis, center=center)
    return slice_mesh(mesh, layer_height, **kwargs)


def generate_gcode(result: SliceResult,
                   feedrate=1500,
                   extrusion_per_mm=0.05,
                   travel_feed=3000):
    """
    Turn sliced loops into a simple G-code string.

    Only prints perimeters, no infill or supports.
    """
    e_pos = 0.0
    lines = []
    # G-code header
    lines += [
        "; towerslice perimeter output",
        "G21         ; units = mm",
        "G90         ; absolute coordinates",
        "M82         ; absolute extrusion",
        "G28         ; home",
        "G1 Z5 F3000 ; lift",
    ]

    for layer in result:
        loops = layer.planar_loops()
        if not loops:
            continue
        lines.append(f"; Layer {layer.index} at Z={layer.height:.3f}")
        lines.append(f"G1 Z{layer.height:.3f} F{travel_feed}")
        for loop in loops:
            x0, y0 = loop[0]
            lines.append(f"G1 X{x0:.3f} Y{y0:.3f} F{travel_feed}")
            # extrude around the loop and back to its start
            for (x1, y1), (x2, y2) in zip(loop, np.roll(loop, -1, axis=0)):
                e_pos += math.hypot(x2 - x1, y2 - y1) * extrusion_per_mm
                lines.append(f"G1 X{x2:.3f} Y{y2:.3f} E{e_pos:.5f} F{feedrate}")
    # footer
    lines += [
        "M104 S0     ; turn off extruder",
        "M140 S0     ; turn off bed",
        "G1 X0 Y0    ; park head",
        "M84         ; disable motors",
    ]
    return "\n".join(lines)


def build_parser():
    p = argparse.ArgumentParser(
        prog="towerslice",
        description="Slice a closed triangle mesh into perimeter G-code")
    p.add_argument("input", help="Input mesh file (STL, OBJ, PLY, ...)")
    p.add_argument("output", help="Output G-code file")
    p.add_argument("--layer-height", "-l", type=float, default=0.2)
    p.add_argument("--axis", choices=["x", "y", "z"], default="z",
                   help="Axis to slice along")
    p.add_argument("--no-center", action="store_true",
                   help="Keep the mesh where it is instead of placing it on the bed")
    p.add_argument("--extrusion", "-e", type=float, default=0.05,
                   help="E per mm")
    p.add_argument("--feed", "-f", type=int, default=1500,
                   help="Printing feedrate (F)")
    p.add_argument("--travel-feed", type=int, default=3000,
                   help="Travel moves feedrate")
    p.add_argument("--time-limit", type=float, default=None,
                   help="Abort the sweep after this many seconds")
    p.add_argument("--verbose", "-v", action="store_true")
    return p


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')

    try:
        result = slice_mesh_file(args.input, args.layer_height,
                                 axis="xyz".index(args.axis),
                                 center=not args.no_center,
                                 time_limit=args.time_limit,
                                 verbose=args.verbose)
    except SlicerError as e:
        log.error(str(e))
        return 1

    gcode = generate_gcode(result,
                           feedrate=args.feed,
                           extrusion_per_mm=args.extrusion,
                           travel_feed=args.travel_feed)
    try:
        with open(args.output, "w") as fp:
            fp.write(gcode)
    except OSError as e:
        log.error(f"Could not write {args.output}: {e}")
        return 1
    log.info(f"Wrote {len(result)} layers -> {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
