# tower.py
"""
Incremental cross-section sweep over a triangle mesh.

Rough algorithm:

    build towers
        every vertex stores the fragments of cross-section boundary that
        start at it: the faces and edges connected to but above it

    progress up the towers
        pop vertices lowest first, cut the active rings at the edges that
        end at the vertex, splice in the vertex's own fragments and join
        everything back into closed rings

At any height between two vertex events each ring lists, in order, the mesh
edges crossed by the cutting plane, so a layer is just one interpolated point
per edge.
"""

import heapq
import logging
import time
from typing import NamedTuple

import numpy as np

from .errors import (InterpolationRangeError, RingClosureAssertionError,
                     SliceTimeoutError, UnresolvedFragmentError)
from .mesh_io import MeshData

log = logging.getLogger(__name__)


class EdgeToken(NamedTuple):
    """Mesh edge, ``low`` precedes ``high`` in sweep order."""
    low: int
    high: int

    def __str__(self):
        return f"E{self.low}-{self.high}"


class FaceToken(NamedTuple):
    """Mesh triangle by index."""
    index: int

    def __str__(self):
        return f"F{self.index}"


class Fragment:
    """Ordered chain of edge and face tokens; a ring when it closes on an edge."""

    __slots__ = ("tokens",)

    def __init__(self, tokens=()):
        self.tokens = list(tokens)

    @property
    def first(self):
        return self.tokens[0]

    @property
    def last(self):
        return self.tokens[-1]

    def edges(self):
        return [t for t in self.tokens if isinstance(t, EdgeToken)]

    def is_ring(self):
        return _can_close(self.tokens) and isinstance(self.tokens[0], EdgeToken)

    def __len__(self):
        return len(self.tokens)

    def __iter__(self):
        return iter(self.tokens)

    def __eq__(self, other):
        if isinstance(other, Fragment):
            return self.tokens == other.tokens
        return NotImplemented

    __hash__ = None

    def __repr__(self):
        return f"Fragment({self.tokens!r})"

    def __str__(self):
        return " ".join(str(t) for t in self.tokens)


def _can_close(tokens):
    # a seam token showing up inside the chain would thread one entity twice
    return len(tokens) > 3 and tokens[0] == tokens[-1] and tokens[0] not in tokens[1:-1]


def _reseam(tokens):
    """Rotate a chain closed on a face so that it starts and ends on an edge."""
    if isinstance(tokens[0], EdgeToken):
        return tokens
    body = tokens[:-1]
    start = next(i for i, t in enumerate(body) if isinstance(t, EdgeToken))
    body = body[start:] + body[:start]
    return body + [body[0]]


def split_on_edges(ring, edges):
    """Cut a closed ring at every occurrence of any edge in ``edges``.

    The matched edge tokens are dropped. Because the ring is cyclic, the run
    left open after the last cut is stitched onto the front of the first run
    (its leading token is the duplicated seam). Empty runs and lone face
    tokens, which mark a triangle whose apex was just reached, are discarded.
    A ring with no cut point comes back unchanged as its only fragment.
    """
    current = []
    pieces = []
    for token in ring:
        if isinstance(token, EdgeToken) and token in edges:
            pieces.append(current)
            current = []
        else:
            current.append(token)

    if not pieces:
        return [Fragment(current)]

    if pieces[0]:
        pieces[0] = current + pieces[0][1:]
    else:
        pieces[0] = current

    return [Fragment(p) for p in pieces
            if p and not (len(p) == 1 and isinstance(p[0], FaceToken))]


def split_on_edge(ring, edge):
    return split_on_edges(ring, (edge,))


def join_fragments(fragments):
    """Join fragments whose last token matches another fragment's first token.

    Merging is exhaustive and uses a first-token index instead of pairwise
    scanning. A chain that comes back to its own first token becomes a ring
    (re-seamed onto an edge if it closed on a face) and takes no further part
    in merging. Survivors keep their input order; the input is not modified.
    """
    chains = [list(f) for f in fragments]
    starts = {}
    for i, chain in enumerate(chains):
        starts.setdefault(chain[0], []).append(i)

    absorbed = [False] * len(chains)
    closed = [False] * len(chains)

    for i, chain in enumerate(chains):
        if absorbed[i]:
            continue
        while True:
            candidates = starts.get(chain[-1], ())
            if i in candidates:
                if _can_close(chain):
                    chains[i] = _reseam(chain)
                    closed[i] = True
                break
            j = next((j for j in candidates if not absorbed[j] and not closed[j]), None)
            if j is None:
                break
            chain.extend(chains[j][1:])
            absorbed[j] = True

    return [Fragment(chain) for i, chain in enumerate(chains) if not absorbed[i]]


class VertexTower:
    """Fragments starting at one vertex plus the edges that end there."""

    __slots__ = ("vertex", "height", "fragments", "closing_edges")

    def __init__(self, vertex, height, fragments, closing_edges):
        self.vertex = vertex
        self.height = height
        self.fragments = fragments
        self.closing_edges = closing_edges

    def __repr__(self):
        return (f"VertexTower(vertex={self.vertex}, height={self.height}, "
                f"fragments={len(self.fragments)}, closing_edges={len(self.closing_edges)})")


def sweep_order(mesh: MeshData):
    """Rank of every vertex in sweep order: by height, ties broken by vertex id."""
    n = len(mesh.vertices)
    order = np.lexsort((np.arange(n), mesh.heights))
    rank = np.empty(n, dtype=np.int64)
    rank[order] = np.arange(n)
    return rank


def build_towers(mesh: MeshData):
    """Build one VertexTower per vertex.

    Each directed edge ``a -> b`` of a triangle's winding gives a two token
    fragment on the tower of its lower endpoint: ``[face, edge]`` when the
    winding rises along the edge, ``[edge, face]`` when it falls, so the
    fragments of neighbouring triangles chain head to tail. Tower fragments
    are joined locally before the sweep starts.
    """
    rank = sweep_order(mesh)
    heights = mesh.heights.tolist()
    n = len(mesh.vertices)
    fragments = [[] for _ in range(n)]
    closing = [set() for _ in range(n)]

    faces = mesh.faces
    for i in range(3):
        a = faces[:, i]
        b = faces[:, (i + 1) % 3]
        rising = rank[a] < rank[b]
        low = np.where(rising, a, b).tolist()
        high = np.where(rising, b, a).tolist()
        for t, (lo, hi, up) in enumerate(zip(low, high, rising.tolist())):
            edge = EdgeToken(lo, hi)
            face = FaceToken(t)
            fragments[lo].append(Fragment((face, edge) if up else (edge, face)))
            closing[hi].add(edge)

    towers = [VertexTower(v, heights[v], join_fragments(fragments[v]), frozenset(closing[v]))
              for v in range(n)]
    log.debug(f"Built {n} towers from {len(faces)} triangles")
    return towers


def interpolate_edges(mesh: MeshData, edges, height):
    """Points where ``edges`` cross the plane at ``height``, shape (len(edges), 3)."""
    if not edges:
        return np.empty((0, 3))
    idx = np.array(edges, dtype=np.int64)
    start = mesh.vertices[idx[:, 0]]
    end = mesh.vertices[idx[:, 1]]
    h0 = start[:, mesh.axis]
    h1 = end[:, mesh.axis]

    outside = ~((h0 <= height) & (height <= h1) & (h1 > h0))
    if outside.any():
        raise InterpolationRangeError(height, [edges[k] for k in np.flatnonzero(outside)])

    t = (height - h0) / (h1 - h0)
    points = start + t[:, np.newaxis] * (end - start)
    points[:, mesh.axis] = height
    return points


class SweepState:
    """Active rings just above the last processed vertex."""

    def __init__(self):
        self.rings = {}
        self.edge_index = {}
        self.height = -np.inf
        self.vertex = None
        self.processed = 0
        self._next_id = 0

    def add_ring(self, ring):
        ring_id = self._next_id
        self._next_id += 1
        self.rings[ring_id] = ring
        for edge in ring.edges():
            self.edge_index[edge] = ring_id

    def pop_ring(self, ring_id):
        ring = self.rings.pop(ring_id)
        for edge in ring.edges():
            self.edge_index.pop(edge, None)
        return ring


class TowerSweep:
    """Sweeps a plane up through the towers of one mesh."""

    def __init__(self, mesh: MeshData, towers=None, **kwargs):
        self.mesh = mesh
        self.params = self._process_params(kwargs)
        self.verbose = kwargs.get('verbose', True)
        self.state = SweepState()

        if towers is None:
            towers = build_towers(mesh)
        # (height, vertex) is unique, towers themselves are never compared
        self._queue = [(t.height, t.vertex, t) for t in towers]
        heapq.heapify(self._queue)

        limit = self.params['time_limit']
        self._deadline = None if limit is None else time.monotonic() + limit

    def _process_params(self, kwargs):
        params = {
            'time_limit': kwargs.get('time_limit'),
        }
        if params['time_limit'] is not None and params['time_limit'] <= 0:
            raise ValueError(f"time_limit must be positive, got {params['time_limit']}")
        return params

    def _log(self, message, level=logging.INFO):
        if self.verbose:
            log.log(level, message)

    @property
    def next_height(self):
        return self._queue[0][0] if self._queue else np.inf

    @property
    def is_finished(self):
        return not self._queue and not self.state.rings

    @property
    def rings(self):
        return list(self.state.rings.values())

    def advance_to_height(self, height):
        """Process every vertex strictly below ``height``."""
        while self._queue and self._queue[0][0] < height:
            if self._deadline is not None and time.monotonic() > self._deadline:
                raise SliceTimeoutError(
                    f"Sweep exceeded {self.params['time_limit']}s after {self.state.processed} vertices")
            _, _, tower = heapq.heappop(self._queue)
            self._process_vertex(tower)

        if not self._queue and self.state.rings:
            # the top vertex retires every edge of a closed mesh
            ring = next(iter(self.state.rings.values()))
            vertex = self.state.vertex
            raise UnresolvedFragmentError(vertex, float(self.mesh.heights[vertex]), ring)

        self.state.height = height

    def _process_vertex(self, tower: VertexTower):
        state = self.state
        retired = tower.closing_edges
        affected = sorted({state.edge_index[e] for e in retired if e in state.edge_index})

        pool = []
        for ring_id in affected:
            pool.extend(split_on_edges(state.pop_ring(ring_id), retired))
        pool.extend(tower.fragments)

        for chain in join_fragments(pool):
            if chain.first != chain.last:
                raise UnresolvedFragmentError(tower.vertex, tower.height, chain)
            if not chain.is_ring():
                raise RingClosureAssertionError(tower.vertex, tower.height, chain)
            state.add_ring(chain)

        state.vertex = tower.vertex
        state.processed += 1
        self._log(f"vertex {tower.vertex} at {tower.height:.4f}: split {len(affected)} ring(s), "
                  f"{len(state.rings)} active", logging.DEBUG)

    def emit(self, height=None):
        """One closed polygon, an (k, 3) array, per active ring at ``height``.

        ``height`` defaults to the height of the last ``advance_to_height``.

        Face tokens give no point and the ring's repeated seam edge is only
        counted once, so every crossed edge contributes exactly one point.
        """
        if height is None:
            height = self.state.height
        polygons = []
        for ring in self.state.rings.values():
            edges = [t for t in ring.tokens[:-1] if isinstance(t, EdgeToken)]
            polygons.append(interpolate_edges(self.mesh, edges, height))
        return polygons
