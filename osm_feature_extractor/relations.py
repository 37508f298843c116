"""Reconstruction of relation boundaries from unordered outer ways.

OSM relations list their member ways in arbitrary order and orientation.
The assembler connects the ways through shared endpoint node ids and
turns every closed walk into one polygon ring. Only outer boundaries are
considered; holes are not supported and the winding order of the
resulting rings is not normalized.
"""

import logging
from collections import Counter
from typing import Any, Dict, List, Mapping, NamedTuple, Optional

import geojson

logger = logging.getLogger(__name__)

COORDINATE_PRECISION = 7
# A linear ring repeats its first position, so a triangle needs four
MIN_RING_LENGTH = 4


class HalfEdge(NamedTuple):
    """One traversal direction of a way, registered at its start node."""
    way_index: int
    node_id: str
    next_node_id: str
    coordinates: List[List[float]]


class RingIndex:
    """Maps a node id to the (at most two) half-edges starting there.

    Created for a single relation and thrown away afterwards.
    """

    MAX_EDGES_PER_NODE = 2

    def __init__(self):
        self._edges: Dict[str, List[HalfEdge]] = {}

    def __len__(self) -> int:
        return len(self._edges)

    def add(self, edge: HalfEdge) -> bool:
        """Register ``edge``; returns False if its node is already full."""
        registered = self._edges.setdefault(edge.node_id, [])
        if len(registered) >= self.MAX_EDGES_PER_NODE:
            return False
        registered.append(edge)
        return True

    def first_node(self) -> str:
        return next(iter(self._edges))

    def get(self, node_id: str) -> Optional[List[HalfEdge]]:
        return self._edges.get(node_id)

    def remove(self, node_id: str):
        self._edges.pop(node_id, None)


class RelationGeometryAssembler:
    """Stitches the outer ways of one relation into closed rings."""

    def __init__(self, relation_id: Any = None, name: Optional[str] = None):
        self.relation_id = relation_id
        self.name = name
        self._index = RingIndex()
        self._way_count = 0
        self.dropped_edges = 0
        self.open_rings = 0

    def add_way(self, node_ids: List[str], coordinates: List[List[float]]):
        """Register a way by its node ids and matching coordinates."""
        if not coordinates:
            return
        if len(node_ids) != len(coordinates):
            raise ValueError(f"{len(node_ids)} node ids for {len(coordinates)} coordinates")

        way_index = self._way_count
        self._way_count += 1
        first_id, last_id = node_ids[0], node_ids[-1]

        for edge in (HalfEdge(way_index, first_id, last_id, coordinates),
                     HalfEdge(way_index, last_id, first_id, coordinates[::-1])):
            if not self._index.add(edge):
                self.dropped_edges += 1
                logger.warning(f"Node {edge.node_id} already joins two ways, dropping another one "
                               f"(relation {self.relation_id}, {self.name})")

    def assemble(self) -> List[List[List[float]]]:
        """Walk the registered ways and return every closed ring found."""
        rings = []
        index = self._index

        while len(index):
            edge = index.get(index.first_node())[0]
            boundary = list(edge.coordinates[:1])

            while True:
                # Skip the first coordinate of every way, it closes the previous one
                boundary.extend(edge.coordinates[1:])
                index.remove(edge.node_id)

                candidates = index.get(edge.next_node_id)
                if candidates is None:
                    break
                sibling = next((c for c in candidates if c.way_index != edge.way_index), None)
                if sibling is None:
                    index.remove(edge.next_node_id)
                    break
                edge = sibling

            if len(boundary) < MIN_RING_LENGTH or boundary[0] != boundary[-1]:
                self.open_rings += 1
                logger.debug(f"Discarding open boundary of {len(boundary)} coordinates "
                             f"(relation {self.relation_id}, {self.name})")
                continue

            rings.append(boundary)

        return rings


class RelationGeometry(NamedTuple):
    geometry: Optional[geojson.geometry.Geometry]
    admin_centre: Optional[str]
    diagnostics: Counter


def rings_to_geometry(rings: List[List[List[float]]]) -> Optional[geojson.geometry.Geometry]:
    """One ring becomes a Polygon, several a MultiPolygon, none nothing."""
    if not rings:
        return None
    if len(rings) == 1:
        return geojson.Polygon([rings[0]], precision=COORDINATE_PRECISION)
    return geojson.MultiPolygon([[ring] for ring in rings], precision=COORDINATE_PRECISION)


def assemble_relation(record: Mapping[str, Any]) -> RelationGeometry:
    """Build the geometry of a relation record with resolved member ways."""
    tags = record.get('tags') or {}
    relation_id = record.get('id')
    name = tags.get('name')
    diagnostics = Counter()

    ways = record.get('ways') or []
    if isinstance(ways, Mapping):
        ways = {str(way_id): way for way_id, way in ways.items()}
    else:
        ways = {str(way['id']): way for way in ways}
    assembler = RelationGeometryAssembler(relation_id, name)
    admin_centre = None

    for member in record.get('members') or []:
        role = member.get('role')
        if role == 'outer' and member.get('type', 'way') == 'way':
            way = ways.get(str(member.get('id')))
            if way is None:
                diagnostics['missing_ways'] += 1
                logger.debug(f"Relation {relation_id} references missing way {member.get('id')}")
                continue

            node_ids, coordinates = [], []
            for node in way.get('nodes') or []:
                if node.get('l') is None:
                    diagnostics['missing_coordinates'] += 1
                    continue
                node_ids.append(str(node['id']))
                coordinates.append(list(node['l']))
            assembler.add_way(node_ids, coordinates)

        elif role == 'admin_centre' and member.get('type') == 'node':
            if admin_centre is not None:
                logger.warning(f"Multiple admin_centre members: {admin_centre}, {member.get('id')} "
                               f"(relation {relation_id}, {name})")
            else:
                admin_centre = str(member.get('id'))

    rings = assembler.assemble()
    if assembler.dropped_edges:
        diagnostics['dropped_topology_edges'] += assembler.dropped_edges
    if assembler.open_rings:
        diagnostics['open_rings'] += assembler.open_rings

    return RelationGeometry(rings_to_geometry(rings), admin_centre, diagnostics)
