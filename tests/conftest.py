import gzip
import json

import pytest

from osm_feature_extractor.config import Config
from osm_feature_extractor.converter import FeatureConverter

# Corner points of the test boundary, keyed by node id
BOUNDARY_NODES = {
    '1': [0, 1],
    '2': [1, 0],
    '3': [2, 1],
    '4': [1.6, 1.5],
    '5': [1, 1.6],
    '6': [0.4, 1.5],
}

EXPECTED_RING = [[0, 1], [1, 0], [2, 1], [1.6, 1.5], [1, 1.6], [0.4, 1.5], [0, 1]]


def node_refs(*node_ids, coordinates=BOUNDARY_NODES):
    return [{'id': node_id, 'l': coordinates[node_id]} for node_id in node_ids]


def way(way_id, *node_ids, coordinates=BOUNDARY_NODES):
    return {'id': way_id, 'nodes': node_refs(*node_ids, coordinates=coordinates)}


def outer(way_id):
    return {'type': 'way', 'id': way_id, 'role': 'outer'}


def boundary_ways():
    """Four ways around BOUNDARY_NODES, stored out of order and partly reversed."""
    return [
        way('101', '1', '2'),
        way('104', '1', '6'),
        way('102', '4', '3', '2'),
        way('103', '4', '5', '6'),
    ]


def relation(relation_id, ways, members=None, tags=None):
    if members is None:
        members = [outer(w['id']) for w in ways]
    if tags is None:
        tags = {'name': f'Relation {relation_id}', 'boundary': 'administrative'}
    return {'id': relation_id, 'tags': tags, 'ways': ways, 'members': members}


def canonical_ring(ring):
    """Ring as a tuple that ignores start vertex and direction."""
    points = [tuple(point) for point in ring[:-1]]
    candidates = []
    for sequence in (points, points[::-1]):
        for i in range(len(sequence)):
            candidates.append(tuple(sequence[i:] + sequence[:i]))
    return min(candidates)


def entry_line(key, record):
    return f"{key};{json.dumps(record)}"


def write_gzip_lines(path, lines):
    with gzip.open(path, 'wt', encoding='utf-8') as f:
        for line in lines:
            f.write(line + '\n')


def read_gzip_json_lines(path):
    with gzip.open(path, 'rt', encoding='utf-8') as f:
        return [json.loads(line) for line in f if line.strip()]


class InMemoryWriter:
    def __init__(self):
        self.features = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.closed = True
        return False

    def add(self, feature):
        self.features.append(json.loads(json.dumps(feature)))


class InMemoryConverter(FeatureConverter):
    def __init__(self, config):
        super().__init__(config)
        self.writers = {}

    def create_writer(self, stage):
        writer = InMemoryWriter()
        self.writers[stage] = writer
        return writer


@pytest.fixture
def boundary_relation():
    members = [outer('101'), outer('104'), outer('102'), outer('103'),
               {'type': 'node', 'id': '555', 'role': 'admin_centre'}]
    return relation('7', boundary_ways(), members=members)


@pytest.fixture
def memory_converter():
    return InMemoryConverter(Config(worker_count=2, batch_size=1, queue_capacity=4))
