import json

import pytest

from osm_feature_extractor.config import Config
from osm_feature_extractor.converter import FeatureConverter, is_valid_geometry
from osm_feature_extractor.entries import MalformedEntryError

from .conftest import (EXPECTED_RING, InMemoryConverter, entry_line, read_gzip_json_lines, relation, way,
                       write_gzip_lines)

SQUARE = {'a': [10, 10], 'b': [11, 10], 'c': [11, 11], 'd': [10, 11],
          'e': [20, 20], 'f': [21, 20], 'g': [21, 21], 'h': [20, 21]}


def multipolygon_relation():
    ways = [way('11', 'a', 'b', 'c', 'd', 'a', coordinates=SQUARE),
            way('12', 'e', 'f', 'g', 'h', 'e', coordinates=SQUARE)]
    return relation('8', ways, tags={'name': 'Islands', 'place': 'archipelago'})


def node_record(node_id, name=None, **tags):
    if name is not None:
        tags['name'] = name
    return {'id': node_id, 'l': [4.9, 52.37], 'tags': tags}


def test_process_relations(memory_converter, boundary_relation):
    lines = [entry_line('1', boundary_relation), entry_line('2', multipolygon_relation())]
    report = memory_converter.process_relations(lines)

    features = memory_converter.writers['relations'].features
    assert len(features) == 2
    assert report.written == 2

    geometry = features[0]['geometry']
    assert geometry['type'] == 'Polygon'
    ring = geometry['coordinates'][0]
    assert len(ring) == 7
    assert ring[2] == [2, 1]
    assert ring == EXPECTED_RING

    assert features[1]['geometry']['type'] == 'MultiPolygon'
    assert memory_converter.writers['relations'].closed


def test_output_follows_input_order(memory_converter):
    lines = [entry_line(f"{i:04d}", node_record(i, f"Shop number {i}", shop='bakery')) for i in range(300)]
    memory_converter.process_nodes(lines)
    ids = [f['id'] for f in memory_converter.writers['nodes'].features]
    assert ids == [f"osmnode/{i}" for i in range(300)]


def test_report_counts_filtered_and_suppressed(memory_converter):
    lines = [
        '1;{}',
        entry_line('2', node_record(2, 'Nameless? no, categoryless')),
        entry_line('3', node_record(3, None, amenity='bench', note='no name on this one')),
        entry_line('4', node_record(4, 'Central Station', railway='station')),
    ]
    report = memory_converter.process_nodes(lines)

    assert report.read == 4
    assert report.filtered == 1
    assert report.suppressed == 2
    assert report.written == 1
    assert report.diagnostics == {'uncategorized': 1, 'unnamed': 1}
    assert report.geometry_types == {'Point': 1}
    assert memory_converter.writers['nodes'].features[0]['categories'] == {'osm': ['train-station']}


def test_malformed_line_aborts_the_stage(memory_converter):
    lines = [entry_line('1', node_record(1, 'Museum of Things', tourism='museum')), 'no separator at all']
    with pytest.raises(MalformedEntryError):
        memory_converter.process_nodes(lines)
    assert memory_converter.writers['nodes'].closed


def test_unknown_stage_is_rejected(memory_converter):
    with pytest.raises(ValueError):
        memory_converter.process_stage('areas', [])


def test_run_converts_gzip_files(tmp_path, boundary_relation):
    input_dir = tmp_path / 'in'
    output_dir = tmp_path / 'out'
    input_dir.mkdir()

    street = way('20', '1', '2', '3')
    street['tags'] = {'name': 'Long Street', 'highway': 'residential'}
    write_gzip_lines(input_dir / 'nodeid2rawnodejson.gz', [
        entry_line('1', node_record(1, 'Corner Bakery', shop='bakery')),
        entry_line('2', node_record(2, 'Bus Stop', public_transport='stop_position', bus='yes')),
    ])
    write_gzip_lines(input_dir / 'wayid2completejson.gz', [entry_line('20', street)])
    write_gzip_lines(input_dir / 'relid2completejson.gz', [entry_line('7', boundary_relation)])

    config = Config(input_directory=str(input_dir), output_directory=str(output_dir),
                    worker_count=2, batch_size=1, validate_geometries=True)
    reports = FeatureConverter(config).run()

    pois = read_gzip_json_lines(output_dir / 'osm-pois.gz')
    ways = read_gzip_json_lines(output_dir / 'osm-ways.gz')
    relations = read_gzip_json_lines(output_dir / 'osm-relations.gz')
    assert [p['title'] for p in pois] == ['Corner Bakery', 'Bus Stop']
    assert pois[1]['categories'] == {'osm': ['bus-stop']}
    assert ways[0]['geometry']['type'] == 'LineString'
    assert relations[0]['admin_centre'] == '555'
    assert reports['relations'].invalid_geometries == 0

    with open(output_dir / 'qa_summary.json') as f:
        summary = json.load(f)
    assert summary['stages']['nodes']['written'] == 2
    assert summary['stages']['relations']['geometry_types'] == {'Polygon': 1}
    assert summary['worker_count'] == 2


def test_is_valid_geometry():
    bowtie = {'type': 'Polygon', 'coordinates': [[[0, 0], [1, 1], [1, 0], [0, 1], [0, 0]]]}
    square = {'type': 'Polygon', 'coordinates': [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]]}
    degenerate = {'type': 'Polygon', 'coordinates': [[[0, 0], [0, 0]]]}
    assert not is_valid_geometry(bowtie)
    assert is_valid_geometry(square)
    assert not is_valid_geometry(degenerate)
    assert is_valid_geometry({'type': 'Point', 'coordinates': [0, 0]})


def test_in_memory_converter_uses_config_throughput():
    converter = InMemoryConverter(Config(worker_count=1, batch_size=50, queue_capacity=1))
    lines = [entry_line(str(i), node_record(i, f"Place called {i}", place='village')) for i in range(120)]
    report = converter.process_nodes(lines)
    assert report.written == 120
