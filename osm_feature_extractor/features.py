"""Feature builder stages turning joined OSM records into GeoJSON-like features.

Each builder is a pure function of its record so that it can run on any
pipeline worker. Builders never raise for incomplete data; a record that
cannot become a feature yields a BuildResult without a feature and a
diagnostic counter saying why.
"""

import json
import logging
from collections import Counter
from typing import Any, Dict, Mapping, NamedTuple, Optional

import geojson

from .entries import Entry
from .pipeline import FILTERED
from .relations import COORDINATE_PRECISION, MIN_RING_LENGTH, assemble_relation
from .tags import classify_tags

logger = logging.getLogger(__name__)

DEFAULT_MIN_PAYLOAD_LENGTH = 50

NODE_ID_PREFIX = 'osmnode/'
WAY_ID_PREFIX = 'osmway/'
RELATION_ID_PREFIX = 'osmrelation/'


class BuildResult(NamedTuple):
    feature: Optional[Dict[str, Any]]
    diagnostics: Counter


def parse_record(entry: Entry, min_payload_length: int = DEFAULT_MIN_PAYLOAD_LENGTH):
    """Parse the JSON value of an entry, or FILTERED for a too short payload."""
    if len(entry.value) <= min_payload_length:
        logger.debug(f"Skipping {entry.key}: payload of {len(entry.value)} characters")
        return FILTERED
    return json.loads(entry.value)


def _record_name(record: Mapping[str, Any]) -> Optional[str]:
    tags = record.get('tags') or {}
    name = tags.get('name')
    return None if name is None else str(name)


def _suppressed(reason: str, diagnostics: Optional[Counter] = None) -> BuildResult:
    diagnostics = Counter() if diagnostics is None else diagnostics
    diagnostics[reason] += 1
    return BuildResult(None, diagnostics)


def _with_tags(record: Mapping[str, Any], feature: Dict[str, Any], diagnostics: Counter,
               include_names: bool) -> BuildResult:
    """Attach categories, address, links and names; drop uncategorizable features."""
    classification = classify_tags(record.get('tags') or {})
    if not classification.categories:
        return _suppressed('uncategorized', diagnostics)

    feature['categories'] = {'osm': sorted(classification.categories)}
    if classification.address:
        feature['address'] = classification.address
    if classification.links:
        feature['links'] = classification.links
    if include_names and classification.names:
        feature['names'] = classification.names
    return BuildResult(feature, diagnostics)


def build_node_feature(record: Mapping[str, Any], include_names: bool = False) -> BuildResult:
    """A named node becomes a Point feature."""
    name = _record_name(record)
    if name is None:
        return _suppressed('unnamed')

    coordinates = record.get('l')
    if coordinates is None:
        return _suppressed('no_geometry')

    feature = {
        'id': f"{NODE_ID_PREFIX}{record['id']}",
        'title': name,
        'geometry': geojson.Point(list(coordinates), precision=COORDINATE_PRECISION),
    }
    return _with_tags(record, feature, Counter(), include_names)


def way_geometry(nodes, diagnostics: Counter) -> Optional[geojson.geometry.Geometry]:
    """LineString over the way's nodes, or a Polygon if the way is closed."""
    coordinates = []
    for node in nodes:
        if node.get('l') is None:
            diagnostics['missing_coordinates'] += 1
            continue
        coordinates.append(list(node['l']))

    if len(coordinates) < 2:
        return None
    if len(coordinates) >= MIN_RING_LENGTH and coordinates[0] == coordinates[-1]:
        return geojson.Polygon([coordinates], precision=COORDINATE_PRECISION)
    return geojson.LineString(coordinates, precision=COORDINATE_PRECISION)


def build_way_feature(record: Mapping[str, Any], include_names: bool = False) -> BuildResult:
    name = _record_name(record)
    if name is None:
        return _suppressed('unnamed')

    diagnostics = Counter()
    geometry = way_geometry(record.get('nodes') or [], diagnostics)
    if geometry is None:
        return _suppressed('no_geometry', diagnostics)

    feature = {
        'id': f"{WAY_ID_PREFIX}{record['id']}",
        'title': name,
        'geometry': geometry,
    }
    return _with_tags(record, feature, diagnostics, include_names)


def build_relation_feature(record: Mapping[str, Any], include_names: bool = False) -> BuildResult:
    """A named relation whose outer ways form at least one closed ring."""
    name = _record_name(record)
    if name is None:
        return _suppressed('unnamed')

    relation = assemble_relation(record)
    diagnostics = relation.diagnostics
    if relation.geometry is None:
        return _suppressed('no_geometry', diagnostics)

    feature = {
        'id': f"{RELATION_ID_PREFIX}{record['id']}",
        'title': name,
        'geometry': relation.geometry,
    }
    if relation.admin_centre is not None:
        feature['admin_centre'] = relation.admin_centre
    return _with_tags(record, feature, diagnostics, include_names)
