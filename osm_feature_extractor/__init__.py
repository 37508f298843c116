"""
OSM feature extractor

Converts pre-sorted OpenStreetMap extracts (one ``key;value`` record per
line, gzip compressed) into categorized GeoJSON features: points of
interest, ways and relation boundaries.

Usage:
    python -m osm_feature_extractor convert --input-dir ./work --output-dir ./out
"""

from .config import Config
from .converter import FeatureConverter, StageReport
from .entries import Entry, MalformedEntryError, parse_entry
from .features import BuildResult, build_node_feature, build_relation_feature, build_way_feature
from .join import JoinedGroup, MergeJoinIterator, OutOfOrderKeyError, join_files
from .pipeline import FILTERED, ConcurrentPipeline, compose, consume, process_concurrently
from .relations import RelationGeometryAssembler, RingIndex, assemble_relation
from .tags import TagClassification, classify_tags

__version__ = "1.0.0"
