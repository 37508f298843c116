"""Conversion of sorted node, way and relation files into feature streams."""

import json
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence

from shapely.errors import ShapelyError
from shapely.geometry import shape

from .config import Config
from .entries import open_gzip_lines, parse_entry
from .features import BuildResult, build_node_feature, build_relation_feature, build_way_feature, parse_record
from .output import FeatureWriter, ProgressCounter
from .pipeline import compose, process_concurrently

logger = logging.getLogger(__name__)

NODES = 'nodes'
WAYS = 'ways'
RELATIONS = 'relations'
STAGES = (NODES, WAYS, RELATIONS)

_BUILDERS = {
    NODES: build_node_feature,
    WAYS: build_way_feature,
    RELATIONS: build_relation_feature,
}

_AREA_TYPES = ('Polygon', 'MultiPolygon')


@dataclass
class StageReport:
    """Counts collected while converting one input file."""
    stage: str
    read: int = 0
    produced: int = 0
    written: int = 0
    diagnostics: Counter = field(default_factory=Counter)
    geometry_types: Counter = field(default_factory=Counter)
    invalid_geometries: int = 0
    elapsed_seconds: float = 0.0

    @property
    def filtered(self) -> int:
        """Records dropped before a build result existed (short payloads)."""
        return self.read - self.produced

    @property
    def suppressed(self) -> int:
        return self.produced - self.written

    def record(self, result: BuildResult):
        self.produced += 1
        self.diagnostics.update(result.diagnostics)
        if result.feature is not None:
            self.written += 1
            self.geometry_types[result.feature['geometry']['type']] += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'read': self.read,
            'written': self.written,
            'filtered': self.filtered,
            'suppressed': self.suppressed,
            'diagnostics': dict(sorted(self.diagnostics.items())),
            'geometry_types': dict(sorted(self.geometry_types.items())),
            'invalid_geometries': self.invalid_geometries,
            'elapsed_seconds': round(self.elapsed_seconds, 3),
        }


def is_valid_geometry(geometry) -> bool:
    """Check a polygonal geometry with shapely; other types are always valid."""
    if geometry['type'] not in _AREA_TYPES:
        return True
    try:
        return shape(geometry).is_valid
    except (ValueError, ShapelyError):
        return False


class FeatureConverter:
    """Runs the node, way and relation stages over the sorted inputs."""

    def __init__(self, config: Config):
        self.config = config
        self.reports: Dict[str, StageReport] = {}

    def input_file(self, stage: str) -> Path:
        names = {
            NODES: self.config.nodes_file,
            WAYS: self.config.ways_file,
            RELATIONS: self.config.relations_file,
        }
        return self.config.input_path(names[stage])

    def output_file(self, stage: str) -> Path:
        names = {
            NODES: self.config.pois_output,
            WAYS: self.config.ways_output,
            RELATIONS: self.config.relations_output,
        }
        return self.config.output_path(names[stage])

    def create_writer(self, stage: str):
        """Sink for one stage; must support the context manager protocol and add()."""
        return FeatureWriter(self.output_file(stage))

    def create_processor(self, stage: str):
        builder = partial(_BUILDERS[stage], include_names=self.config.include_localized_names)
        return compose(parse_entry,
                       partial(parse_record, min_payload_length=self.config.min_payload_length),
                       builder)

    def process_nodes(self, lines: Optional[Iterable[str]] = None) -> StageReport:
        return self.process_stage(NODES, lines)

    def process_ways(self, lines: Optional[Iterable[str]] = None) -> StageReport:
        return self.process_stage(WAYS, lines)

    def process_relations(self, lines: Optional[Iterable[str]] = None) -> StageReport:
        return self.process_stage(RELATIONS, lines)

    def process_stage(self, stage: str, lines: Optional[Iterable[str]] = None) -> StageReport:
        """Convert one stage, reading its default input file unless lines are given."""
        if stage not in _BUILDERS:
            raise ValueError(f"Unknown stage {stage!r}, expected one of {', '.join(STAGES)}")
        if lines is not None:
            return self._run_stage(stage, lines)

        input_file = self.input_file(stage)
        logger.info(f"Processing {stage} from {input_file}")
        with open_gzip_lines(input_file) as file_lines:
            return self._run_stage(stage, file_lines)

    def _run_stage(self, stage: str, lines: Iterable[str]) -> StageReport:
        report = StageReport(stage)
        validate = self.config.validate_geometries
        start_time = time.time()

        def counted(source):
            for line in source:
                report.read += 1
                yield line

        with self.create_writer(stage) as writer, \
                ProgressCounter(f"process {stage}", stage, self.config.progress_log_interval) as counter, \
                process_concurrently(counted(lines), self.create_processor(stage),
                                     worker_count=self.config.worker_count,
                                     batch_size=self.config.batch_size,
                                     queue_capacity=self.config.queue_capacity,
                                     name=f"{stage}-pipeline") as results:
            for result in results:
                report.record(result)
                if result.feature is None:
                    continue
                if validate and not is_valid_geometry(result.feature['geometry']):
                    report.invalid_geometries += 1
                writer.add(result.feature)
                counter.inc()

        report.elapsed_seconds = time.time() - start_time
        self.reports[stage] = report

        logger.info(f"{stage}: read {report.read}, wrote {report.written}, "
                    f"filtered {report.filtered}, suppressed {report.suppressed} "
                    f"in {report.elapsed_seconds:.2f}s")
        if report.diagnostics:
            logger.info(f"{stage} diagnostics: {dict(report.diagnostics)}")
        return report

    def run(self, stages: Sequence[str] = STAGES) -> Dict[str, StageReport]:
        """Process the given stages in order and write the QA summary."""
        for stage in stages:
            self.process_stage(stage)
        if self.config.enable_qa_metrics:
            self.write_qa_summary()
        return self.reports

    def qa_metrics(self) -> Dict[str, Any]:
        return {
            'config_hash': self.config.get_parameter_hash(),
            'worker_count': self.config.worker_count,
            'batch_size': self.config.batch_size,
            'queue_capacity': self.config.queue_capacity,
            'validate_geometries': self.config.validate_geometries,
            'total_elapsed_seconds': round(sum(r.elapsed_seconds for r in self.reports.values()), 3),
            'stages': {stage: report.to_dict() for stage, report in self.reports.items()},
        }

    def write_qa_summary(self) -> Path:
        qa_file = self.config.output_path('qa_summary.json')
        qa_file.parent.mkdir(parents=True, exist_ok=True)
        with open(qa_file, 'w') as f:
            json.dump(self.qa_metrics(), f, indent=2)
        logger.info(f"Saved QA summary: {qa_file}")
        return qa_file
