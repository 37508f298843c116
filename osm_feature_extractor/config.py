"""Configuration for the OSM feature extractor."""

import json
import hashlib
from dataclasses import dataclass, asdict
from pathlib import Path

import yaml


@dataclass
class Config:
    """Configuration class for feature extraction parameters."""
    # Processing parameters
    worker_count: int = 4
    batch_size: int = 10
    queue_capacity: int = 100
    min_payload_length: int = 50
    strict_key_order: bool = False

    # Input parameters
    input_directory: str = "./"
    nodes_file: str = "nodeid2rawnodejson.gz"
    ways_file: str = "wayid2completejson.gz"
    relations_file: str = "relid2completejson.gz"

    # Output parameters
    output_directory: str = "./"
    pois_output: str = "osm-pois.gz"
    ways_output: str = "osm-ways.gz"
    relations_output: str = "osm-relations.gz"
    include_localized_names: bool = False

    # Logging parameters
    log_level: str = "INFO"
    progress_log_interval: int = 100000

    # QA parameters
    enable_qa_metrics: bool = True
    validate_geometries: bool = False

    @classmethod
    def from_yaml(cls, yaml_path: str) -> 'Config':
        """Load configuration from YAML file."""
        with open(yaml_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        defaults = cls()
        config_dict = {}

        # Map YAML sections to Config attributes
        if 'processing' in data:
            processing = data['processing']
            config_dict.update({
                'worker_count': processing.get('worker_count', defaults.worker_count),
                'batch_size': processing.get('batch_size', defaults.batch_size),
                'queue_capacity': processing.get('queue_capacity', defaults.queue_capacity),
                'min_payload_length': processing.get('min_payload_length', defaults.min_payload_length),
                'strict_key_order': processing.get('strict_key_order', defaults.strict_key_order),
            })

        if 'input' in data:
            inputs = data['input']
            config_dict.update({
                'input_directory': inputs.get('directory', defaults.input_directory),
                'nodes_file': inputs.get('nodes_file', defaults.nodes_file),
                'ways_file': inputs.get('ways_file', defaults.ways_file),
                'relations_file': inputs.get('relations_file', defaults.relations_file),
            })

        if 'output' in data:
            output = data['output']
            config_dict.update({
                'output_directory': output.get('directory', defaults.output_directory),
                'pois_output': output.get('pois_file', defaults.pois_output),
                'ways_output': output.get('ways_file', defaults.ways_output),
                'relations_output': output.get('relations_file', defaults.relations_output),
                'include_localized_names': output.get('include_localized_names', defaults.include_localized_names),
            })

        if 'logging' in data:
            logging_section = data['logging']
            config_dict.update({
                'log_level': logging_section.get('level', defaults.log_level),
                'progress_log_interval': logging_section.get('progress_log_interval', defaults.progress_log_interval),
            })

        if 'qa' in data:
            qa = data['qa']
            config_dict.update({
                'enable_qa_metrics': qa.get('enable_qa_metrics', defaults.enable_qa_metrics),
                'validate_geometries': qa.get('validate_geometries', defaults.validate_geometries),
            })

        config = cls(**config_dict)
        config.validate()
        return config

    def validate(self):
        """Reject settings the pipeline cannot run with."""
        for name in ('worker_count', 'batch_size', 'queue_capacity', 'progress_log_interval'):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")
        if self.min_payload_length < 0:
            raise ValueError(f"min_payload_length must not be negative, got {self.min_payload_length!r}")

    def input_path(self, file_name: str) -> Path:
        return Path(self.input_directory) / file_name

    def output_path(self, file_name: str) -> Path:
        return Path(self.output_directory) / file_name

    def get_parameter_hash(self) -> str:
        """Generate a hash of configuration parameters for run manifests."""
        config_str = json.dumps(asdict(self), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]
