"""Configuration models using Pydantic for validation."""
from typing import Dict, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator
import os

from opmetrics.labels import DEFAULT_MAX_INDEX_COUNT, DEFAULT_WILDCARD_TOKEN, WILDCARD
from opmetrics.sketch import DEFAULT_RELATIVE_ACCURACY


class ClassifierConfig(BaseModel):
    """Request classification settings."""
    max_index_count: int = Field(default=DEFAULT_MAX_INDEX_COUNT, ge=1)
    wildcard_token: str = DEFAULT_WILDCARD_TOKEN

    @field_validator('wildcard_token')
    @classmethod
    def validate_wildcard_token(cls, v):
        """The replacement must not reintroduce the wildcard."""
        if not v or WILDCARD in v:
            raise ValueError(f"wildcard_token must be non-empty and must not contain '{WILDCARD}'")
        return v


class SketchConfig(BaseModel):
    """Quantile sketch accuracy."""
    relative_accuracy: float = Field(default=DEFAULT_RELATIVE_ACCURACY, gt=0.0, lt=1.0)


class TogglesConfig(BaseModel):
    """Initial values of the runtime toggles."""
    coordinator_metrics_enabled: bool = True
    task_resource_track_enabled: bool = True


class PrometheusExporterConfig(BaseModel):
    """Prometheus pull exporter configuration."""
    enabled: bool = True
    port: int = 9108
    prefix: str = ""
    bind_address: str = "0.0.0.0"


class OTELExporterConfig(BaseModel):
    """OpenTelemetry push exporter configuration."""
    enabled: bool = False
    endpoint: str = "localhost:4317"
    insecure: bool = True
    prefix: str = ""
    export_interval_s: int = 10
    headers: Dict[str, str] = Field(default_factory=dict)
    resource: Dict[str, str] = Field(default_factory=dict)


class ExportersConfig(BaseModel):
    """Configuration for all exporters."""
    prometheus: PrometheusExporterConfig = Field(default_factory=PrometheusExporterConfig)
    otel: OTELExporterConfig = Field(default_factory=OTELExporterConfig)


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    flush_interval_s: float = Field(default=10.0, gt=0.0)
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"
    control_api_port: int = 8081


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    sketch: SketchConfig = Field(default_factory=SketchConfig)
    toggles: TogglesConfig = Field(default_factory=TogglesConfig)
    exporters: ExportersConfig = Field(default_factory=ExportersConfig)


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    import yaml

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    if env_endpoint := os.getenv('OTEL_ENDPOINT'):
        raw_config.setdefault('exporters', {}).setdefault('otel', {})['endpoint'] = env_endpoint

    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    if env_interval := os.getenv('OPMETRICS_FLUSH_INTERVAL_S'):
        raw_config.setdefault('global', {})['flush_interval_s'] = env_interval

    try:
        config = Config(**raw_config)
        return config
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
