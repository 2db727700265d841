from __future__ import annotations

from typing import Any

from .config_loader import PipelineConfig, load_pipeline_config
from .extract import SourceLayouts, SourceTable, extract_table, read_table, warn_missing
from .models import (
    RESOLUTION_ORDER,
    CustomerJourney,
    CustomerProfile,
    JourneyEvent,
    JourneyEventType,
    QualityReport,
    RawRecord,
    Source,
    SourceQuality,
)
from .normalization import (
    coerce_text,
    normalize_email,
    normalize_phone,
    parse_date,
    parse_number,
    resolve_identity_key,
)

__all__ = [
    "CustomerJourney",
    "CustomerProfile",
    "JourneyEvent",
    "JourneyEventType",
    "PipelineConfig",
    "QualityReport",
    "RESOLUTION_ORDER",
    "RawRecord",
    "Source",
    "SourceLayouts",
    "SourceQuality",
    "SourceTable",
    "coerce_text",
    "extract_table",
    "load_config",
    "load_pipeline_config",
    "normalize_email",
    "normalize_phone",
    "parse_date",
    "parse_number",
    "read_table",
    "resolve_identity_key",
    "warn_missing",
]


def load_config(args: Any) -> PipelineConfig:
    return load_pipeline_config(args)
