from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml  # type: ignore[import-untyped]


@dataclass
class InputsConfig:
    ledger_csv: Optional[str] = None
    lead_form_csv: Optional[str] = None
    crm_csv: Optional[str] = None
    reservations_csv: Optional[str] = None


@dataclass
class OutputsConfig:
    dir: Path


@dataclass
class LayoutsConfig:
    """Raw layout overrides; names are validated when the layouts are built."""

    ledger: Dict[str, int] = field(default_factory=dict)
    lead_form: Dict[str, int] = field(default_factory=dict)
    reservation: Dict[str, int] = field(default_factory=dict)
    crm_labels: Dict[str, str] = field(default_factory=dict)
    crm_email_token: str = "email"


@dataclass
class JourneyConfig:
    include_reservations: bool = False


@dataclass
class QualityConfig:
    min_phone_length: int = 10
    max_phone_length: int = 11
    phone_region: str = "RU"
    validate_email_syntax: bool = True
    check_numbering_plan: bool = True


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class PipelineConfig:
    inputs: InputsConfig
    outputs: OutputsConfig
    layouts: LayoutsConfig = field(default_factory=LayoutsConfig)
    journey: JourneyConfig = field(default_factory=JourneyConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _load_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _int_mapping(raw: Any, section: str) -> Dict[str, int]:
    if not raw:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"layouts.{section} must be a mapping of field name to column index")
    out: Dict[str, int] = {}
    for name, index in raw.items():
        try:
            out[str(name).upper()] = int(index)
        except (TypeError, ValueError):
            raise ValueError(f"layouts.{section}.{name}: column index must be an integer") from None
    return out


def load_pipeline_config(args: argparse.Namespace) -> PipelineConfig:
    config_data = _load_yaml(getattr(args, "config", None))
    inputs_cfg = config_data.get("inputs", {}) or {}
    outputs_cfg = config_data.get("outputs", {}) or {}
    layouts_cfg = config_data.get("layouts", {}) or {}
    journey_cfg = config_data.get("journey", {}) or {}
    quality_cfg = config_data.get("quality", {}) or {}
    logging_cfg = config_data.get("logging", {}) or {}

    inputs = InputsConfig(
        ledger_csv=getattr(args, "ledger_csv", None) or inputs_cfg.get("ledger_csv"),
        lead_form_csv=getattr(args, "lead_form_csv", None) or inputs_cfg.get("lead_form_csv"),
        crm_csv=getattr(args, "crm_csv", None) or inputs_cfg.get("crm_csv"),
        reservations_csv=getattr(args, "reservations_csv", None)
        or inputs_cfg.get("reservations_csv"),
    )

    outputs_dir = Path(getattr(args, "out_dir", None) or outputs_cfg.get("dir") or os.getcwd())
    outputs = OutputsConfig(dir=outputs_dir)

    layouts = LayoutsConfig(
        ledger=_int_mapping(layouts_cfg.get("ledger"), "ledger"),
        lead_form=_int_mapping(layouts_cfg.get("lead_form"), "lead_form"),
        reservation=_int_mapping(layouts_cfg.get("reservation"), "reservation"),
        crm_labels={
            str(name).upper(): str(label)
            for name, label in (layouts_cfg.get("crm_labels", {}) or {}).items()
        },
        crm_email_token=str(layouts_cfg.get("crm_email_token") or "email"),
    )

    journey = JourneyConfig(
        include_reservations=(
            bool(journey_cfg.get("include_reservations", False))
            if getattr(args, "include_reservations", None) is None
            else bool(getattr(args, "include_reservations"))
        ),
    )

    quality = QualityConfig(
        min_phone_length=int(quality_cfg.get("min_phone_length", 10)),
        max_phone_length=int(quality_cfg.get("max_phone_length", 11)),
        phone_region=getattr(args, "phone_region", None)
        or quality_cfg.get("phone_region", "RU"),
        validate_email_syntax=bool(quality_cfg.get("validate_email_syntax", True)),
        check_numbering_plan=bool(quality_cfg.get("check_numbering_plan", True)),
    )
    if quality.min_phone_length > quality.max_phone_length:
        raise ValueError("quality.min_phone_length cannot exceed quality.max_phone_length")

    arg_level = getattr(args, "log_level", None)
    effective_level = (arg_level or logging_cfg.get("level") or "WARNING").upper()
    logging_config = LoggingConfig(level=effective_level)

    return PipelineConfig(
        inputs=inputs,
        outputs=outputs,
        layouts=layouts,
        journey=journey,
        quality=quality,
        logging=logging_config,
    )
