# Copyright (c) Syntropy Systems
"""Configuration management for abfunnel."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

import yaml

CONFIG_DIR_NAME = ".abfunnel"
CONFIG_FILE_NAME = "config.yaml"

METRICS_ATTACHMENT = "ab-test-metrics"
EVENTS_ATTACHMENT = "ab-test-events"
JSON_REPORT_NAME = "ab-test-summary.json"
HTML_REPORT_NAME = "ab-test-comparison.html"


@dataclass
class VariantSpec:
    """Catalog entry used by the variant resolver."""

    name: str
    description: str = ""
    feature_flags: dict[str, bool] = field(default_factory=dict)
    weight: float = 0.5
    # Identifier substrings that select this variant
    match: list[str] = field(default_factory=list)


def default_variants() -> list[VariantSpec]:
    """Return the built-in variant catalog."""
    return [
        VariantSpec(
            name="widget",
            description="Modern widget pattern with progressive disclosure",
            feature_flags={
                "useWidgetPattern": True,
                "showCampaign": True,
                "enableAnimations": True,
            },
            match=["widget"],
        ),
        VariantSpec(
            name="modal",
            description="Modal dialog pattern",
            feature_flags={
                "useWidgetPattern": False,
                "showCampaign": True,
                "enableAnimations": True,
            },
            match=["modal"],
        ),
        VariantSpec(
            name="control",
            description="Traditional modal pattern",
            feature_flags={
                "useWidgetPattern": False,
                "showCampaign": True,
                "enableAnimations": True,
            },
        ),
    ]


@dataclass
class ReportConfig:
    """Configuration for A/B metrics collection and reporting."""

    # Output directory for the JSON/HTML reports
    report_dir: Path = field(default_factory=lambda: Path("ab-report"))

    # Baseline every other variant is compared against
    control_variant: str = "control"

    # Variant used when no catalog entry matches an identifier
    default_variant: str = "control"

    # 0.95 or 0.99
    confidence_level: float = 0.95

    # p-value threshold for the significance flag
    significance_level: float = 0.05

    # Sum all four cells of the 2x2 table instead of the two success cells
    pearson_chi_square: bool = False

    # How long the browser observers collect before disconnecting (ms)
    web_vitals_window_ms: int = 1000

    # Optional per-run copy of attachments on disk
    artifacts_dir: Path | None = None

    variants: list[VariantSpec] = field(default_factory=default_variants)


def find_config_dir(start_path: Path | None = None) -> Path | None:
    """Find the nearest .abfunnel directory by walking up from start_path.

    Returns None if no .abfunnel directory is found.
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()

    while current != current.parent:
        config_dir = current / CONFIG_DIR_NAME
        if config_dir.is_dir():
            return config_dir
        current = current.parent

    # Check root
    config_dir = current / CONFIG_DIR_NAME
    if config_dir.is_dir():
        return config_dir

    return None


def get_global_config_dir() -> Path:
    """Get the global config directory (~/.abfunnel)."""
    return Path.home() / CONFIG_DIR_NAME


def _parse_variants(raw: object) -> list[VariantSpec] | None:
    if not isinstance(raw, list):
        return None

    variants: list[VariantSpec] = []
    for item in cast("list[object]", raw):
        if not isinstance(item, dict):
            continue
        entry = cast("dict[str, object]", item)
        name = entry.get("name")
        if not isinstance(name, str) or not name:
            continue

        spec = VariantSpec(name=name)
        description = entry.get("description")
        if isinstance(description, str):
            spec.description = description
        flags = entry.get("feature_flags")
        if isinstance(flags, dict):
            spec.feature_flags = {
                str(k): bool(v) for k, v in cast("dict[object, object]", flags).items()
            }
        weight = entry.get("weight")
        if isinstance(weight, (int, float)):
            spec.weight = float(weight)
        match = entry.get("match")
        if isinstance(match, str):
            spec.match = [match]
        elif isinstance(match, list):
            spec.match = [str(m) for m in cast("list[object]", match)]
        variants.append(spec)

    return variants or None


def apply_config_data(config: ReportConfig, data: dict[str, object]) -> ReportConfig:
    """Overlay values from a parsed YAML mapping onto a config.

    Keys with the wrong type are ignored individually.
    """
    report_dir = data.get("report_dir")
    if isinstance(report_dir, str) and report_dir:
        config.report_dir = Path(report_dir)
    control_variant = data.get("control_variant")
    if isinstance(control_variant, str) and control_variant:
        config.control_variant = control_variant
    default_variant = data.get("default_variant")
    if isinstance(default_variant, str) and default_variant:
        config.default_variant = default_variant
    confidence_level = data.get("confidence_level")
    if isinstance(confidence_level, (int, float)):
        config.confidence_level = float(confidence_level)
    significance_level = data.get("significance_level")
    if isinstance(significance_level, (int, float)):
        config.significance_level = float(significance_level)
    pearson_chi_square = data.get("pearson_chi_square")
    if isinstance(pearson_chi_square, bool):
        config.pearson_chi_square = pearson_chi_square
    window = data.get("web_vitals_window_ms")
    if isinstance(window, (int, float)):
        config.web_vitals_window_ms = int(window)
    artifacts_dir = data.get("artifacts_dir")
    if isinstance(artifacts_dir, str) and artifacts_dir:
        config.artifacts_dir = Path(artifacts_dir)
    variants = _parse_variants(data.get("variants"))
    if variants is not None:
        config.variants = variants

    return config


def load_config(config_path: Path | None = None) -> ReportConfig:
    """Load configuration from a YAML file or defaults.

    Looks for config in:
    1. Provided config_path
    2. Nearest .abfunnel/config.yaml walking up
    3. ~/.abfunnel/config.yaml
    4. Defaults
    """
    config = ReportConfig()

    if config_path is None:
        found_dir = find_config_dir()
        if found_dir is not None:
            config_path = found_dir / CONFIG_FILE_NAME
        else:
            global_config = get_global_config_dir() / CONFIG_FILE_NAME
            if global_config.exists():
                config_path = global_config

    if config_path is not None and config_path.exists():
        with config_path.open() as f:
            loaded = cast("object", yaml.safe_load(f) or {})
        if isinstance(loaded, dict):
            _ = apply_config_data(config, cast("dict[str, object]", loaded))

    return config


def default_config_data() -> dict[str, object]:
    """Return the defaults as a YAML-serializable mapping."""
    config = ReportConfig()
    return {
        "report_dir": str(config.report_dir),
        "control_variant": config.control_variant,
        "default_variant": config.default_variant,
        "confidence_level": config.confidence_level,
        "significance_level": config.significance_level,
        "pearson_chi_square": config.pearson_chi_square,
        "web_vitals_window_ms": config.web_vitals_window_ms,
        "variants": [
            {
                "name": v.name,
                "description": v.description,
                "feature_flags": v.feature_flags,
                "weight": v.weight,
                "match": v.match,
            }
            for v in config.variants
        ],
    }
