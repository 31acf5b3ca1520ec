from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml  # type: ignore[import-untyped]

DUPLICATE_POLICIES = ("merge-all", "skip-all", "keep-both", "cancel")
OVERSIZED_POLICIES = ("skip-all", "continue")


@dataclass
class LimitsConfig:
    max_contacts: int = 10_000
    max_tokens_per_contact: int = 500
    warning_threshold: float = 0.9


@dataclass
class TokensConfig:
    chars_per_token: float = 3.0
    safety_margin: float = 0.9


@dataclass
class ImportConfig:
    batch_size: int = 25
    max_concurrency: int = 5
    inter_batch_delay: float = 0.5
    detect_delay: float = 1.5
    complete_delay: float = 2.0
    max_reported_errors: int = 5
    adapter: Optional[str] = None
    on_duplicate: str = "skip-all"
    on_oversized: str = "skip-all"


@dataclass
class StoreConfig:
    path: Optional[Path] = None
    save_batch_size: int = 500
    export_csv: Optional[Path] = None


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class PipelineConfig:
    limits: LimitsConfig
    tokens: TokensConfig
    imports: ImportConfig
    store: StoreConfig
    logging: LoggingConfig


def _load_yaml(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _pick(args: argparse.Namespace, arg_name: str, section: Dict[str, Any], key: str, default: Any) -> Any:
    """CLI value, then YAML value, then default; ``None`` counts as unset."""
    value = getattr(args, arg_name, None)
    if value is not None:
        return value
    value = section.get(key)
    return default if value is None else value


def _optional_path(value: Any) -> Optional[Path]:
    return Path(value) if value else None


def load_pipeline_config(args: Optional[argparse.Namespace] = None) -> PipelineConfig:
    args = args if args is not None else argparse.Namespace()
    config_data = _load_yaml(getattr(args, "config", None))
    limits_cfg = config_data.get("limits", {}) or {}
    tokens_cfg = config_data.get("tokens", {}) or {}
    import_cfg = config_data.get("import", {}) or {}
    store_cfg = config_data.get("store", {}) or {}
    logging_cfg = config_data.get("logging", {}) or {}

    limits = LimitsConfig(
        max_contacts=int(_pick(args, "max_contacts", limits_cfg, "max_contacts", 10_000)),
        max_tokens_per_contact=int(
            _pick(args, "max_tokens_per_contact", limits_cfg, "max_tokens_per_contact", 500)
        ),
        warning_threshold=float(limits_cfg.get("warning_threshold", 0.9)),
    )

    tokens = TokensConfig(
        chars_per_token=float(tokens_cfg.get("chars_per_token", 3.0)),
        safety_margin=float(tokens_cfg.get("safety_margin", 0.9)),
    )

    imports = ImportConfig(
        batch_size=int(_pick(args, "batch_size", import_cfg, "batch_size", 25)),
        max_concurrency=int(_pick(args, "max_concurrency", import_cfg, "max_concurrency", 5)),
        inter_batch_delay=float(import_cfg.get("inter_batch_delay", 0.5)),
        detect_delay=float(import_cfg.get("detect_delay", 1.5)),
        complete_delay=float(import_cfg.get("complete_delay", 2.0)),
        max_reported_errors=int(import_cfg.get("max_reported_errors", 5)),
        adapter=_pick(args, "adapter", import_cfg, "adapter", None),
        on_duplicate=_pick(args, "on_duplicate", import_cfg, "on_duplicate", "skip-all"),
        on_oversized=_pick(args, "on_oversized", import_cfg, "on_oversized", "skip-all"),
    )
    if imports.on_duplicate not in DUPLICATE_POLICIES:
        raise ValueError(f"Unknown duplicate policy: {imports.on_duplicate}")
    if imports.on_oversized not in OVERSIZED_POLICIES:
        raise ValueError(f"Unknown oversized policy: {imports.on_oversized}")

    store = StoreConfig(
        path=_optional_path(_pick(args, "store", store_cfg, "path", None)),
        save_batch_size=int(store_cfg.get("save_batch_size", 500)),
        export_csv=_optional_path(_pick(args, "export", store_cfg, "export_csv", None)),
    )

    arg_level = getattr(args, "log_level", None)
    effective_level = (arg_level or logging_cfg.get("level") or "WARNING").upper()
    logging_config = LoggingConfig(level=effective_level)

    return PipelineConfig(
        limits=limits,
        tokens=tokens,
        imports=imports,
        store=store,
        logging=logging_config,
    )


def default_pipeline_config() -> PipelineConfig:
    return load_pipeline_config(argparse.Namespace())
