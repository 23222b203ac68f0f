"""YAML config loading and validation."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml


@dataclass
class WorkerConfig:
    concurrency: int = 3
    timeout_ms: int = 20_000  # per parse call
    max_attempts: int = 5
    base_backoff_ms: int = 15_000
    max_backoff_ms: int = 300_000
    candidate_multiplier: int = 3
    slice_budget_ms: int = 50_000
    min_remaining_ms: int = 25_000
    stale_claim_ms: int = 600_000


@dataclass
class StoreConfig:
    max_retries: int = 3
    retry_base_delay_ms: int = 500


@dataclass
class ImportsConfig:
    default_max_emails: int = 5000
    max_emails_limit: int = 5000
    allowed_extensions: list[str] = field(default_factory=lambda: ["pdf", "docx"])
    max_attachment_mb: int = 10
    single_runner: bool = False
    estimate_sample_size: int = 10
    estimate_ratio: float = 0.6


@dataclass
class DispatchConfig:
    trigger_url: str = ""
    trigger_timeout: int = 5


@dataclass
class SchedulerConfig:
    enabled: bool = False
    interval_seconds: int = 60


@dataclass
class RetentionConfig:
    keep_runs_per_job: int = 10


@dataclass
class AppConfig:
    database_url: str = "sqlite:///data/resume_import.db"
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    imports: ImportsConfig = field(default_factory=ImportsConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    log_dir: str = "logs"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}")


def _split_extensions(value) -> list[str]:
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = list(value or [])
    return [str(p).strip().lower().lstrip(".") for p in parts if str(p).strip()]


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Load configuration from a YAML file, with environment overrides.

    With no path, defaults plus environment variables are used.
    """
    raw: dict = {}
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                "Copy config.example.yaml to config.yaml and fill in your settings."
            )
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    config = AppConfig()

    config.database_url = os.environ.get("DATABASE_URL", raw.get("database_url", config.database_url))
    config.log_dir = raw.get("log_dir", "logs")

    # Worker (env vars take precedence)
    worker_raw = raw.get("worker", {})
    defaults = WorkerConfig()
    config.worker = WorkerConfig(
        concurrency=_env_int("GPT_WORKER_CONCURRENCY", worker_raw.get("concurrency", defaults.concurrency)),
        timeout_ms=_env_int("GPT_TIMEOUT_MS", worker_raw.get("timeout_ms", defaults.timeout_ms)),
        max_attempts=_env_int("GPT_MAX_ATTEMPTS", worker_raw.get("max_attempts", defaults.max_attempts)),
        base_backoff_ms=_env_int("GPT_BASE_BACKOFF_MS", worker_raw.get("base_backoff_ms", defaults.base_backoff_ms)),
        max_backoff_ms=_env_int("GPT_MAX_BACKOFF_MS", worker_raw.get("max_backoff_ms", defaults.max_backoff_ms)),
        candidate_multiplier=worker_raw.get("candidate_multiplier", defaults.candidate_multiplier),
        slice_budget_ms=worker_raw.get("slice_budget_ms", defaults.slice_budget_ms),
        min_remaining_ms=worker_raw.get("min_remaining_ms", defaults.min_remaining_ms),
        stale_claim_ms=worker_raw.get("stale_claim_ms", defaults.stale_claim_ms),
    )

    # Store
    store_raw = raw.get("store", {})
    config.store = StoreConfig(
        max_retries=store_raw.get("max_retries", 3),
        retry_base_delay_ms=store_raw.get("retry_base_delay_ms", 500),
    )

    # Imports
    imports_raw = raw.get("imports", {})
    config.imports = ImportsConfig(
        default_max_emails=_env_int("MS_IMPORT_LIMIT", imports_raw.get("default_max_emails", 5000)),
        max_emails_limit=imports_raw.get("max_emails_limit", 5000),
        allowed_extensions=_split_extensions(
            os.environ.get("IMPORT_ALLOWED_EXTS", imports_raw.get("allowed_extensions", ["pdf", "docx"]))
        ),
        max_attachment_mb=imports_raw.get("max_attachment_mb", 10),
        single_runner=imports_raw.get("single_runner", False),
        estimate_sample_size=imports_raw.get("estimate_sample_size", 10),
        estimate_ratio=imports_raw.get("estimate_ratio", 0.6),
    )

    # Dispatch trigger
    dispatch_raw = raw.get("dispatch", {})
    config.dispatch = DispatchConfig(
        trigger_url=os.environ.get("DISPATCH_TRIGGER_URL", dispatch_raw.get("trigger_url", "")),
        trigger_timeout=dispatch_raw.get("trigger_timeout", 5),
    )

    scheduler_raw = raw.get("scheduler", {})
    config.scheduler = SchedulerConfig(
        enabled=scheduler_raw.get("enabled", False),
        interval_seconds=scheduler_raw.get("interval_seconds", 60),
    )

    retention_raw = raw.get("retention", {})
    config.retention = RetentionConfig(
        keep_runs_per_job=retention_raw.get("keep_runs_per_job", 10),
    )

    return config


def validate_config(config: AppConfig) -> list[str]:
    """Return list of validation warnings (empty = OK)."""
    warnings = []

    if config.worker.concurrency < 1:
        warnings.append("Worker concurrency below 1 - a single job will be processed at a time")

    if config.worker.max_attempts < 1:
        warnings.append("max_attempts below 1 - every parse failure will be terminal")

    if config.worker.base_backoff_ms > config.worker.max_backoff_ms:
        warnings.append("base_backoff_ms exceeds max_backoff_ms - every retry will use the max backoff")

    if config.worker.timeout_ms >= config.worker.slice_budget_ms:
        warnings.append("Per-job timeout is not shorter than the slice budget - slices may overrun")

    if not config.imports.allowed_extensions:
        warnings.append("No allowed attachment extensions configured - no email will be eligible")

    if config.database_url.startswith("sqlite") and config.worker.concurrency > 1:
        warnings.append("SQLite serializes writes - concurrent workers will contend on the database lock")

    if not config.scheduler.enabled and not config.dispatch.trigger_url:
        warnings.append("No scheduler and no dispatch trigger URL - enqueued runs rely on in-process dispatch only")

    return warnings
