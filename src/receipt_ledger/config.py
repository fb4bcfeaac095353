"""
Configuration management (SSOT).

This module defines ALL configuration for the receipt intake pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- The cloud engine is the default; the offline engine is the only fallback
- Review thresholds are per engine; the cloud threshold is the stricter one
- Temp uploads and permanent receipts live in separate directories
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class TextractConfig:
    """AWS Textract (cloud engine) configuration.

    Receipts are staged in an S3 bucket before AnalyzeExpense runs, so the
    engine is only usable when a bucket is configured.
    """

    region: str = "ap-south-1"
    bucket: str | None = None
    staging_prefix: str = "receipt-staging/"
    # Explicit credentials are optional; boto3's default chain is used otherwise
    access_key_id: str | None = None
    secret_access_key: str | None = None

    def is_configured(self) -> bool:
        """Check whether the staging bucket is set."""
        return bool(self.bucket)


@dataclass
class TesseractConfig:
    """Tesseract (offline engine) configuration."""

    # Path to the tesseract binary (None: rely on PATH)
    tesseract_cmd: str | None = None
    lang: str = "eng"
    # Page segmentation mode suited for single-column receipts
    psm: int = 6


@dataclass
class EnginesConfig:
    """Extraction engine selection."""

    default_engine: str = "textract"
    textract: TextractConfig = field(default_factory=TextractConfig)
    tesseract: TesseractConfig = field(default_factory=TesseractConfig)


@dataclass
class ReviewConfig:
    """Review policy settings (confidence values are 0-100)."""

    # Below these the receipt needs human review
    cloud_threshold: float = 80.0
    offline_threshold: float = 60.0
    # Used when an engine does not report any confidence
    cloud_default_confidence: float = 75.0
    offline_default_confidence: float = 40.0
    # Allowed |total - (subtotal + tax)| before flagging
    total_tolerance: str = "0.05"


@dataclass
class StorageConfig:
    """Receipt file storage settings."""

    temp_dir: Path = field(default_factory=lambda: Path("data/uploads/temp-receipts"))
    permanent_dir: Path = field(default_factory=lambda: Path("data/uploads/receipts"))
    # Temp uploads older than this are purged by the janitor
    temp_ttl_hours: int = 24
    max_file_size: int = 10 * 1024 * 1024


@dataclass
class ExtractionConfig:
    """Orchestration settings."""

    # Caller-level timeout wrapping primary + fallback engine calls
    timeout_seconds: float = 60.0


@dataclass
class ImporterConfig:
    """Tabular import settings."""

    default_category_label: str = "Imported"


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    engines: EnginesConfig = field(default_factory=EnginesConfig)
    review: ReviewConfig = field(default_factory=ReviewConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    importer: ImporterConfig = field(default_factory=ImporterConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.engines.default_engine not in ("textract", "tesseract"):
            errors.append(
                f"engines.default_engine must be 'textract' or 'tesseract', "
                f"got {self.engines.default_engine!r}"
            )

        # Thresholds must be sensible
        for name in ("cloud_threshold", "offline_threshold"):
            value = getattr(self.review, name)
            if not 0 <= value <= 100:
                errors.append(f"review.{name} must be within 0-100")
        if self.review.cloud_threshold < self.review.offline_threshold:
            errors.append("review.cloud_threshold must be >= review.offline_threshold")

        if self.extraction.timeout_seconds <= 0:
            errors.append("extraction.timeout_seconds must be positive")

        if self.storage.temp_dir.resolve() == self.storage.permanent_dir.resolve():
            errors.append("storage.temp_dir and storage.permanent_dir must differ")

        return errors


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - RECEIPT_DEFAULT_ENGINE (textract/tesseract)
    - AWS_REGION
    - AWS_BUCKET_NAME
    - AWS_ACCESS_KEY_ID
    - AWS_SECRET_ACCESS_KEY
    - TESSERACT_CMD
    - TESSERACT_LANG
    - MAX_FILE_SIZE (bytes)
    - RECEIPT_EXTRACTION_TIMEOUT (seconds)
    - RECEIPT_STATE_DB
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Engines
    engines_data = data.get("engines", {})
    textract_data = engines_data.get("textract", {})
    textract = TextractConfig(
        region=os.environ.get("AWS_REGION", textract_data.get("region", "ap-south-1")),
        bucket=os.environ.get("AWS_BUCKET_NAME", textract_data.get("bucket")),
        staging_prefix=textract_data.get("staging_prefix", "receipt-staging/"),
        access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", textract_data.get("access_key_id")),
        secret_access_key=os.environ.get(
            "AWS_SECRET_ACCESS_KEY", textract_data.get("secret_access_key")
        ),
    )

    tesseract_data = engines_data.get("tesseract", {})
    tesseract = TesseractConfig(
        tesseract_cmd=os.environ.get("TESSERACT_CMD", tesseract_data.get("tesseract_cmd")),
        lang=os.environ.get("TESSERACT_LANG", tesseract_data.get("lang", "eng")),
        psm=tesseract_data.get("psm", 6),
    )

    engines = EnginesConfig(
        default_engine=os.environ.get(
            "RECEIPT_DEFAULT_ENGINE", engines_data.get("default_engine", "textract")
        ).lower(),
        textract=textract,
        tesseract=tesseract,
    )

    # Review policy
    review_data = data.get("review", {})
    review = ReviewConfig(
        cloud_threshold=float(review_data.get("cloud_threshold", 80.0)),
        offline_threshold=float(review_data.get("offline_threshold", 60.0)),
        cloud_default_confidence=float(review_data.get("cloud_default_confidence", 75.0)),
        offline_default_confidence=float(review_data.get("offline_default_confidence", 40.0)),
        total_tolerance=str(review_data.get("total_tolerance", "0.05")),
    )

    # Storage
    storage_data = data.get("storage", {})
    max_file_size = storage_data.get("max_file_size", 10 * 1024 * 1024)
    max_file_size_env = os.environ.get("MAX_FILE_SIZE", "")
    if max_file_size_env:
        try:
            max_file_size = int(max_file_size_env)
        except ValueError:
            pass  # Keep default

    storage = StorageConfig(
        temp_dir=Path(storage_data.get("temp_dir", "data/uploads/temp-receipts")),
        permanent_dir=Path(storage_data.get("permanent_dir", "data/uploads/receipts")),
        temp_ttl_hours=storage_data.get("temp_ttl_hours", 24),
        max_file_size=max_file_size,
    )

    # Extraction
    extraction_data = data.get("extraction", {})
    extraction = ExtractionConfig(
        timeout_seconds=float(
            os.environ.get(
                "RECEIPT_EXTRACTION_TIMEOUT", extraction_data.get("timeout_seconds", 60.0)
            )
        ),
    )

    importer_data = data.get("importer", {})
    importer = ImporterConfig(
        default_category_label=importer_data.get("default_category_label", "Imported"),
    )

    # State DB
    state_db = os.environ.get("RECEIPT_STATE_DB", data.get("state_db_path", "data/state.db"))

    return Config(
        engines=engines,
        review=review,
        storage=storage,
        extraction=extraction,
        importer=importer,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Receipt intake pipeline configuration
#
# Secrets (AWS keys) are better supplied via environment variables:
#   AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, AWS_BUCKET_NAME, AWS_REGION

engines:
  default_engine: "textract"              # textract (cloud) or tesseract (offline)
  textract:
    region: "ap-south-1"
    bucket: null                          # S3 bucket used to stage receipts
    staging_prefix: "receipt-staging/"
  tesseract:
    tesseract_cmd: null                   # Path to tesseract binary (null: use PATH)
    lang: "eng"
    psm: 6

# Review policy (confidence is 0-100)
review:
  cloud_threshold: 80                     # Cloud results below this need review
  offline_threshold: 60                   # Offline results below this need review
  cloud_default_confidence: 75            # Used when the engine reports none
  offline_default_confidence: 40
  total_tolerance: "0.05"                 # Allowed total vs subtotal+tax drift

storage:
  temp_dir: "data/uploads/temp-receipts"
  permanent_dir: "data/uploads/receipts"
  temp_ttl_hours: 24                      # Janitor purges older temp uploads
  max_file_size: 10485760                 # 10MB

extraction:
  timeout_seconds: 60                     # Covers primary + fallback engine calls

importer:
  default_category_label: "Imported"

# State database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
