"""Configuration management for the duplicate detection engine."""

import os
import json
from pathlib import Path
from typing import Optional, Dict, Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError


class ScoringWeights(BaseModel):
    """Per-field contribution to the overall confidence."""

    title: float = Field(0.30, ge=0.0, le=1.0)
    address: float = Field(0.35, ge=0.0, le=1.0)
    specs: float = Field(0.20, ge=0.0, le=1.0)
    description: float = Field(0.10, ge=0.0, le=1.0)
    media: float = Field(0.05, ge=0.0, le=1.0)


class ScoringConfig(BaseModel):
    """Weights and emission thresholds for the match evaluator."""

    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    high_confidence: float = Field(0.85, ge=0.0, le=1.0)
    medium_confidence: float = Field(0.70, ge=0.0, le=1.0)
    min_reasons: int = Field(2, ge=1)
    strong_title: float = Field(0.8, ge=0.0, le=1.0)
    strong_address: float = Field(0.8, ge=0.0, le=1.0)
    exact_address: float = Field(0.95, ge=0.0, le=1.0)
    strong_media: float = Field(0.9, ge=0.0, le=1.0)


class ScanConfig(BaseModel):
    threshold: float = Field(0.70, ge=0.0, le=1.0)
    include_same_owner: bool = False
    max_workers: int = Field(1, ge=1)
    batch_limit: int = Field(1000, ge=1)
    top_matches: int = Field(5, ge=0)
    progress_interval: int = Field(1000, ge=1)
    hash_lookup_timeout: float = Field(30.0, gt=0)


class StorageConfig(BaseModel):
    db_path: str = "duplicate_groups.db"
    busy_timeout: float = Field(5.0, gt=0)


class LoggingConfig(BaseModel):
    format: str = "text"
    level: str = "INFO"
    file: Optional[str] = None

    @field_validator("format")
    @classmethod
    def check_format(cls, v: str) -> str:
        if v not in ("json", "text"):
            raise ValueError("format must be 'json' or 'text'")
        return v

    @field_validator("level")
    @classmethod
    def check_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level


class Config(BaseModel):
    """Root configuration model."""

    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ConfigManager:
    """Manages configuration loading and validation."""

    DEFAULT_CONFIG = {
        "scoring": {
            "weights": {
                "title": 0.30,
                "address": 0.35,
                "specs": 0.20,
                "description": 0.10,
                "media": 0.05,
            },
            "high_confidence": 0.85,
            "medium_confidence": 0.70,
            "min_reasons": 2,
        },
        "scan": {
            "threshold": 0.70,
            "include_same_owner": False,
            "max_workers": 1,
            "batch_limit": 1000,
            "top_matches": 5,
        },
        "storage": {
            "db_path": "duplicate_groups.db",
        },
        "logging": {
            "format": "text",
            "level": "INFO",
        },
    }

    def __init__(self, config_path: Optional[str] = None, env_file: Optional[str] = None):
        """Initialize config manager.

        Args:
            config_path: Path to a JSON config file. If None, uses defaults + env vars
            env_file: Optional .env file to load before reading the environment
        """
        self.config_path = Path(config_path) if config_path else None
        self.env_file = env_file
        self._config: Optional[Config] = None

    def load(self) -> Config:
        """Load configuration from file and environment."""
        if self._config:
            return self._config

        load_dotenv(self.env_file)

        config_dict = self._deep_merge({}, self.DEFAULT_CONFIG)

        if self.config_path:
            if not self.config_path.exists():
                raise ConfigurationError(f"Config file not found: {self.config_path}")
            try:
                with open(self.config_path, "r") as f:
                    file_config = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(
                    f"Config file is not valid JSON: {self.config_path}", cause=e
                ) from e
            config_dict = self._deep_merge(config_dict, file_config)

        config_dict = self._apply_env_overrides(config_dict)

        try:
            self._config = Config(**config_dict)
        except ValidationError as e:
            first = e.errors()[0]
            key = ".".join(str(part) for part in first["loc"])
            raise ConfigurationError(first["msg"], key=key, cause=e) from e
        return self._config

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            elif isinstance(value, dict):
                result[key] = self._deep_merge({}, value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides."""
        db_path = os.getenv("LEASECORE_DB_PATH")
        if db_path:
            config.setdefault("storage", {})["db_path"] = db_path

        threshold = os.getenv("LEASECORE_SCAN_THRESHOLD")
        if threshold:
            config.setdefault("scan", {})["threshold"] = self._parse_number(
                "LEASECORE_SCAN_THRESHOLD", threshold, float
            )

        same_owner = os.getenv("LEASECORE_INCLUDE_SAME_OWNER")
        if same_owner:
            config.setdefault("scan", {})["include_same_owner"] = (
                same_owner.lower() in ("true", "1", "yes")
            )

        max_workers = os.getenv("LEASECORE_MAX_WORKERS")
        if max_workers:
            config.setdefault("scan", {})["max_workers"] = self._parse_number(
                "LEASECORE_MAX_WORKERS", max_workers, int
            )

        log_level = os.getenv("LEASECORE_LOG_LEVEL")
        if log_level:
            config.setdefault("logging", {})["level"] = log_level

        return config

    @staticmethod
    def _parse_number(name: str, raw: str, kind):
        try:
            return kind(raw)
        except ValueError as e:
            raise ConfigurationError(f"{name} must be a number, got {raw!r}", key=name, cause=e) from e

    def save_template(self, path: str):
        """Write the default configuration as a starting point."""
        with open(path, "w") as f:
            json.dump(self.DEFAULT_CONFIG, f, indent=2)

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            self._config = self.load()
        return self._config
