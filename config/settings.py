"""
Configuration settings for the formula installer.
"""

from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from formula_installer.integrations.host_probe import (
    DEFAULT_CAPABILITY_CANDIDATES,
    DEFAULT_CAPABILITY_VARIABLES,
    DEFAULT_TOOL_PROBES,
)


class StorageConfig(BaseModel):
    """Install location and working storage."""
    install_root: Path = Field(default=Path("Cellar"), description="Root of <name>/<version> prefixes")
    work_root: Path = Field(default=Path(".formula-work"), description="Scratch space for working copies")
    records_path: Optional[Path] = Field(
        None, description="InstallRecord store; defaults to <install_root>/.install_records.json"
    )
    formula_dir: Path = Field(default=Path("Formula"), description="Directory of <name>.json descriptors")

    def get_records_path(self) -> Path:
        return self.records_path or self.install_root / ".install_records.json"

    def get_prefix(self, name: str, version: str) -> Path:
        """Get the install prefix for a specific formula version."""
        return self.install_root / name / version


class FetchConfig(BaseModel):
    """Source fetching and retry policy."""
    timeout_seconds: float = Field(default=600.0, gt=0, description="Timeout for one fetch")
    retry_attempts: int = Field(default=3, ge=0, description="Retries for transient fetch failures")
    retry_delay_seconds: float = Field(default=1.0, ge=0, description="Initial retry delay")
    max_retry_delay_seconds: float = Field(default=30.0, ge=0, description="Backoff ceiling")
    retry_jitter: float = Field(default=0.25, ge=0, le=1, description="Relative backoff jitter")
    git_binary: str = Field(default="git", description="git executable")


class ExecutorConfig(BaseModel):
    """Install step execution."""
    command_timeout_seconds: Optional[float] = Field(
        default=1800.0, description="Timeout per run_command step; None disables it"
    )


class ConcurrencyConfig(BaseModel):
    """Batch install concurrency."""
    max_concurrent_installs: int = Field(default=4, ge=1, description="Parallel installs of distinct formulas")


class HostConfig(BaseModel):
    """Host tool-chain probing."""
    tool_probes: Dict[str, List[str]] = Field(default_factory=lambda: dict(DEFAULT_TOOL_PROBES))
    capability_candidates: Dict[str, List[str]] = Field(
        default_factory=lambda: dict(DEFAULT_CAPABILITY_CANDIDATES)
    )
    capability_variables: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_CAPABILITY_VARIABLES)
    )
    probe_timeout_seconds: float = Field(default=10.0, gt=0)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Logging level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format"
    )
    file_path: Optional[Path] = Field(default=Path("logs/formula_installer.log"))
    max_file_size_mb: int = Field(default=10, description="Maximum log file size in MB")
    backup_count: int = Field(default=5, description="Number of log backups to keep")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        if v.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown logging level: {v}")
        return v.upper()


class Settings(BaseSettings):
    """Main application settings."""
    model_config = SettingsConfigDict(
        env_prefix="FORMULA_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Component configs
    storage: StorageConfig = Field(default_factory=StorageConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    host: HostConfig = Field(default_factory=HostConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
