"""
CGELabs Configuration Settings.

Clean, validated configuration using pydantic-settings.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ToolSettings(BaseSettings):
    """External tool executables and invocation wrapper."""

    # One executable per analysis kind, plus QC and merge
    isolate_executable: str = Field(default="cgeisolate")
    virus_executable: str = Field(default="cgevirus")
    metagenomics_executable: str = Field(default="cgemetagenomics")
    qc_executable: str = Field(default="cgeqc")
    util_executable: str = Field(default="cgeutil")

    # Fixed database directory required by the bacterial isolate tool
    database_dir: Path = Field(default=Path("/var/lib/cge/database/cge_db"))

    # Optional conda wrapper: conda run -n <env> --no-capture-output <tool> ...
    conda_executable: Path | None = None
    conda_env: str = Field(default="cge_env", min_length=1)

    # Lines emitted by the wrapper itself, not by the tool
    noise_prefix: str = Field(default="function")

    # Per-line read buffer for child stdout/stderr
    stream_limit: int = Field(default=1024 * 1024, ge=1024)

    model_config = SettingsConfigDict(env_prefix="TOOLS_", extra="ignore")


class StorageSettings(BaseSettings):
    """Results directory layout."""

    results_dir: Path = Field(default=Path("/var/lib/cge/results"))

    log_file_name: str = Field(default="analysis.log")
    metadata_file_name: str = Field(default="metadata.json")
    qc_subdir: str = Field(default="qc")

    # Compressed forms first so they win when both exist
    qc_artifact_suffixes: list[str] = Field(
        default=[".fastq.gz", ".fq.gz", ".fastq", ".fq"]
    )

    # Input size advisory thresholds
    min_input_size_mb: float = Field(default=5.0, ge=0)
    max_input_size_gb: float = Field(default=1.0, gt=0)

    @field_validator("qc_artifact_suffixes")
    @classmethod
    def _validate_suffixes(cls, value: list[str]) -> list[str]:
        cleaned = [suffix.strip() for suffix in value if suffix.strip()]
        if not cleaned:
            raise ValueError("at least one artifact suffix is required")
        return cleaned

    model_config = SettingsConfigDict(env_prefix="STORAGE_", extra="ignore")


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    env: Literal["development", "testing", "production"] = Field(default="development")
    debug: bool = Field(default=False)

    # App info
    app_name: str = Field(default="CGELabs")
    app_version: str = Field(default="1.0.0")
    api_prefix: str = Field(default="/api/v1")

    # Local bridge for the desktop shell; loopback only by default
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8765, ge=1, le=65535)

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)

    # Subsettings
    tools: ToolSettings = Field(default_factory=ToolSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    def is_production(self) -> bool:
        return self.env == "production"

    def output_dir_for(self, job_id: str) -> Path:
        """Deterministic output directory of a job."""
        return self.storage.results_dir / job_id

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# Global instance
settings = Settings()


def get_settings() -> Settings:
    """Get settings instance (for dependency injection)."""
    return settings
