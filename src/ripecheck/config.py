"""Environment-based configuration for RipeCheck."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from RIPECHECK_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RIPECHECK_",
        case_sensitive=False,
        protected_namespaces=("settings_",),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection. With neither model_path nor model_repo set the service
    # runs on the synthetic runtime. model_path bypasses the HuggingFace download.
    ripeness_model: str = "fruit_freshness_mobilenetv2"
    model_path: str | None = None
    model_repo: str | None = None
    models_dir: str = "models"
    synthetic_model: bool = False
    input_size: int = Field(default=224, ge=1)

    # Fruit catalog (None = catalog packaged with ripecheck)
    catalog_path: str | None = None

    # Classification history window
    history_capacity: int = Field(default=50, ge=1, le=1000)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)

    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
