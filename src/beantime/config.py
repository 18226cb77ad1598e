"""Environment-based configuration for BeanTime."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from BEANTIME_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BEANTIME_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083
    log_level: str = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model artifacts
    models_dir: str = "models"
    classifier_model: str = "bean_classifier"
    regressor_model: str = "bean_regressor"
    hf_repo_id: str | None = None

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)

    # Model handle caching (off = open and close per prediction)
    model_cache: bool = False
    model_ttl: int = Field(default=300, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
