"""Environment-based configuration for ortclassify."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from ORTCLASSIFY_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ORTCLASSIFY_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082
    log_level: str = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # Model artifact. When model_repo_id is set the file is fetched from
    # HuggingFace into models_dir instead of read from model_path.
    model_path: str = "assets/model.onnx"
    model_repo_id: str | None = None
    model_filename: str = "model.onnx"
    models_dir: str = "models"
    preload_model: bool = True

    # Names agreed upon when the model was exported
    input_name: str = "input1"
    output_name: str = "output1"

    labels_path: str = "assets/imagenet_classes.json"

    # Preprocessing
    image_size: int = Field(default=224, ge=1)
    resize_filter: Literal["bilinear", "nearest"] = "bilinear"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency (1 = requests are serialized)
    max_concurrent: int = Field(default=1, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)
    inference_timeout: float = Field(default=30.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
