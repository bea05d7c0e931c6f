"""Model manager: locate, load and cache the ONNX classification session.

The session is created once and shared by every request. The model file is
either read from a local path or downloaded from HuggingFace.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from ortclassify.ml.errors import EngineLoadError

if TYPE_CHECKING:
    from ortclassify.config import Settings

logger = logging.getLogger(__name__)

PROVIDERS: list[str] = ["CPUExecutionProvider"]


class OnnxModelManager:
    """Loads the ONNX inference session on first use and keeps it until shutdown."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._session: InferenceSession | None = None
        self._model_path: Path | None = None

        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    @property
    def is_loaded(self) -> bool:
        with self._lock:
            return self._session is not None

    @property
    def model_path(self) -> Path:
        """Resolved model path, or the configured one if nothing was loaded yet."""
        return self._model_path or Path(self._settings.model_path)

    def ensure_model_file(self) -> Path:
        """Return the local model file, downloading it first if configured to.

        Raises:
            EngineLoadError: If the file is missing or the download fails.
        """
        if self._model_path is not None and self._model_path.exists():
            return self._model_path

        repo_id = self._settings.model_repo_id
        if repo_id is None:
            path = Path(self._settings.model_path)
        else:
            self._models_dir.mkdir(parents=True, exist_ok=True)
            try:
                path = Path(
                    hf_hub_download(
                        repo_id=repo_id,
                        filename=self._settings.model_filename,
                        local_dir=str(self._models_dir),
                    )
                )
            except Exception as exc:
                raise EngineLoadError(f"Cannot download {self._settings.model_filename} from {repo_id}: {exc}") from exc
            logger.info("Downloaded %s to %s", self._settings.model_filename, path)

        if not path.is_file():
            raise EngineLoadError(f"Model file not found: {path}")

        self._model_path = path
        return path

    def get_session(self) -> InferenceSession:
        """Return the shared InferenceSession, creating it if needed.

        Concurrent first callers block on the lock, so the model is loaded
        once. A failed load is not remembered: the next call retries.

        Raises:
            EngineLoadError: If the model cannot be found or loaded.
        """
        with self._lock:
            if self._session is not None:
                return self._session

            model_path = self.ensure_model_file()
            try:
                session = InferenceSession(
                    str(model_path),
                    sess_options=self._session_options,
                    providers=PROVIDERS,
                )
            except Exception as exc:
                raise EngineLoadError(f"Cannot load model {model_path}: {exc}") from exc

            self._session = session
            logger.info("Loaded session for %s", model_path)
            return session

    def input_shape(self, input_name: str) -> list[int | str | None] | None:
        """Return the declared shape of ``input_name`` if the session is loaded."""
        with self._lock:
            session = self._session
        if session is None:
            return None
        for node in session.get_inputs():
            if node.name == input_name:
                return list(node.shape)
        return None

    def shutdown(self) -> None:
        """Drop the cached session."""
        with self._lock:
            self._session = None
            logger.info("Model session cleared")

    # -- Internal -----------------------------------------------------------

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True
        return opts
