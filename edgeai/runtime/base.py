from __future__ import annotations

import time
from abc import ABC
from typing import Mapping, Optional, Sequence

from edgeai.errors import SessionLoadError, UninitializedError
from edgeai.runtime.descriptor import ModelDescriptor
from edgeai.runtime.sessions import SessionHandle, SessionSet, load_onnx_sessions
from edgeai.utils.logger import logger


class BaseModel(ABC):
    """Lifecycle shared by the image and text model wrappers.

    The model cannot be used until ``init()`` has loaded its sessions.
    """

    required_roles: tuple[str, ...] = ("model",)

    def __init__(self, descriptor: ModelDescriptor):
        self.descriptor = descriptor
        self.sessions = SessionSet(self.required_roles)

    @property
    def model_id(self) -> str:
        return self.descriptor.id

    @property
    def initialized(self) -> bool:
        return self.sessions.initialized

    def init(
        self,
        sessions: Optional[Mapping[str, SessionHandle]] = None,
        *,
        providers: Optional[Sequence[str]] = None,
    ) -> float:
        """Load sessions and return the elapsed load time in seconds.

        ``sessions`` bypasses artifact loading (pre-built handles); otherwise
        every artifact in ``descriptor.model_paths`` is opened with onnxruntime.
        """
        start = time.perf_counter()
        if sessions is None:
            missing = [
                role
                for role in self.required_roles
                if role not in self.descriptor.model_paths
            ]
            if missing:
                raise SessionLoadError(
                    f"model {self.model_id!r} has no artifact for role(s) {missing}",
                    missing=tuple(missing),
                )
            sessions = load_onnx_sessions(
                self.descriptor.model_paths, providers=providers
            )
        self.sessions.load(sessions)
        try:
            self._on_init()
        except Exception:
            self.sessions.close()
            raise
        elapsed = time.perf_counter() - start
        logger.info(
            "Initialized %s model %s in %.3fs",
            self.descriptor.type,
            self.model_id,
            elapsed,
        )
        return elapsed

    def _on_init(self) -> None:
        """Hook for wrappers that need more than sessions (e.g. a tokenizer)."""

    def _require_initialized(self) -> None:
        if not self.initialized:
            raise UninitializedError("the model is not initialized")

    def close(self) -> None:
        self.sessions.close()

    def __enter__(self) -> "BaseModel":
        if not self.initialized:
            self.init()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()
