from __future__ import annotations

import gzip
import os
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Union

import numpy as np

from edgeai.errors import (
    InferenceError,
    SessionLoadError,
    UninitializedError,
    UnknownRoleError,
)
from edgeai.utils.logger import logger

Artifact = Union[str, os.PathLike, bytes, bytearray]

_GZIP_MAGIC = b"\x1f\x8b"


class SessionHandle(Protocol):
    """Anything that maps named input tensors to named output tensors."""

    @property
    def input_names(self) -> List[str]: ...

    @property
    def output_names(self) -> List[str]: ...

    def run(self, feeds: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]: ...


def _require_onnxruntime():
    try:
        import onnxruntime as ort  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "Dependency 'onnxruntime' is required to load ONNX artifacts. "
            "Install it with: pip install onnxruntime"
        ) from exc
    except ImportError as exc:
        raise ImportError(
            "Failed to import 'onnxruntime'. "
            f"Original error: {exc}"
        ) from exc
    return ort


def _preflight_validate_payload(payload: bytes, origin: str) -> None:
    """Fail fast for obviously invalid model payloads before ONNX Runtime init."""
    if not payload:
        raise SessionLoadError(f"Model artifact is empty: {origin}")
    header_lc = payload[:4096].lower()
    if (
        b"<!doctype html" in header_lc
        or b"<html" in header_lc
        or b"<?xml" in header_lc
        or b"<body" in header_lc
    ):
        raise SessionLoadError(
            f"Artifact is not an ONNX model (looks like HTML/XML): {origin}. "
            "Please re-download the actual .onnx artifact."
        )


def read_artifact(artifact: Artifact) -> bytes:
    """Return raw ONNX bytes for a path or byte payload, inflating gzip."""
    if isinstance(artifact, (bytes, bytearray)):
        payload = bytes(artifact)
        origin = "<bytes>"
    else:
        path = Path(artifact).expanduser()
        origin = str(path)
        if not path.exists():
            raise SessionLoadError(f"Model file does not exist: {path}")
        if not path.is_file():
            raise SessionLoadError(f"Model path is not a file: {path}")
        try:
            payload = path.read_bytes()
        except OSError as exc:
            raise SessionLoadError(f"Cannot read model file: {path} ({exc})") from exc

    if payload[:2] == _GZIP_MAGIC:
        try:
            payload = gzip.decompress(payload)
        except (OSError, EOFError) as exc:
            raise SessionLoadError(
                f"Corrupted gzip model artifact: {origin} ({exc})"
            ) from exc
    _preflight_validate_payload(payload, origin)
    return payload


class OnnxSession:
    """Session handle backed by ``onnxruntime.InferenceSession``."""

    def __init__(self, session: Any, name: str = "model"):
        self._session = session
        self.name = name
        self._input_names = [node.name for node in session.get_inputs()]
        self._output_names = [node.name for node in session.get_outputs()]

    @classmethod
    def from_artifact(
        cls,
        artifact: Artifact,
        *,
        name: str = "model",
        providers: Optional[Sequence[str]] = None,
    ) -> "OnnxSession":
        ort = _require_onnxruntime()
        payload = read_artifact(artifact)
        sess_opts = ort.SessionOptions()
        sess_opts.inter_op_num_threads = int(os.environ.get("OMP_NUM_THREADS", 1))
        sess_opts.log_severity_level = 3
        try:
            session = ort.InferenceSession(
                payload,
                sess_options=sess_opts,
                providers=list(providers or ["CPUExecutionProvider"]),
            )
        except Exception as exc:
            raise SessionLoadError(
                f"Failed to initialize ONNX session {name!r}. Error: {exc}"
            ) from exc
        return cls(session, name=name)

    @property
    def input_names(self) -> List[str]:
        return list(self._input_names)

    @property
    def output_names(self) -> List[str]:
        return list(self._output_names)

    def get_input_shape(self, index: int = 0) -> list:
        return list(self._session.get_inputs()[index].shape)

    def run(self, feeds: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
        outputs = self._session.run(None, dict(feeds))
        return dict(zip(self._output_names, outputs))


def load_onnx_sessions(
    model_paths: Mapping[str, Artifact],
    *,
    providers: Optional[Sequence[str]] = None,
) -> Dict[str, OnnxSession]:
    sessions: Dict[str, OnnxSession] = {}
    for role, artifact in model_paths.items():
        start = time.perf_counter()
        sessions[role] = OnnxSession.from_artifact(
            artifact, name=role, providers=providers
        )
        logger.info(
            "Loaded ONNX session role=%s inputs=%s outputs=%s in %.3fs",
            role,
            sessions[role].input_names,
            sessions[role].output_names,
            time.perf_counter() - start,
        )
    return sessions


class SessionSet:
    """Named inference sessions owned by one model wrapper.

    A model instance serves one logical caller; there is no locking, and each
    ``run`` is exactly one forward pass.
    """

    def __init__(self, required_roles: Iterable[str] = ()):
        self.required_roles = tuple(required_roles)
        self._sessions: Optional[Dict[str, SessionHandle]] = None

    @property
    def initialized(self) -> bool:
        return self._sessions is not None

    @property
    def roles(self) -> tuple[str, ...]:
        return tuple(self._sessions or ())

    def __contains__(self, role: object) -> bool:
        return self._sessions is not None and role in self._sessions

    def load(self, named_sessions: Mapping[str, SessionHandle]) -> "SessionSet":
        missing = tuple(r for r in self.required_roles if r not in named_sessions)
        if missing:
            raise SessionLoadError(
                f"Missing required session role(s): {list(missing)}; "
                f"got {sorted(named_sessions)}",
                missing=missing,
            )
        for role, handle in named_sessions.items():
            if handle is None or not callable(getattr(handle, "run", None)):
                raise SessionLoadError(f"Session for role {role!r} is not runnable")
        self._sessions = dict(named_sessions)
        return self

    def _get(self, role: str) -> SessionHandle:
        if self._sessions is None:
            raise UninitializedError("sessions are not loaded; call load() first")
        try:
            return self._sessions[role]
        except KeyError:
            raise UnknownRoleError(role, tuple(self._sessions)) from None

    def input_names(self, role: str) -> List[str]:
        return list(self._get(role).input_names)

    def output_names(self, role: str) -> List[str]:
        return list(self._get(role).output_names)

    def run(self, role: str, inputs: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
        session = self._get(role)
        start = time.perf_counter()
        try:
            outputs = session.run(inputs)
        except Exception as exc:
            raise InferenceError(
                f"forward pass for role {role!r} failed: {exc}", role=role
            ) from exc
        logger.debug(
            "Forward pass role=%s took %.4fs", role, time.perf_counter() - start
        )
        return dict(outputs)

    def close(self) -> None:
        self._sessions = None


def bind_feeds(
    input_names: Sequence[str],
    candidates: Mapping[str, np.ndarray],
    *,
    role: str,
) -> Dict[str, np.ndarray]:
    """Pick a value for every input the session declares.

    ``candidates`` may hold several aliases for the same tensor
    (``encoder_hidden_states`` / ``last_hidden_state``); names the session
    does not declare are dropped.
    """
    feeds: Dict[str, np.ndarray] = {}
    for name in input_names:
        if name not in candidates:
            raise InferenceError(
                f"no value available for input {name!r} of role {role!r}; "
                f"known inputs: {sorted(candidates)}",
                role=role,
            )
        feeds[name] = candidates[name]
    return feeds
