from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Literal, Mapping, Optional, Tuple, Union

from edgeai.image.codec import PreprocessConfig
from edgeai.utils.config import get_config, merge_configs
from edgeai.utils.logger import logger

ModelType = Literal["img2img", "seq2seq", "img2text"]

_MODEL_TYPES = ("img2img", "seq2seq", "img2text")

_DESCRIPTOR_KEYS = {
    "id",
    "type",
    "model_paths",
    "tokenizer_path",
    "preprocess",
    "prefixes",
    "max_steps",
    "eos_token_id",
    "decoder_start_token_id",
}
# listing metadata carried by catalog entries; not needed to run a model
_CATALOG_KEYS = {"title", "description", "tags", "size_mb", "sizeMB", "reference_url"}


def task_prefix(task: str) -> str:
    """Normalize ``"summarize: "`` and ``"summarize"`` to ``"summarize"``."""
    return str(task).strip().rstrip(":").strip()


def _resolve_path(value: Any, base_dir: Optional[Path]) -> Any:
    if not isinstance(value, str) or base_dir is None:
        return value
    if "://" in value or value.startswith("data:"):
        return value
    path = Path(value).expanduser()
    if path.is_absolute():
        return str(path)
    return str((base_dir / path).resolve())


@dataclass(frozen=True)
class ModelDescriptor:
    """Which artifacts to load and how to preprocess/decode for one model."""

    id: str
    type: ModelType
    model_paths: Mapping[str, Any]
    tokenizer_path: Optional[str] = None
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    prefixes: Tuple[str, ...] = ()
    max_steps: int = 20
    eos_token_id: Optional[int] = None
    decoder_start_token_id: int = 0

    def __post_init__(self) -> None:
        if not str(self.id or "").strip():
            raise ValueError("model id must be non-empty")
        if self.type not in _MODEL_TYPES:
            raise ValueError(f"Unknown model type {self.type!r}; expected one of {_MODEL_TYPES}")
        if not self.model_paths:
            raise ValueError(f"model {self.id!r} declares no model_paths")
        if int(self.max_steps) <= 0:
            raise ValueError("max_steps must be positive")
        object.__setattr__(self, "model_paths", MappingProxyType(dict(self.model_paths)))
        object.__setattr__(
            self, "prefixes", tuple(task_prefix(p) for p in self.prefixes)
        )

    @classmethod
    def from_dict(
        cls, payload: Mapping[str, Any], *, base_dir: Union[str, Path, None] = None
    ) -> "ModelDescriptor":
        data: Dict[str, Any] = dict(payload)
        root = Path(base_dir).expanduser().resolve() if base_dir is not None else None
        model_paths = {
            str(role): _resolve_path(value, root)
            for role, value in dict(data.get("model_paths") or {}).items()
        }
        tokenizer_path = _resolve_path(data.get("tokenizer_path"), root)
        eos = data.get("eos_token_id")
        prefixes = data.get("prefixes") or ()
        if isinstance(prefixes, str):
            prefixes = (prefixes,)
        unknown = set(data) - _DESCRIPTOR_KEYS - _CATALOG_KEYS
        if unknown:
            logger.warning("Ignoring unknown descriptor keys: %s", sorted(unknown))
        return cls(
            id=str(data.get("id") or ""),
            type=str(data.get("type") or ""),  # type: ignore[arg-type]
            model_paths=model_paths,
            tokenizer_path=tokenizer_path,
            preprocess=PreprocessConfig.from_dict(data.get("preprocess")),
            prefixes=tuple(prefixes),
            max_steps=int(data.get("max_steps") or 20),
            eos_token_id=int(eos) if eos is not None else None,
            decoder_start_token_id=int(data.get("decoder_start_token_id") or 0),
        )

    @classmethod
    def from_config_file(
        cls,
        config_file: Union[str, Path],
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> "ModelDescriptor":
        """Load a descriptor from YAML; relative artifact paths resolve next to it."""
        parsed = get_config(str(config_file))
        if overrides:
            parsed = merge_configs([parsed, dict(overrides)])
        return cls.from_dict(parsed, base_dir=Path(config_file).parent)
