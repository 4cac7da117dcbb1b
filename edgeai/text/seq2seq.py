from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from edgeai.errors import InferenceError
from edgeai.runtime.base import BaseModel
from edgeai.runtime.descriptor import ModelDescriptor, task_prefix
from edgeai.runtime.sessions import SessionSet, bind_feeds
from edgeai.text.decoder import DecodeConfig, DecodeProgram, DecodeState, StreamingDecoder
from edgeai.text.tokenizer import TextTokenizer, decode_ids, encode_ids, resolve_tokenizer


@dataclass(frozen=True)
class TextResult:
    text: str
    elapsed: float
    finish_reason: Optional[str] = None


def prefix_text(prefix: str) -> str:
    """Forced output prefix; generated text continues after a single space."""
    prefix = (prefix or "").strip()
    return prefix + " " if prefix else ""


def hidden_states_of(outputs: Mapping[str, np.ndarray]) -> np.ndarray:
    for name in ("last_hidden_state", "hidden_states", "encoder_hidden_states"):
        if name in outputs:
            return outputs[name]
    if not outputs:
        raise InferenceError("encoder returned no outputs", role="encoder")
    return next(iter(outputs.values()))


class Seq2SeqProgram(DecodeProgram):
    """Encoder/decoder step for T5-style exports without a KV cache."""

    def __init__(
        self,
        sessions: SessionSet,
        tokenizer: TextTokenizer,
        *,
        decoder_start_token_id: int = 0,
    ):
        self.sessions = sessions
        self.tokenizer = tokenizer
        self.decoder_start_token_id = int(decoder_start_token_id)

    def encoder_feeds(self, initial_input: Any) -> Dict[str, np.ndarray]:
        ids = encode_ids(self.tokenizer, str(initial_input))
        input_ids = np.asarray([ids], dtype=np.int64)
        attention_mask = np.ones_like(input_ids)
        return bind_feeds(
            self.sessions.input_names(self.encoder_role),
            {"input_ids": input_ids, "attention_mask": attention_mask},
            role=self.encoder_role,
        )

    def initial_tokens(self, prefix_text: str) -> List[int]:
        ids = [self.decoder_start_token_id]
        if prefix_text:
            ids.extend(encode_ids(self.tokenizer, prefix_text, add_special_tokens=False))
        return ids

    def decoder_feeds(self, state: DecodeState) -> Dict[str, np.ndarray]:
        encoder_inputs = state.encoder_inputs or {}
        hidden = hidden_states_of(state.encoder_outputs or {})
        mask = encoder_inputs.get("attention_mask")
        if mask is None:
            mask = np.ones(hidden.shape[:2], dtype=np.int64)
        input_ids = np.asarray([state.input_ids], dtype=np.int64)
        return bind_feeds(
            self.sessions.input_names(self.decoder_role),
            {
                "input_ids": input_ids,
                "decoder_input_ids": input_ids,
                "encoder_attention_mask": mask,
                "encoder_hidden_states": hidden,
                "last_hidden_state": hidden,
            },
            role=self.decoder_role,
        )

    def detokenize(self, token_ids: Sequence[int]) -> str:
        return decode_ids(self.tokenizer, token_ids)


class Seq2SeqModel(BaseModel):
    """Text-to-text model (grammar correction, summarization, ...)."""

    required_roles = ("encoder", "decoder")

    def __init__(
        self,
        descriptor: ModelDescriptor,
        tokenizer: Optional[TextTokenizer] = None,
    ):
        super().__init__(descriptor)
        self.tokenizer = tokenizer

    def _on_init(self) -> None:
        self.tokenizer = resolve_tokenizer(
            self.tokenizer, self.descriptor.tokenizer_path, model_id=self.model_id
        )

    def decode_config(self, **overrides: Any) -> DecodeConfig:
        values: Dict[str, Any] = {
            "max_steps": self.descriptor.max_steps,
            "eos_token_id": self.descriptor.eos_token_id,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return DecodeConfig(**values)

    def process_stream(
        self,
        text: str,
        *,
        task: Optional[str] = None,
        prefix: str = "",
        config: Optional[DecodeConfig] = None,
    ) -> StreamingDecoder:
        """Start a generation and return the lazy fragment stream.

        ``task`` is one of ``descriptor.prefixes`` such as ``"summarize"`` and
        is applied to the encoder input; ``prefix`` forces the start of the
        output. Models that declare no prefixes accept any task.
        """
        self._require_initialized()
        if task:
            task = task_prefix(task)
            known = self.descriptor.prefixes
            if known and task not in known:
                raise ValueError(
                    f"model {self.model_id!r} does not support task {task!r}; "
                    f"expected one of {list(known)}"
                )
            text = f"{task}: {text}"
        program = Seq2SeqProgram(
            self.sessions,
            self.tokenizer,
            decoder_start_token_id=self.descriptor.decoder_start_token_id,
        )
        decoder = StreamingDecoder(self.sessions, program)
        return decoder.start(text, prefix_text(prefix), config or self.decode_config())

    def process(
        self,
        text: str,
        *,
        task: Optional[str] = None,
        prefix: str = "",
        config: Optional[DecodeConfig] = None,
    ) -> TextResult:
        start = time.perf_counter()
        stream = self.process_stream(text, task=task, prefix=prefix, config=config)
        output = stream.collect()
        return TextResult(
            text=output,
            elapsed=time.perf_counter() - start,
            finish_reason=stream.finish_reason,
        )
