"""Autoregressive streaming decode loop.

``StreamingDecoder`` is a state machine::

    IDLE -> GENERATING -> COMPLETED | CANCELLED | FAILED

``start()`` returns the decoder itself as a lazy iterator. Nothing runs until
the first ``next()``; each ``next()`` performs exactly one decoder forward
pass (plus the single encoder pass on the first step) and yields one
``Fragment``. The generation suspends between fragments, so cancelling takes
effect at the next step boundary and never interrupts a forward pass.

A ``for`` loop over the decoder gets its own iterator. Leaving that loop
before the stream is exhausted (``break``, an exception, or dropping the
iterator) cancels the generation.

The model-specific pieces of a step (which tensors to feed, how to read the
logits, how to turn ids back into text) live in a ``DecodeProgram``.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

import numpy as np

from edgeai.errors import CancelledError, InferenceError, UninitializedError
from edgeai.runtime.sessions import SessionSet
from edgeai.utils.logger import logger


class DecoderStatus(str, enum.Enum):
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (
            DecoderStatus.COMPLETED,
            DecoderStatus.CANCELLED,
            DecoderStatus.FAILED,
        )


@dataclass(frozen=True)
class DecodeConfig:
    max_steps: int = 20
    eos_token_id: Optional[int] = None
    top_k: int = 0
    temperature: float = 1.0
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if int(self.max_steps) <= 0:
            raise ValueError("max_steps must be positive")
        if int(self.top_k) < 0:
            raise ValueError("top_k must be >= 0 (0 selects greedy decoding)")
        if float(self.temperature) <= 0:
            raise ValueError("temperature must be positive")


@dataclass(frozen=True)
class Fragment:
    text: str
    token_id: int
    step: int


@dataclass
class DecodeState:
    prefix: str = ""
    input_ids: List[int] = field(default_factory=list)
    generated_ids: List[int] = field(default_factory=list)
    fragments: List[str] = field(default_factory=list)
    continuation: str = ""
    decoded: str = ""
    steps: int = 0
    encoder_inputs: Optional[Dict[str, np.ndarray]] = None
    encoder_outputs: Optional[Dict[str, np.ndarray]] = None

    @property
    def text(self) -> str:
        return self.prefix + self.continuation


class DecodeProgram(ABC):
    """Model-specific half of a decode step."""

    encoder_role: str = "encoder"
    decoder_role: str = "decoder"

    def encoder_feeds(self, initial_input: Any) -> Optional[Mapping[str, np.ndarray]]:
        """Feeds for the one-off encoder pass, or None for decoder-only models."""
        return None

    @abstractmethod
    def initial_tokens(self, prefix_text: str) -> List[int]:
        raise NotImplementedError

    @abstractmethod
    def decoder_feeds(self, state: DecodeState) -> Mapping[str, np.ndarray]:
        raise NotImplementedError

    @abstractmethod
    def detokenize(self, token_ids: Sequence[int]) -> str:
        raise NotImplementedError

    def next_token_logits(self, outputs: Mapping[str, np.ndarray]) -> np.ndarray:
        """Return the vocabulary logits for the last decoded position."""
        if "logits" in outputs:
            logits = outputs["logits"]
        elif outputs:
            logits = next(iter(outputs.values()))
        else:
            raise InferenceError("decoder returned no outputs", role=self.decoder_role)
        arr = np.asarray(logits, dtype=np.float32)
        if arr.ndim == 0:
            raise InferenceError("decoder returned a scalar instead of logits")
        return arr.reshape(-1, arr.shape[-1])[-1]


def select_token(
    logits: np.ndarray, config: DecodeConfig, rng: np.random.Generator
) -> int:
    """Greedy arg-max unless ``top_k`` asks for seeded top-k sampling."""
    scaled = np.asarray(logits, dtype=np.float64) / float(config.temperature)
    if config.top_k <= 0:
        return int(np.argmax(scaled))
    k = min(int(config.top_k), scaled.shape[-1])
    topk_idx = np.argpartition(-scaled, k - 1)[:k]
    topk_logits = scaled[topk_idx]
    probs = np.exp(topk_logits - np.max(topk_logits))
    probs = probs / probs.sum()
    return int(topk_idx[rng.choice(len(topk_idx), p=probs)])


class StreamingDecoder:
    """Lazy, finite, non-restartable fragment stream over a SessionSet."""

    def __init__(self, sessions: SessionSet, program: DecodeProgram):
        self.sessions = sessions
        self.program = program
        self.status = DecoderStatus.IDLE
        self.config = DecodeConfig()
        self.state: Optional[DecodeState] = None
        self.finish_reason: Optional[str] = None
        self.error: Optional[BaseException] = None
        self._steps: Optional[Iterator[Fragment]] = None

    def start(
        self,
        initial_input: Any,
        prefix_text: str = "",
        config: Optional[DecodeConfig] = None,
    ) -> "StreamingDecoder":
        if self.status is DecoderStatus.GENERATING:
            raise RuntimeError("a generation is already in progress; cancel it first")
        self.config = config or DecodeConfig()
        self.state = None
        self.finish_reason = None
        self.error = None
        self.status = DecoderStatus.GENERATING
        self._steps = self._generate(initial_input, prefix_text or "", self.config)
        return self

    def __iter__(self) -> Iterator[Fragment]:
        # The decoder does not keep this iterator, so an abandoned loop
        # releases it and the finally block runs.
        return self._iterate()

    def _iterate(self) -> Iterator[Fragment]:
        try:
            while True:
                try:
                    fragment = next(self)
                except StopIteration:
                    return
                yield fragment
        finally:
            if self.status is DecoderStatus.GENERATING:
                self.cancel()

    def __next__(self) -> Fragment:
        if self.status is DecoderStatus.CANCELLED:
            raise CancelledError("generation was cancelled")
        if self._steps is None:
            raise UninitializedError("start() must be called before iterating")
        return next(self._steps)

    def __enter__(self) -> "StreamingDecoder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        if self.status is DecoderStatus.GENERATING:
            self.cancel()

    def cancel(self) -> None:
        """Abandon the generation; no further session calls are made."""
        if self.status is not DecoderStatus.GENERATING:
            return
        steps, self._steps = self._steps, None
        if steps is not None:
            steps.close()
        self._mark_cancelled()

    def collect(self) -> str:
        """Drain the remaining fragments and return the final text."""
        for _ in self:
            pass
        return self.text

    @property
    def text(self) -> str:
        """Prefix plus generated continuation, once the generation completed."""
        if self.status is DecoderStatus.COMPLETED and self.state is not None:
            return self.state.text
        if self.status is DecoderStatus.CANCELLED:
            raise CancelledError("generation was cancelled")
        if self.status is DecoderStatus.FAILED:
            if isinstance(self.error, InferenceError):
                raise self.error
            raise InferenceError(f"generation failed: {self.error}") from self.error
        if self.status is DecoderStatus.IDLE:
            raise UninitializedError("start() must be called before reading text")
        raise RuntimeError("generation has not finished yet")

    def _mark_cancelled(self) -> None:
        if self.status is DecoderStatus.GENERATING:
            self.status = DecoderStatus.CANCELLED
            steps = self.state.steps if self.state is not None else 0
            self.state = None
            logger.debug("Generation cancelled after %s step(s)", steps)

    def _finish(self, state: DecodeState, reason: str) -> None:
        state.encoder_inputs = None
        state.encoder_outputs = None
        self.finish_reason = reason
        self.status = DecoderStatus.COMPLETED
        logger.debug(
            "Generation completed: reason=%s steps=%s fragments=%s",
            reason,
            state.steps,
            len(state.fragments),
        )

    def _next_fragment(self, state: DecodeState, token_id: int) -> Fragment:
        decoded = self.program.detokenize(state.generated_ids)
        if decoded.startswith(state.decoded):
            piece = decoded[len(state.decoded):]
        else:
            # the tokenizer rewrote earlier text; fall back to the lone token
            piece = self.program.detokenize([token_id])
        state.decoded = decoded
        state.continuation += piece
        state.fragments.append(piece)
        return Fragment(text=piece, token_id=token_id, step=state.steps)

    def _generate(
        self, initial_input: Any, prefix_text: str, config: DecodeConfig
    ) -> Iterator[Fragment]:
        rng = np.random.default_rng(config.seed)
        state = DecodeState(prefix=prefix_text)
        self.state = state
        try:
            state.input_ids = list(self.program.initial_tokens(prefix_text))
            feeds = self.program.encoder_feeds(initial_input)
            if feeds is not None:
                state.encoder_inputs = dict(feeds)
                state.encoder_outputs = self.sessions.run(
                    self.program.encoder_role, feeds
                )
            while state.steps < config.max_steps:
                outputs = self.sessions.run(
                    self.program.decoder_role, self.program.decoder_feeds(state)
                )
                token_id = select_token(
                    self.program.next_token_logits(outputs), config, rng
                )
                state.steps += 1
                if config.eos_token_id is not None and token_id == config.eos_token_id:
                    self._finish(state, "eos")
                    return
                state.generated_ids.append(token_id)
                state.input_ids.append(token_id)
                yield self._next_fragment(state, token_id)
            self._finish(state, "max_steps")
        except GeneratorExit:
            self._mark_cancelled()
            raise
        except Exception as exc:
            self.status = DecoderStatus.FAILED
            self.state = None
            self.error = exc
            logger.warning(
                "Generation failed after %s step(s): %s", state.steps, exc
            )
            raise
