from __future__ import annotations

import time
from typing import Any, Dict, Optional

import numpy as np

from edgeai.image.codec import TensorCodec
from edgeai.image.loader import ImageSource
from edgeai.runtime.base import BaseModel
from edgeai.runtime.descriptor import ModelDescriptor
from edgeai.runtime.sessions import bind_feeds
from edgeai.text.decoder import DecodeConfig, DecodeState, StreamingDecoder
from edgeai.text.seq2seq import Seq2SeqProgram, TextResult, hidden_states_of, prefix_text
from edgeai.text.tokenizer import TextTokenizer, resolve_tokenizer


class Img2TextProgram(Seq2SeqProgram):
    """Vision encoder + text decoder step (image captioning)."""

    def encoder_feeds(self, initial_input: Any) -> Dict[str, np.ndarray]:
        pixel_values = np.asarray(initial_input, dtype=np.float32)
        names = self.sessions.input_names(self.encoder_role)
        if len(names) == 1:
            return {names[0]: pixel_values}
        return bind_feeds(
            names,
            {"pixel_values": pixel_values, "images": pixel_values},
            role=self.encoder_role,
        )

    def decoder_feeds(self, state: DecodeState) -> Dict[str, np.ndarray]:
        hidden = hidden_states_of(state.encoder_outputs or {})
        input_ids = np.asarray([state.input_ids], dtype=np.int64)
        return bind_feeds(
            self.sessions.input_names(self.decoder_role),
            {
                "input_ids": input_ids,
                "attention_mask": np.ones_like(input_ids),
                "encoder_hidden_states": hidden,
                "image_embeds": hidden,
                "last_hidden_state": hidden,
            },
            role=self.decoder_role,
        )


class Img2TextModel(BaseModel):
    """Image captioning: the image is encoded once, the caption is streamed."""

    required_roles = ("encoder", "decoder")

    def __init__(
        self,
        descriptor: ModelDescriptor,
        tokenizer: Optional[TextTokenizer] = None,
    ):
        super().__init__(descriptor)
        self.tokenizer = tokenizer
        self.codec = TensorCodec(descriptor.preprocess)

    def _on_init(self) -> None:
        self.tokenizer = resolve_tokenizer(
            self.tokenizer, self.descriptor.tokenizer_path, model_id=self.model_id
        )

    def process_stream(
        self,
        source: ImageSource,
        prefix: str = "",
        config: Optional[DecodeConfig] = None,
    ) -> StreamingDecoder:
        """Encode the image and return the caption fragment stream.

        The final caption is ``prefix`` followed by the generated continuation.
        """
        self._require_initialized()
        pixel_values = self.codec.encode(source)
        program = Img2TextProgram(
            self.sessions,
            self.tokenizer,
            decoder_start_token_id=self.descriptor.decoder_start_token_id,
        )
        decoder = StreamingDecoder(self.sessions, program)
        config = config or DecodeConfig(
            max_steps=self.descriptor.max_steps,
            eos_token_id=self.descriptor.eos_token_id,
        )
        return decoder.start(pixel_values, prefix_text(prefix), config)

    def process(
        self,
        source: ImageSource,
        prefix: str = "",
        config: Optional[DecodeConfig] = None,
    ) -> TextResult:
        start = time.perf_counter()
        stream = self.process_stream(source, prefix, config)
        caption = stream.collect()
        return TextResult(
            text=caption,
            elapsed=time.perf_counter() - start,
            finish_reason=stream.finish_reason,
        )
