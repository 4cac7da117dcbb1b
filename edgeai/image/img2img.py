from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

import numpy as np

from edgeai.errors import InferenceError
from edgeai.image.codec import PixelBuffer, TensorCodec
from edgeai.image.loader import ImageSource
from edgeai.runtime.base import BaseModel
from edgeai.runtime.descriptor import ModelDescriptor
from edgeai.utils.logger import logger


@dataclass
class Img2ImgResult:
    data: PixelBuffer
    elapsed: float


class Img2ImgModel(BaseModel):
    """Image-to-image model (super-resolution, restoration, style transfer).

    The image is normalized (and optionally padded) by the codec, run through
    the single ``"model"`` session, and the output is cropped back so the
    padding never shows up in the result.
    """

    required_roles = ("model",)

    def __init__(self, descriptor: ModelDescriptor):
        super().__init__(descriptor)
        self.codec = TensorCodec(descriptor.preprocess)

    def run_inference(self, tensor: np.ndarray) -> np.ndarray:
        self._require_initialized()
        input_names = self.sessions.input_names("model")
        output_names = self.sessions.output_names("model")
        if not input_names or not output_names:
            raise InferenceError("the model declares no inputs or outputs", role="model")
        outputs = self.sessions.run("model", {input_names[0]: tensor})
        try:
            return outputs[output_names[0]]
        except KeyError:
            raise InferenceError(
                f"model output {output_names[0]!r} is missing from the results",
                role="model",
            ) from None

    def process(self, source: ImageSource, resize: int = 0) -> Img2ImgResult:
        """Run the model on an image; ``resize`` caps the longer side (0 disables)."""
        self._require_initialized()
        encoded = self.codec.prepare(source, resize=resize)
        start = time.perf_counter()
        output = self.run_inference(encoded.tensor)
        elapsed = time.perf_counter() - start
        plan = encoded.geometry(np.shape(output))
        if not plan.is_identity:
            logger.debug(
                "Cropping padded output %sx%s to [%s:%s, %s:%s]",
                plan.output_width,
                plan.output_height,
                plan.y_start,
                plan.y_end,
                plan.x_start,
                plan.x_end,
            )
        return Img2ImgResult(data=self.codec.decode(output, plan), elapsed=elapsed)
