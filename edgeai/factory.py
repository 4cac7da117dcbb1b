from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional, Union

from edgeai.image.img2img import Img2ImgModel
from edgeai.multimodal.img2text import Img2TextModel
from edgeai.runtime.base import BaseModel
from edgeai.runtime.descriptor import ModelDescriptor
from edgeai.text.seq2seq import Seq2SeqModel
from edgeai.text.tokenizer import TextTokenizer


def create_model(
    descriptor: Union[ModelDescriptor, Mapping[str, Any], str, Path],
    *,
    tokenizer: Optional[TextTokenizer] = None,
) -> BaseModel:
    """Build the model wrapper matching ``descriptor.type`` (not yet initialized).

    ``descriptor`` may be a ModelDescriptor, a mapping, or a YAML file path.
    """
    if isinstance(descriptor, (str, Path)):
        descriptor = ModelDescriptor.from_config_file(descriptor)
    elif not isinstance(descriptor, ModelDescriptor):
        descriptor = ModelDescriptor.from_dict(descriptor)

    key = descriptor.type
    if key == "img2img":
        if tokenizer is not None:
            raise ValueError("img2img models do not take a tokenizer")
        return Img2ImgModel(descriptor)
    if key == "seq2seq":
        return Seq2SeqModel(descriptor, tokenizer=tokenizer)
    if key == "img2text":
        return Img2TextModel(descriptor, tokenizer=tokenizer)
    raise ValueError(f"Unknown model type: {key!r}")
