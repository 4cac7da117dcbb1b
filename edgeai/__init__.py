"""In-process multimodal inference runtime (image-to-image, image-to-text, text-to-text)."""

from .errors import (
    CancelledError,
    EdgeAIError,
    InferenceError,
    InvalidImageError,
    SessionLoadError,
    TensorShapeError,
    UninitializedError,
    UnknownRoleError,
)
from .factory import create_model
from .image.codec import EncodedImage, PixelBuffer, PreprocessConfig, TensorCodec
from .image.geometry import GeometryCorrector, GeometryPlan
from .image.img2img import Img2ImgModel, Img2ImgResult
from .multimodal.img2text import Img2TextModel
from .runtime.descriptor import ModelDescriptor
from .runtime.sessions import OnnxSession, SessionSet
from .text.decoder import DecodeConfig, DecoderStatus, Fragment, StreamingDecoder
from .text.seq2seq import Seq2SeqModel, TextResult
from .version import __version__

__all__ = [
    "CancelledError",
    "EdgeAIError",
    "InferenceError",
    "InvalidImageError",
    "SessionLoadError",
    "TensorShapeError",
    "UninitializedError",
    "UnknownRoleError",
    "create_model",
    "EncodedImage",
    "PixelBuffer",
    "PreprocessConfig",
    "TensorCodec",
    "GeometryCorrector",
    "GeometryPlan",
    "Img2ImgModel",
    "Img2ImgResult",
    "Img2TextModel",
    "ModelDescriptor",
    "OnnxSession",
    "SessionSet",
    "DecodeConfig",
    "DecoderStatus",
    "Fragment",
    "StreamingDecoder",
    "Seq2SeqModel",
    "TextResult",
    "__version__",
]
