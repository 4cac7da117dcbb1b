"""Image <-> tensor conversion shared by every image model wrapper.

Encoding policy
- Resize (optional): when ``resize > 0`` and the longer side exceeds it, the
  longer side becomes exactly ``resize`` and the shorter side is scaled by the
  same factor and truncated (integer arithmetic, minimum 1px). Bilinear
  resampling.
- Padding (optional): each axis is padded to the next multiple of
  ``pad_size`` by edge replication, ``floor(diff / 2)`` before the image and
  ``ceil(diff / 2)`` after. ``GeometryCorrector`` undoes this on output.
- Normalization: ``(pixel / 255 - mean[c]) / std[c]``, float32, ``[1, 3, H, W]``.

Decoding policy
- Accepts ``[C, H, W]`` or ``[1, C, H, W]`` with ``C >= 3``; extra channels
  are ignored. Values are clamped to ``[0, 1]`` (NaN -> 0), scaled to
  ``[0, 255]`` and rounded half-to-even. Alpha is always 255.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from edgeai.errors import InvalidImageError, TensorShapeError
from edgeai.image.geometry import (
    GeometryCorrector,
    GeometryPlan,
    padded_size,
    split_padding,
)
from edgeai.image.loader import ImageSource, load_image
from edgeai.utils.logger import logger


def _as_triplet(values: Sequence[float], name: str) -> Tuple[float, float, float]:
    if isinstance(values, (int, float)):
        values = (values, values, values)
    items = tuple(float(v) for v in values)
    if len(items) != 3:
        raise ValueError(f"{name} must have 3 values (one per RGB channel), got {len(items)}")
    return items  # type: ignore[return-value]


@dataclass(frozen=True)
class PreprocessConfig:
    resize: int = 0
    mean: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    std: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    pad: bool = False
    pad_size: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "mean", _as_triplet(self.mean, "mean"))
        object.__setattr__(self, "std", _as_triplet(self.std, "std"))
        if int(self.resize) < 0:
            raise ValueError("resize must be >= 0 (0 disables resizing)")
        if any(s == 0 for s in self.std):
            raise ValueError("std values must be non-zero")
        if int(self.pad_size) <= 0:
            raise ValueError("pad_size must be positive")

    @classmethod
    def from_dict(cls, payload: Optional[Mapping[str, Any]]) -> "PreprocessConfig":
        data = dict(payload or {})
        kwargs: dict[str, Any] = {}
        if "resize" in data:
            kwargs["resize"] = int(data["resize"] or 0)
        if "mean" in data:
            kwargs["mean"] = data["mean"]
        if "std" in data:
            kwargs["std"] = data["std"]
        if "pad" in data:
            kwargs["pad"] = bool(data["pad"])
        if "pad_size" in data:
            kwargs["pad_size"] = int(data["pad_size"])
        unknown = set(data) - {"resize", "mean", "std", "pad", "pad_size"}
        if unknown:
            logger.warning("Ignoring unknown preprocess options: %s", sorted(unknown))
        return cls(**kwargs)


@dataclass
class PixelBuffer:
    """Interleaved RGBA bytes, ``height x width x 4``."""

    data: np.ndarray
    width: int
    height: int

    def tobytes(self) -> bytes:
        return self.data.tobytes()

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.data)


@dataclass
class EncodedImage:
    tensor: np.ndarray
    width: int
    height: int
    padded_width: int
    padded_height: int
    source_width: int
    source_height: int
    config: PreprocessConfig = field(default_factory=PreprocessConfig)

    @property
    def padded(self) -> bool:
        return (self.padded_width, self.padded_height) != (self.width, self.height)

    def geometry(self, output_shape: Sequence[int]) -> GeometryPlan:
        """Build the crop plan for a model output of ``output_shape``."""
        if len(output_shape) < 2:
            raise TensorShapeError(f"output shape {tuple(output_shape)} has no spatial axes")
        output_height, output_width = int(output_shape[-2]), int(output_shape[-1])
        if not self.padded:
            return GeometryPlan.identity(output_width, output_height)
        return GeometryCorrector().plan(
            self.width,
            self.height,
            self.padded_width,
            self.padded_height,
            output_width,
            output_height,
        )


def resized_dimensions(width: int, height: int, resize: int) -> Tuple[int, int]:
    """Return the (width, height) an image gets for a ``resize`` limit."""
    longest = max(width, height)
    if resize <= 0 or longest <= resize:
        return width, height
    if width >= height:
        return resize, max(1, (height * resize) // width)
    return max(1, (width * resize) // height), resize


class TensorCodec:
    def __init__(self, config: Optional[PreprocessConfig] = None):
        self.config = config or PreprocessConfig()

    def prepare(
        self,
        image: ImageSource,
        config: Optional[PreprocessConfig] = None,
        *,
        resize: Optional[int] = None,
    ) -> EncodedImage:
        cfg = config or self.config
        if resize is not None:
            cfg = replace(cfg, resize=int(resize))

        pil_image = load_image(image)
        source_width, source_height = pil_image.size

        width, height = resized_dimensions(source_width, source_height, int(cfg.resize))
        if (width, height) != (source_width, source_height):
            pil_image = pil_image.resize(
                (width, height), resample=Image.Resampling.BILINEAR
            )

        pixels = np.asarray(pil_image, dtype=np.float32)
        if pixels.ndim != 3 or pixels.shape[2] != 3:
            raise InvalidImageError(f"expected an RGB image, got array shape {pixels.shape}")
        pixels = pixels / 255.0

        padded_width, padded_height = width, height
        if cfg.pad:
            padded_width = padded_size(width, int(cfg.pad_size))
            padded_height = padded_size(height, int(cfg.pad_size))
            if (padded_width, padded_height) != (width, height):
                top, bottom = split_padding(padded_height - height)
                left, right = split_padding(padded_width - width)
                pixels = np.pad(
                    pixels, ((top, bottom), (left, right), (0, 0)), mode="edge"
                )

        mean = np.asarray(cfg.mean, dtype=np.float32)
        std = np.asarray(cfg.std, dtype=np.float32)
        pixels = (pixels - mean) / std

        tensor = np.ascontiguousarray(
            np.transpose(pixels, (2, 0, 1))[np.newaxis, ...], dtype=np.float32
        )
        return EncodedImage(
            tensor=tensor,
            width=width,
            height=height,
            padded_width=padded_width,
            padded_height=padded_height,
            source_width=source_width,
            source_height=source_height,
            config=cfg,
        )

    def encode(
        self, image: ImageSource, config: Optional[PreprocessConfig] = None
    ) -> np.ndarray:
        return self.prepare(image, config).tensor

    def decode(
        self, tensor: np.ndarray, plan: Optional[GeometryPlan] = None
    ) -> PixelBuffer:
        arr = np.asarray(tensor)
        if arr.ndim == 4:
            if arr.shape[0] != 1:
                logger.warning(
                    "Decoding only the first of %s batch items", arr.shape[0]
                )
            arr = arr[0]
        if arr.ndim != 3:
            raise TensorShapeError(
                f"expected a [C, H, W] or [1, C, H, W] tensor, got shape {tuple(np.shape(tensor))}"
            )
        channels, output_height, output_width = arr.shape
        if channels < 3:
            raise TensorShapeError(f"expected at least 3 channels, got {channels}")

        if plan is None:
            plan = GeometryPlan.identity(output_width, output_height)
        if (plan.output_width, plan.output_height) != (output_width, output_height):
            raise TensorShapeError(
                "geometry plan was computed for a "
                f"{plan.output_width}x{plan.output_height} output, tensor is "
                f"{output_width}x{output_height}"
            )

        # Slicing keeps the full output width as the row stride.
        rgb = arr[:3, plan.y_start:plan.y_end, plan.x_start:plan.x_end]
        rgb = np.nan_to_num(rgb.astype(np.float32), nan=0.0, posinf=1.0, neginf=0.0)
        rgb = np.rint(np.clip(rgb, 0.0, 1.0) * 255.0).astype(np.uint8)

        rgba = np.empty((plan.height, plan.width, 4), dtype=np.uint8)
        rgba[:, :, :3] = np.transpose(rgb, (1, 2, 0))
        rgba[:, :, 3] = 255
        return PixelBuffer(data=rgba, width=plan.width, height=plan.height)
