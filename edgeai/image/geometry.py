"""Crop geometry for images padded to a block size before inference.

The encoder pads each axis up to the next multiple of ``pad_size`` and puts
``floor(diff / 2)`` pixels before the image and ``ceil(diff / 2)`` after it.
A model may rescale its output (super-resolution, downsampling), so the pad
amounts are mapped into output-tensor space with ``output / padded`` before
cropping. The leading pad rounds down and the trailing pad rounds up; that
keeps the cropped extent equal to ``original * ratio`` and the image centred
the same way the encoder placed it.

With an odd pad and a scaled output the lead is ``floor(diff * ratio / 2)``
rather than ``floor(diff / 2) * ratio``, so the window can sit up to
``ratio / 2`` output pixels past the encoder's placement (7 padded to 8 at
2x crops rows ``[1, 15)``, not ``[0, 14)``). Even pads map exactly.
"""

from __future__ import annotations

import math
from dataclasses import dataclass


def padded_size(dim: int, block: int) -> int:
    """Return the smallest multiple of ``block`` that is >= ``dim``."""
    if block <= 0:
        raise ValueError(f"block size must be positive, got {block}")
    if dim < 0:
        raise ValueError(f"dimension must be non-negative, got {dim}")
    return int(math.ceil(dim / block)) * block


def split_padding(diff: int) -> tuple[int, int]:
    """Split ``diff`` pixels of padding into (before, after)."""
    before = diff // 2
    return before, diff - before


@dataclass(frozen=True)
class GeometryPlan:
    original_width: int
    original_height: int
    padded_width: int
    padded_height: int
    output_width: int
    output_height: int
    x_start: int
    y_start: int
    x_end: int
    y_end: int

    @property
    def width(self) -> int:
        return self.x_end - self.x_start

    @property
    def height(self) -> int:
        return self.y_end - self.y_start

    @property
    def is_identity(self) -> bool:
        return (
            self.x_start == 0
            and self.y_start == 0
            and self.x_end == self.output_width
            and self.y_end == self.output_height
        )

    @classmethod
    def identity(cls, width: int, height: int) -> "GeometryPlan":
        return cls(
            original_width=width,
            original_height=height,
            padded_width=width,
            padded_height=height,
            output_width=width,
            output_height=height,
            x_start=0,
            y_start=0,
            x_end=width,
            y_end=height,
        )


class GeometryCorrector:
    """Computes the crop window that removes encoder padding from model output."""

    @staticmethod
    def _axis_window(original: int, padded: int, output: int) -> tuple[int, int]:
        diff = padded - original
        if diff <= 0:
            return 0, output
        # floor/ceil of diff * (output / padded) / 2 in exact integer arithmetic
        numerator = diff * output
        denominator = 2 * padded
        lead = numerator // denominator
        trail = -(-numerator // denominator)
        start = min(lead, output)
        end = max(start, output - trail)
        return start, end

    def plan(
        self,
        original_width: int,
        original_height: int,
        padded_width: int,
        padded_height: int,
        output_width: int,
        output_height: int,
    ) -> GeometryPlan:
        for name, value in (
            ("original_width", original_width),
            ("original_height", original_height),
            ("output_width", output_width),
            ("output_height", output_height),
        ):
            if int(value) <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if padded_width < original_width or padded_height < original_height:
            raise ValueError(
                "padded size "
                f"{padded_width}x{padded_height} is smaller than original "
                f"{original_width}x{original_height}"
            )

        x_start, x_end = self._axis_window(original_width, padded_width, output_width)
        y_start, y_end = self._axis_window(
            original_height, padded_height, output_height
        )
        return GeometryPlan(
            original_width=int(original_width),
            original_height=int(original_height),
            padded_width=int(padded_width),
            padded_height=int(padded_height),
            output_width=int(output_width),
            output_height=int(output_height),
            x_start=x_start,
            y_start=y_start,
            x_end=x_end,
            y_end=y_end,
        )
