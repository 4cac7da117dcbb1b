from __future__ import annotations

import numpy as np
import pytest
from PIL import Image

from edgeai.errors import InferenceError, SessionLoadError, UninitializedError
from edgeai.factory import create_model
from edgeai.image.codec import PreprocessConfig
from edgeai.image.img2img import Img2ImgModel
from edgeai.runtime.descriptor import ModelDescriptor
from fakes import FakeSession


def _descriptor(**preprocess) -> ModelDescriptor:
    return ModelDescriptor(
        id="test-sr",
        type="img2img",
        model_paths={"model": "unused.onnx"},
        preprocess=PreprocessConfig(**preprocess),
    )


def _image(width: int, height: int) -> Image.Image:
    rng = np.random.default_rng(width * 100 + height)
    return Image.fromarray(rng.integers(0, 256, (height, width, 3), dtype=np.uint8))


def _identity(feeds):
    return {"output": np.asarray(feeds["input"])}


def _upscale_2x(feeds):
    tensor = np.asarray(feeds["input"])
    return {"output": tensor.repeat(2, axis=2).repeat(2, axis=3)}


def test_process_requires_init() -> None:
    model = Img2ImgModel(_descriptor())
    assert not model.initialized
    with pytest.raises(UninitializedError):
        model.process(_image(4, 4))


def test_padded_identity_model_returns_original_pixels() -> None:
    model = Img2ImgModel(_descriptor(pad=True, pad_size=8))
    handle = FakeSession(_identity)
    model.init({"model": handle})
    image = _image(10, 7)

    result = model.process(image)

    assert handle.calls[0]["input"].shape == (1, 3, 8, 16)
    assert (result.data.width, result.data.height) == (10, 7)
    np.testing.assert_array_equal(result.data.data[:, :, :3], np.asarray(image))
    assert np.all(result.data.data[:, :, 3] == 255)
    assert result.elapsed >= 0


def test_padded_upscaling_model_crops_scaled_padding() -> None:
    model = Img2ImgModel(_descriptor(pad=True, pad_size=8))
    model.init({"model": FakeSession(_upscale_2x)})
    image = _image(12, 6)

    result = model.process(image)

    expected = np.asarray(image).repeat(2, axis=0).repeat(2, axis=1)
    assert (result.data.width, result.data.height) == (24, 12)
    np.testing.assert_array_equal(result.data.data[:, :, :3], expected)


def test_resize_caps_longer_side_before_inference() -> None:
    model = Img2ImgModel(_descriptor())
    handle = FakeSession(_identity)
    model.init({"model": handle})

    result = model.process(_image(64, 32), resize=16)

    assert handle.calls[0]["input"].shape == (1, 3, 8, 16)
    assert (result.data.width, result.data.height) == (16, 8)


def test_missing_output_is_an_inference_error() -> None:
    model = Img2ImgModel(_descriptor())
    model.init({"model": FakeSession(lambda feeds: {"other": feeds["input"]})})
    with pytest.raises(InferenceError, match="'output'"):
        model.process(_image(4, 4))


def test_init_without_artifact_for_required_role() -> None:
    descriptor = ModelDescriptor(
        id="broken", type="img2img", model_paths={"encoder": "x.onnx"}
    )
    with pytest.raises(SessionLoadError) as excinfo:
        Img2ImgModel(descriptor).init()
    assert excinfo.value.missing == ("model",)


def test_context_manager_closes_sessions() -> None:
    model = Img2ImgModel(_descriptor())
    model.init({"model": FakeSession(_identity)})
    with model:
        assert model.initialized
    assert not model.initialized


def test_factory_builds_img2img_from_mapping() -> None:
    model = create_model(
        {
            "id": "esrgan",
            "type": "img2img",
            "model_paths": {"model": "esrgan.onnx"},
            "preprocess": {"pad": True, "pad_size": 4},
        }
    )
    assert isinstance(model, Img2ImgModel)
    assert model.codec.config.pad_size == 4
    with pytest.raises(ValueError, match="tokenizer"):
        create_model(_descriptor(), tokenizer=object())
