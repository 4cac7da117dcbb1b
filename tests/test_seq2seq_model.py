from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from edgeai.errors import SessionLoadError, UninitializedError
from edgeai.factory import create_model
from edgeai.runtime.descriptor import ModelDescriptor
from edgeai.text.decoder import DecoderStatus
from edgeai.text.seq2seq import Seq2SeqModel, prefix_text
from edgeai.text.tokenizer import decode_ids, encode_ids, load_tokenizer
from fakes import FakeSession, FakeTokenizer, scripted_decoder

WORDS = ["summarize:", "fix:", "i", "has", "have", "a", "cat", "two", "cats"]


def _descriptor(**extra) -> ModelDescriptor:
    payload = {
        "id": "t5-small",
        "type": "seq2seq",
        "model_paths": {"encoder": "encoder.onnx", "decoder": "decoder.onnx"},
        "eos_token_id": 1,
        "max_steps": 8,
    }
    payload.update(extra)
    return ModelDescriptor.from_dict(payload)


def _sessions(tokenizer: FakeTokenizer, script, *, forced: int = 1):
    encoder = FakeSession(
        lambda feeds: {
            "last_hidden_state": np.zeros(
                (1, feeds["input_ids"].shape[1], 4), dtype=np.float32
            )
        },
        input_names=("input_ids", "attention_mask"),
        output_names=("last_hidden_state",),
    )
    decoder = FakeSession(
        scripted_decoder(script, len(tokenizer.vocab), forced=forced),
        input_names=("input_ids", "encoder_attention_mask", "encoder_hidden_states"),
        output_names=("logits",),
    )
    return encoder, decoder


def _ids(tokenizer: FakeTokenizer, text: str):
    return tokenizer.encode(text, add_special_tokens=False).ids


def test_prefix_text_normalizes_trailing_space() -> None:
    assert prefix_text("") == ""
    assert prefix_text("  a cat ") == "a cat "


def test_process_requires_init() -> None:
    model = Seq2SeqModel(_descriptor(), tokenizer=FakeTokenizer(WORDS))
    with pytest.raises(UninitializedError):
        model.process("i has a cat")


def test_process_runs_encoder_once_and_feeds_decoder() -> None:
    tokenizer = FakeTokenizer(WORDS)
    script = _ids(tokenizer, "i have a cat") + [tokenizer.eos_id]
    encoder, decoder = _sessions(tokenizer, script)
    model = Seq2SeqModel(_descriptor(), tokenizer=tokenizer)
    model.init({"encoder": encoder, "decoder": decoder})

    result = model.process("i has a cat", task="fix")

    assert result.text == "i have a cat"
    assert result.finish_reason == "eos"
    assert len(encoder.calls) == 1
    assert len(decoder.calls) == 5
    sent = encoder.calls[0]["input_ids"]
    assert sent.dtype == np.int64
    assert sent.tolist() == [tokenizer.encode("fix: i has a cat").ids]

    first = decoder.calls[0]
    assert set(first) == {"input_ids", "encoder_attention_mask", "encoder_hidden_states"}
    assert first["input_ids"].tolist() == [[0]]
    assert first["encoder_hidden_states"].shape == (1, sent.shape[1], 4)
    assert first["encoder_attention_mask"].tolist() == [[1] * sent.shape[1]]
    assert decoder.calls[-1]["input_ids"].shape == (1, 5)


def test_task_must_be_one_of_the_declared_prefixes() -> None:
    tokenizer = FakeTokenizer(WORDS)
    script = _ids(tokenizer, "two cats") + [tokenizer.eos_id]
    encoder, decoder = _sessions(tokenizer, script)
    model = Seq2SeqModel(_descriptor(prefixes=["fix"]), tokenizer=tokenizer)
    model.init({"encoder": encoder, "decoder": decoder})

    with pytest.raises(ValueError, match="does not support task 'summarize'"):
        model.process_stream("i has a cat", task="summarize")
    assert encoder.calls == []

    assert model.process("i has a cat", task="fix:").text == "two cats"
    assert encoder.calls[0]["input_ids"].tolist() == [
        tokenizer.encode("fix: i has a cat").ids
    ]


def test_forced_prefix_is_part_of_the_final_text() -> None:
    tokenizer = FakeTokenizer(WORDS)
    script = _ids(tokenizer, "two cats") + [tokenizer.eos_id]
    encoder, decoder = _sessions(tokenizer, script, forced=3)
    model = Seq2SeqModel(_descriptor(), tokenizer=tokenizer)
    model.init({"encoder": encoder, "decoder": decoder})

    stream = model.process_stream("i has a cat", prefix="i have")
    pieces = [fragment.text for fragment in stream]

    assert pieces == ["two", " cats"]
    assert stream.text == "i have two cats"
    assert decoder.calls[0]["input_ids"].tolist() == [
        [0] + _ids(tokenizer, "i have")
    ]


def test_stream_can_be_cancelled_midway() -> None:
    tokenizer = FakeTokenizer(WORDS)
    encoder, decoder = _sessions(tokenizer, _ids(tokenizer, "a cat a cat a cat"))
    model = Seq2SeqModel(_descriptor(), tokenizer=tokenizer)
    model.init({"encoder": encoder, "decoder": decoder})

    with model.process_stream("i has a cat") as stream:
        next(stream)
    assert stream.status is DecoderStatus.CANCELLED
    assert len(decoder.calls) == 1


def test_breaking_out_of_the_stream_cancels_it() -> None:
    tokenizer = FakeTokenizer(WORDS)
    encoder, decoder = _sessions(tokenizer, _ids(tokenizer, "a cat a cat a cat"))
    model = Seq2SeqModel(_descriptor(), tokenizer=tokenizer)
    model.init({"encoder": encoder, "decoder": decoder})

    stream = model.process_stream("i has a cat")
    for fragment in stream:
        if fragment.step == 2:
            break

    assert stream.status is DecoderStatus.CANCELLED
    assert len(decoder.calls) == 2


def test_max_steps_from_descriptor_and_override() -> None:
    tokenizer = FakeTokenizer(WORDS)
    encoder, decoder = _sessions(tokenizer, _ids(tokenizer, "a"))
    model = Seq2SeqModel(_descriptor(max_steps=3), tokenizer=tokenizer)
    model.init({"encoder": encoder, "decoder": decoder})

    assert model.process("cat").text == "a a a"
    capped = model.process("cat", config=model.decode_config(max_steps=2))
    assert capped.text == "a a"
    assert capped.finish_reason == "max_steps"
    assert model.decode_config().eos_token_id == 1


def test_init_requires_both_roles() -> None:
    tokenizer = FakeTokenizer(WORDS)
    encoder, _ = _sessions(tokenizer, [1])
    model = Seq2SeqModel(_descriptor(), tokenizer=tokenizer)
    with pytest.raises(SessionLoadError) as excinfo:
        model.init({"encoder": encoder})
    assert excinfo.value.missing == ("decoder",)


def test_init_without_tokenizer_closes_sessions() -> None:
    encoder, decoder = _sessions(FakeTokenizer(WORDS), [1])
    model = Seq2SeqModel(_descriptor())
    with pytest.raises(SessionLoadError, match="tokenizer_path"):
        model.init({"encoder": encoder, "decoder": decoder})
    assert not model.initialized


def test_factory_passes_tokenizer_through() -> None:
    tokenizer = FakeTokenizer(WORDS)
    model = create_model(_descriptor(), tokenizer=tokenizer)
    assert isinstance(model, Seq2SeqModel)
    assert model.tokenizer is tokenizer


def test_load_tokenizer_reads_tokenizer_json(tmp_path: Path) -> None:
    tokenizers = pytest.importorskip("tokenizers")
    from tokenizers.models import WordLevel
    from tokenizers.pre_tokenizers import WhitespaceSplit

    vocab = {"<pad>": 0, "</s>": 1, "<unk>": 2, "a": 3, "cat": 4, "sat": 5}
    tokenizer = tokenizers.Tokenizer(WordLevel(vocab, unk_token="<unk>"))
    tokenizer.pre_tokenizer = WhitespaceSplit()
    tokenizer.add_special_tokens(["<pad>", "</s>"])
    path = tmp_path / "tokenizer.json"
    tokenizer.save(str(path))

    loaded = load_tokenizer(path)

    ids = encode_ids(loaded, "a cat sat", add_special_tokens=False)
    assert ids == [3, 4, 5]
    assert decode_ids(loaded, [0] + ids + [1]) == "a cat sat"
    assert load_tokenizer(loaded) is loaded
    with pytest.raises(FileNotFoundError):
        load_tokenizer(tmp_path / "missing.json")
