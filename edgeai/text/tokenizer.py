from __future__ import annotations

import os
from typing import Any, List, Optional, Protocol, Sequence, Union

from edgeai.errors import SessionLoadError


class TextTokenizer(Protocol):
    """The subset of ``tokenizers.Tokenizer`` the text models rely on."""

    def encode(self, sequence: str, add_special_tokens: bool = True) -> Any: ...

    def decode(self, ids: Sequence[int], skip_special_tokens: bool = True) -> str: ...


def load_tokenizer(source: Union[str, os.PathLike, TextTokenizer]) -> TextTokenizer:
    """Return ``source`` if it already is a tokenizer, else read ``tokenizer.json``."""
    if not isinstance(source, (str, os.PathLike)):
        return source
    from tokenizers import Tokenizer

    path = os.path.expanduser(os.fspath(source))
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Tokenizer file does not exist: {path}")
    return Tokenizer.from_file(path)


def encode_ids(
    tokenizer: TextTokenizer, text: str, *, add_special_tokens: bool = True
) -> List[int]:
    encoding = tokenizer.encode(text, add_special_tokens=add_special_tokens)
    return [int(i) for i in encoding.ids]


def decode_ids(tokenizer: TextTokenizer, ids: Sequence[int]) -> str:
    return tokenizer.decode([int(i) for i in ids], skip_special_tokens=True)


def resolve_tokenizer(
    tokenizer: Optional[TextTokenizer],
    tokenizer_path: Optional[str],
    *,
    model_id: str,
) -> TextTokenizer:
    """Prefer an injected tokenizer, else load the descriptor's tokenizer.json."""
    if tokenizer is not None:
        return tokenizer
    if not tokenizer_path:
        raise SessionLoadError(
            f"model {model_id!r} has no tokenizer_path", missing=("tokenizer",)
        )
    return load_tokenizer(tokenizer_path)
