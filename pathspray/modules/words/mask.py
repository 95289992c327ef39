"""Mask grammar expansion for word generation.

A mask is literal text mixed with `{...}` groups; the word list is the
cartesian product of every group, indexed lazily:

    admin{?d#2}     -> admin00 .. admin99
    {?0}            -> every word of dictionary 0
    {?01}           -> dictionary 0 followed by dictionary 1
    {@ext}          -> the keyword list registered as "ext"
"""

from __future__ import annotations

import string
from collections.abc import Sequence
from math import prod
from pathlib import Path
from typing import Mapping, Optional

from pathspray.core.config import ConfigurationError
from pathspray.core.logger import get_logger

logger = get_logger(__name__)


CHARSETS: dict[str, str] = {
    "l": string.ascii_lowercase,
    "u": string.ascii_uppercase,
    "d": string.digits,
    "s": "!#$%&'()*+,-.:;=@[]^_`~",
    "w": string.ascii_lowercase + string.ascii_uppercase + string.digits,
}


class MaskError(ConfigurationError):
    """Raised when a mask cannot be parsed."""
    pass


class Mask(Sequence):
    """
    Cartesian product of word segments.

    Position `i` is decoded as a mixed-radix number with the last segment
    varying fastest, so the same index always yields the same word.
    """

    def __init__(self, segments: Sequence[Sequence[str]], source: str = ""):
        self.segments: tuple[tuple[str, ...], ...] = tuple(tuple(s) for s in segments)
        self.source = source
        self._length = prod(len(s) for s in self.segments)

    def __len__(self) -> int:
        return self._length

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(self._length))]
        if index < 0:
            index += self._length
        if not 0 <= index < self._length:
            raise IndexError("mask index out of range")

        parts = []
        for segment in reversed(self.segments):
            index, pos = divmod(index, len(segment))
            parts.append(segment[pos])
        return "".join(reversed(parts))

    def __repr__(self) -> str:
        return f"Mask({self.source!r}, len={self._length})"


def _group_alternatives(
    body: str,
    dictionaries: Sequence[Sequence[str]],
    keywords: Mapping[str, Sequence[str]],
) -> list[tuple[str, ...]]:
    """Resolve the body of one `{...}` group into its segments."""
    if not body:
        raise MaskError("Empty mask group {}")

    if body[0] == "@":
        name = body[1:]
        if name not in keywords:
            raise MaskError(f"Unknown mask keyword: {name}")
        return [tuple(keywords[name])]

    if body[0] != "?":
        raise MaskError(f"Mask group must start with ? or @: {{{body}}}")

    codes, _, repeat_text = body[1:].partition("#")
    if not codes:
        raise MaskError(f"Mask group has no charset: {{{body}}}")

    repeat = 1
    if repeat_text:
        if not repeat_text.isdigit() or int(repeat_text) < 1:
            raise MaskError(f"Invalid mask repeat count: {repeat_text}")
        repeat = int(repeat_text)

    alternatives: list[str] = []
    for code in codes:
        if code.isdigit():
            idx = int(code)
            if idx >= len(dictionaries):
                raise MaskError(f"Mask references dictionary {idx}, only {len(dictionaries)} loaded")
            alternatives.extend(dictionaries[idx])
        elif code in CHARSETS:
            alternatives.extend(CHARSETS[code])
        else:
            raise MaskError(f"Unknown mask charset code: {code}")

    segment = tuple(dict.fromkeys(alternatives))
    return [segment] * repeat


def parse_mask(
    word: str,
    dictionaries: Sequence[Sequence[str]] = (),
    keywords: Optional[Mapping[str, Sequence[str]]] = None,
) -> Mask:
    """
    Parse a mask into a lazily indexed word sequence.

    Args:
        word: Mask source, e.g. "test{?ld#4}"
        dictionaries: Loaded dictionaries, addressed by position
        keywords: Named word lists for `{@name}` groups

    Returns:
        Mask over every generated word

    Raises:
        MaskError: On unbalanced braces or unknown references
    """
    keywords = keywords or {}
    segments: list[tuple[str, ...]] = []
    literal = ""
    i = 0

    while i < len(word):
        char = word[i]
        if char == "{":
            end = word.find("}", i + 1)
            if end == -1:
                raise MaskError(f"Unterminated mask group in {word!r}")
            body = word[i + 1:end]
            if "{" in body:
                raise MaskError(f"Nested mask group in {word!r}")
            if literal:
                segments.append((literal,))
                literal = ""
            segments.extend(_group_alternatives(body, dictionaries, keywords))
            i = end + 1
        elif char == "}":
            raise MaskError(f"Unbalanced '}}' in {word!r}")
        else:
            literal += char
            i += 1

    if literal:
        segments.append((literal,))

    return Mask(segments, source=word)


def dictionary_mask(dictionaries: Sequence[Sequence[str]]) -> Mask:
    """Word list made of every loaded dictionary, in order."""
    words: list[str] = []
    for words_in_dict in dictionaries:
        words.extend(words_in_dict)
    source = "{?" + "".join(str(i) for i in range(len(dictionaries))) + "}"
    return Mask([tuple(words)], source=source)


def load_dictionary(path: Path) -> list[str]:
    """
    Load a dictionary file, one word per line.

    Lines are stripped so CRLF files behave like LF files; blank lines are
    skipped.

    Raises:
        ConfigurationError: If the file cannot be read
    """
    try:
        content = Path(path).read_text(encoding="utf-8", errors="ignore")
    except OSError as e:
        raise ConfigurationError(f"Cannot read dictionary {path}: {e}") from e

    words = [line.strip() for line in content.splitlines() if line.strip()]
    logger.info(f"Loaded {len(words)} words from {path}", dictionary=str(path), count=len(words))
    return words
