"""Deterministic, indexable candidate path generation."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Iterator, NamedTuple, Optional, Union

from pathspray.core.config import ConfigurationError, WordConfig
from pathspray.core.logger import get_logger
from pathspray.modules.words.mask import Mask, dictionary_mask, load_dictionary, parse_mask
from pathspray.modules.words.rules import Rule, load_rules

logger = get_logger(__name__)


class Candidate(NamedTuple):
    """A generated request path and its position in the sequence."""
    index: int
    path: str


def parse_extension(word: str) -> str:
    """Extension of the last path segment: everything after its first dot."""
    name = word.rsplit("/", 1)[-1]
    _, dot, ext = name.partition(".")
    return ext if dot else ""


# Decorators. Each is a pure str -> str transform; "" means drop.

@dataclass(frozen=True)
class Case:
    upper: bool

    def __call__(self, word: str) -> str:
        return word.upper() if self.upper else word.lower()


@dataclass(frozen=True)
class Prefix:
    value: str

    def __call__(self, word: str) -> str:
        return self.value + word


@dataclass(frozen=True)
class Suffix:
    value: str

    def __call__(self, word: str) -> str:
        return word + self.value


@dataclass(frozen=True)
class AddExt:
    ext: str

    def __call__(self, word: str) -> str:
        return f"{word}.{self.ext}"


@dataclass(frozen=True)
class RemoveExt:
    extensions: frozenset[str]

    def __call__(self, word: str) -> str:
        ext = parse_extension(word)
        if ext and ext in self.extensions:
            return word[: -(len(ext) + 1)]
        return word


@dataclass(frozen=True)
class ExcludeExt:
    extensions: frozenset[str]

    def __call__(self, word: str) -> str:
        if parse_extension(word) in self.extensions:
            return ""
        return word


@dataclass(frozen=True)
class Replace:
    pairs: tuple[tuple[str, str], ...]

    def __call__(self, word: str) -> str:
        for old, new in self.pairs:
            word = word.replace(old, new)
        return word


Decorator = Union[Case, Prefix, Suffix, AddExt, RemoveExt, ExcludeExt, Replace]


def apply_decorators(word: str, chain: Sequence[Decorator]) -> Optional[str]:
    """Fold a word through the decorator chain, stopping at the first drop."""
    for decorator in chain:
        word = decorator(word)
        if not word:
            return None
    return word


class CandidateGenerator(Sequence):
    """
    Request paths generated from words x rules, then decorated.

    Index layout: the word position is the major digit and the rule the
    minor one, so `len == word_count * max(rule_count, 1)`. Prefixes,
    suffixes and extensions are extra word dimensions, which is what makes
    them count towards `word_count`. Decoration order is fixed:

        rule -> case -> prefix/suffix/extension -> remove/exclude -> replace

    A dropped candidate keeps its index; lookups return None for it and
    iteration skips it.
    """

    def __init__(
        self,
        words: Sequence[str],
        rules: Sequence[Rule] = (),
        *,
        uppercase: bool = False,
        lowercase: bool = False,
        prefixes: Sequence[str] = (),
        suffixes: Sequence[str] = (),
        extensions: Sequence[str] = (),
        remove_extensions: Sequence[str] = (),
        exclude_extensions: Sequence[str] = (),
        replaces: Optional[dict[str, str]] = None,
        dictionaries: Sequence[str] = (),
    ):
        if uppercase and lowercase:
            raise ConfigurationError("Cannot set uppercase and lowercase at the same time")

        self.words = words
        self.rules = tuple(rules)
        self.dictionaries = [str(d) for d in dictionaries]
        self.word = words.source if isinstance(words, Mask) else ""

        self._case: Optional[Case] = None
        if uppercase or lowercase:
            self._case = Case(upper=uppercase)
        self._prefixes = tuple(Prefix(p) for p in prefixes) or (None,)
        self._suffixes = tuple(Suffix(s) for s in suffixes) or (None,)
        self._extensions = tuple(AddExt(e.lstrip(".")) for e in extensions) or (None,)

        self._filters: list[Decorator] = []
        if remove_extensions:
            self._filters.append(RemoveExt(frozenset(e.lstrip(".") for e in remove_extensions)))
        if exclude_extensions:
            self._filters.append(ExcludeExt(frozenset(e.lstrip(".") for e in exclude_extensions)))
        if replaces:
            self._filters.append(Replace(tuple(replaces.items())))

        self.word_count = (
            len(words) * len(self._prefixes) * len(self._suffixes) * len(self._extensions)
        )
        self.rule_count = len(self.rules)
        self._length = self.word_count * max(self.rule_count, 1)

    @classmethod
    def from_config(cls, config: WordConfig) -> "CandidateGenerator":
        """
        Build the generator from word configuration.

        Raises:
            ConfigurationError: Unreadable dictionary, malformed mask or
                rule, or no word source at all
        """
        dictionaries = [load_dictionary(path) for path in config.dictionaries]

        if config.word:
            words: Mask = parse_mask(config.word, dictionaries)
        elif dictionaries:
            words = dictionary_mask(dictionaries)
        else:
            raise ConfigurationError("No word mask or dictionary given")

        rules = load_rules(config.rules, config.rule_filter)

        generator = cls(
            words,
            rules,
            uppercase=config.uppercase,
            lowercase=config.lowercase,
            prefixes=config.prefixes,
            suffixes=config.suffixes,
            extensions=config.extensions,
            remove_extensions=config.remove_extensions,
            exclude_extensions=config.exclude_extensions,
            replaces=config.replaces,
            dictionaries=[str(p) for p in config.dictionaries],
        )
        logger.info(
            f"Parsed {generator.word_count} words by {words.source}",
            words=generator.word_count,
            rules=generator.rule_count,
            total=len(generator),
        )
        return generator

    def __len__(self) -> int:
        return self._length

    def total(self, offset: int = 0, limit: int = 0) -> int:
        """Exclusive end of the candidate range, capped by `limit` when given."""
        if limit and offset + limit < self._length:
            return offset + limit
        return self._length

    def chain_for(self, index: int) -> list[Decorator]:
        """Decorator chain applied to the candidate at `index`."""
        word_pos = index // max(self.rule_count, 1)
        word_pos, e = divmod(word_pos, len(self._extensions))
        word_pos, s = divmod(word_pos, len(self._suffixes))
        _, p = divmod(word_pos, len(self._prefixes))

        chain: list[Decorator] = []
        if self._case:
            chain.append(self._case)
        chain.extend(d for d in (self._prefixes[p], self._suffixes[s], self._extensions[e]) if d)
        chain.extend(self._filters)
        return chain

    def path(self, index: int) -> Optional[str]:
        """Candidate path at `index`, or None if a rule or decorator dropped it."""
        if not 0 <= index < self._length:
            raise IndexError("candidate index out of range")

        rule_count = max(self.rule_count, 1)
        word_pos, rule_idx = divmod(index, rule_count)
        affixes = len(self._prefixes) * len(self._suffixes) * len(self._extensions)
        word: Optional[str] = self.words[word_pos // affixes]

        if self.rules:
            word = self.rules[rule_idx](word)
            if not word:
                return None

        return apply_decorators(word, self.chain_for(index))

    def __getitem__(self, index):
        if isinstance(index, slice):
            start, stop, step = index.indices(self._length)
            if step != 1:
                raise ValueError("candidate slices do not support a step")
            return list(self.iter_range(start, stop))
        if index < 0:
            index += self._length
        return self.path(index)

    def iter_range(self, start: int, stop: int) -> Iterator[Candidate]:
        """Yield the non-dropped candidates in `[start, stop)`."""
        for index in range(max(start, 0), min(stop, self._length)):
            path = self.path(index)
            if path is not None:
                yield Candidate(index, path)
