"""Hashcat-style mutation rules.

Each non-blank, non-comment line of a rule file is one rule made of
single-character functions. A rule returns the mutated word, or None when
one of its rejection functions drops the word.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from pathspray.core.config import ConfigurationError
from pathspray.core.logger import get_logger

logger = get_logger(__name__)

Op = Callable[[str], Optional[str]]


class RuleError(ConfigurationError):
    """Raised when a rule line cannot be compiled."""
    pass


def _toggle(c: str) -> str:
    return c.lower() if c.isupper() else c.upper()


def _toggle_at(n: int) -> Op:
    def op(w: str) -> str:
        if n >= len(w):
            return w
        return w[:n] + _toggle(w[n]) + w[n + 1:]
    return op


def _delete_at(n: int) -> Op:
    return lambda w: w[:n] + w[n + 1:] if n < len(w) else w


# Functions without arguments
SIMPLE_OPS: dict[str, Op] = {
    ":": lambda w: w,
    "l": str.lower,
    "u": str.upper,
    "c": lambda w: w[:1].upper() + w[1:].lower(),
    "C": lambda w: w[:1].lower() + w[1:].upper(),
    "t": lambda w: "".join(_toggle(c) for c in w),
    "r": lambda w: w[::-1],
    "d": lambda w: w + w,
    "f": lambda w: w + w[::-1],
    "{": lambda w: w[1:] + w[:1],
    "}": lambda w: w[-1:] + w[:-1],
    "[": lambda w: w[1:],
    "]": lambda w: w[:-1],
}

# Functions taking one character
CHAR_OPS: dict[str, Callable[[str], Op]] = {
    "$": lambda x: (lambda w: w + x),
    "^": lambda x: (lambda w: x + w),
    "@": lambda x: (lambda w: w.replace(x, "")),
    "!": lambda x: (lambda w: None if x in w else w),
    "/": lambda x: (lambda w: w if x in w else None),
}

# Functions taking one position (0-9, A-Z)
POSITION_OPS: dict[str, Callable[[int], Op]] = {
    "T": _toggle_at,
    "D": _delete_at,
    "'": lambda n: (lambda w: w[:n]),
    "<": lambda n: (lambda w: w if len(w) < n else None),
    ">": lambda n: (lambda w: w if len(w) > n else None),
    "_": lambda n: (lambda w: w if len(w) == n else None),
}


@dataclass(frozen=True)
class Rule:
    """A compiled rule line."""
    source: str
    ops: tuple[Op, ...]

    def __call__(self, word: str) -> Optional[str]:
        for op in self.ops:
            word = op(word)
            if word is None:
                return None
        return word


def _parse_position(char: str, line: str) -> int:
    try:
        return int(char, 36)
    except ValueError:
        raise RuleError(f"Invalid rule position {char!r} in {line!r}")


def compile_line(line: str) -> Rule:
    """
    Compile a single rule line.

    Raises:
        RuleError: On unknown functions or missing arguments
    """
    ops: list[Op] = []
    i = 0
    while i < len(line):
        fn = line[i]
        if fn in (" ", "\t"):
            i += 1
            continue

        if fn in SIMPLE_OPS:
            ops.append(SIMPLE_OPS[fn])
            i += 1
        elif fn in CHAR_OPS:
            if i + 1 >= len(line):
                raise RuleError(f"Rule function {fn!r} needs an argument in {line!r}")
            ops.append(CHAR_OPS[fn](line[i + 1]))
            i += 2
        elif fn in POSITION_OPS:
            if i + 1 >= len(line):
                raise RuleError(f"Rule function {fn!r} needs a position in {line!r}")
            ops.append(POSITION_OPS[fn](_parse_position(line[i + 1], line)))
            i += 2
        elif fn == "s":
            if i + 2 >= len(line):
                raise RuleError(f"Rule function 's' needs two arguments in {line!r}")
            old, new = line[i + 1], line[i + 2]
            ops.append(lambda w, old=old, new=new: w.replace(old, new))
            i += 3
        else:
            raise RuleError(f"Unknown rule function {fn!r} in {line!r}")

    return Rule(source=line, ops=tuple(ops))


def compile_rules(text: str, filter_rule: str = "") -> list[Rule]:
    """
    Compile rule text into an ordered rule list.

    Args:
        text: Rule lines; blank lines and `#` comments are ignored
        filter_rule: Functions appended to every rule (usually rejections
            such as ">8")

    Returns:
        Compiled rules in file order
    """
    filter_ops = compile_line(filter_rule).ops if filter_rule else ()
    rules = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        rule = compile_line(line)
        if filter_ops:
            rule = Rule(source=f"{line} {filter_rule}", ops=rule.ops + filter_ops)
        rules.append(rule)
    return rules


def load_rules(paths: Sequence[Path], filter_rule: str = "") -> list[Rule]:
    """
    Read and compile rule files.

    A filter without rule files compiles to the identity rule plus the
    filter, so the filter still applies to every word.

    Raises:
        ConfigurationError: If a rule file cannot be read
        RuleError: If a rule cannot be compiled
    """
    if not paths:
        return compile_rules(":", filter_rule) if filter_rule else []

    chunks = []
    for path in paths:
        try:
            chunks.append(Path(path).read_text(encoding="utf-8"))
        except OSError as e:
            raise ConfigurationError(f"Cannot read rule file {path}: {e}") from e

    rules = compile_rules("\n".join(chunks), filter_rule)
    logger.info(f"Compiled {len(rules)} rules", files=[str(p) for p in paths])
    return rules
