"""SimHash fingerprints for near-duplicate response detection."""

from __future__ import annotations

import hashlib
import re
from collections import Counter

FINGERPRINT_BITS = 64

_TOKEN = re.compile(r"[\w\-]+", re.UNICODE)


def tokenize(text: str) -> Counter:
    """Lower-cased word tokens with their counts."""
    return Counter(_TOKEN.findall(text.lower()))


def _token_hash(token: str) -> int:
    digest = hashlib.md5(token.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def simhash(text: str) -> int:
    """
    Calculate the 64-bit SimHash of text content.

    Every token votes on each bit with its weight (occurrence count); the
    fingerprint keeps the bits with a positive total. Empty text hashes to 0.
    """
    tokens = tokenize(text)
    if not tokens:
        return 0

    v = [0] * FINGERPRINT_BITS
    for token, weight in tokens.items():
        h = _token_hash(token)
        for i in range(FINGERPRINT_BITS):
            if (h >> i) & 1:
                v[i] += weight
            else:
                v[i] -= weight

    fingerprint = 0
    for i in range(FINGERPRINT_BITS):
        if v[i] > 0:
            fingerprint |= 1 << i
    return fingerprint


def distance(a: int, b: int) -> int:
    """Hamming distance between two fingerprints."""
    return bin(a ^ b).count("1")
