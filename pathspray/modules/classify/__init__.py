"""Response classification and soft-404 suppression."""

from pathspray.modules.classify.classifier import ResponseClassifier
from pathspray.modules.classify.dedup import Deduplicator
from pathspray.modules.classify.expression import Expression, ExpressionError, compile_expression
from pathspray.modules.classify.simhash import distance, simhash

__all__ = [
    "ResponseClassifier",
    "Deduplicator",
    "Expression",
    "ExpressionError",
    "compile_expression",
    "distance",
    "simhash",
]
