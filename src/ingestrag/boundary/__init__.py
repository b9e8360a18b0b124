"""Sub-range (boundary) classifiers for timed transcripts."""

from ingestrag.boundary.keyword import KeywordBoundaryClassifier
from ingestrag.boundary.openai import OpenAIBoundaryClassifier

__all__ = ["KeywordBoundaryClassifier", "OpenAIBoundaryClassifier"]
