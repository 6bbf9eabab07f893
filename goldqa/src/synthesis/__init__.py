"""Field mapping and test synthesis via the reasoning service."""

from .generator import TestSynthesizer
from .mapper import FieldMapper
from .reasoning import ReasoningClient, extract_json

__all__ = ["FieldMapper", "ReasoningClient", "TestSynthesizer", "extract_json"]
