"""Runtime bootstrap utilities for the evaluator."""

from __future__ import annotations

from .bootstrap import bootstrap_evaluator, build_document_store
from .context import EvaluatorContext

__all__ = ["EvaluatorContext", "bootstrap_evaluator", "build_document_store"]
