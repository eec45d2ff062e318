"""Pipeline stages run by the queue dispatcher.

ExtractionStage:
    submitted/extracting -> analyzing, via the reader service.

AnalysisStage:
    analyzing -> ready, via the LLM (text pass + best-effort images).

Stages raise on failure; the dispatcher owns retry bookkeeping and the
final move to ``failed``.
"""

from stages.base import ArticleNotFoundError, ArticleStateError, StageError
from stages.extraction import ExtractionStage
from stages.analysis import AnalysisStage

__all__ = [
    "ExtractionStage",
    "AnalysisStage",
    "StageError",
    "ArticleNotFoundError",
    "ArticleStateError",
]
