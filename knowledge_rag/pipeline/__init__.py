"""Progress observation for indexing runs."""

from knowledge_rag.pipeline.progress_tracker import ProgressTracker

__all__ = ["ProgressTracker"]
