"""
Description chunking task.
"""
import json
from typing import Dict, List, Literal

from pydantic import BaseModel, Field

from photo_analyzer.core.config import settings
from photo_analyzer.core.exceptions import DataIntegrityError
from photo_analyzer.db.repository import AnalyzerRepository, PhotoRecord
from photo_analyzer.pipeline.chunking import split_by_pipes, split_into_chunks
from photo_analyzer.pipeline.tasks.base import AnalyzerTask, BatchPolicy


class ChunkMethod(BaseModel):
    """How one description category is split."""
    type: Literal["split_by_size", "split_by_pipes"] = "split_by_size"
    max_length: int = Field(default_factory=lambda: settings.default_chunk_max_length, gt=0)


class ChunkTask(AnalyzerTask):
    """
    Split description categories into chunks for semantic search.

    No model call is involved. Commit deletes the previous chunks of each
    (photo, category) before writing the new ordered set.
    """
    kind: Literal["chunks"] = "chunks"
    description_source_fields: List[str] = Field(min_length=1)
    chunk_methods: Dict[str, ChunkMethod] = Field(default_factory=dict)

    def batch_policy(self) -> BatchPolicy:
        return BatchPolicy(size=1, sequential=True)

    def method_for(self, category: str) -> ChunkMethod:
        return self.chunk_methods.get(category) or ChunkMethod()

    def split(self, category: str, description) -> List[str]:
        text = description if isinstance(description, str) else json.dumps(description, ensure_ascii=False)
        method = self.method_for(category)
        if method.type == "split_by_pipes":
            return split_by_pipes(text)
        return split_into_chunks(text, method.max_length)

    def chunk_photo(self, photo: PhotoRecord) -> Dict[str, List[str]]:
        """
        Chunks per source category of one photo.

        Raises:
            DataIntegrityError: The photo has no descriptions at all
        """
        if not isinstance(photo.descriptions, dict) or not photo.descriptions:
            raise DataIntegrityError(f"No descriptions found for photo {photo.id}")
        chunks = {}
        for category in self.description_source_fields:
            description = photo.descriptions.get(category)
            if not description:
                continue
            chunks[category] = self.split(category, description)
        return chunks

    def commit(self, repository: AnalyzerRepository, item_ids=None) -> int:
        updates = self.pending_commit(item_ids)
        for photo_id, by_category in updates.items():
            for category, chunks in by_category.items():
                repository.replace_chunks(photo_id, category, chunks)
        return len(updates)
