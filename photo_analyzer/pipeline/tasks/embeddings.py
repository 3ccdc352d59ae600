"""
Text embedding tasks for tags and description chunks.

Both tasks embed entities rather than photos, so their accumulator is keyed
by entity id (tag id / chunk id) and each pending entity remembers the
photos it belongs to for failure bookkeeping.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Literal

from photo_analyzer.core.config import settings
from photo_analyzer.db.repository import AnalyzerRepository, ChunkRecord, PendingTag
from photo_analyzer.pipeline.tasks.base import AnalyzerTask, BatchPolicy


@dataclass
class EmbeddingInput:
    """One text to embed and the entities/photos it is written back to."""
    text: str
    entity_ids: List[int] = field(default_factory=list)
    photo_ids: List[str] = field(default_factory=list)


def _embedding_policy() -> BatchPolicy:
    return BatchPolicy(
        size=settings.embeddings_batch_size,
        sequential=True,
        delay_sec=settings.embeddings_delay_sec,
    )


class TagsEmbeddingTask(AnalyzerTask):
    """Embed tag names not embedded yet. Inserted after the last tag task."""
    kind: Literal["embeddings_tags"] = "embeddings_tags"
    name: str = "embeddings_tags"

    def batch_policy(self) -> BatchPolicy:
        return _embedding_policy()

    def build_inputs(self, pending: List[PendingTag]) -> List[EmbeddingInput]:
        """
        Deduplicate tags by lowercase name.

        The first spelling seen is embedded and the vector is written to
        every tag sharing the lowercase name.
        """
        by_name: Dict[str, EmbeddingInput] = {}
        for tag in pending:
            key = tag.name.lower()
            entry = by_name.setdefault(key, EmbeddingInput(text=tag.name))
            entry.entity_ids.append(tag.id)
            for photo_id in tag.photo_ids:
                if photo_id not in entry.photo_ids:
                    entry.photo_ids.append(photo_id)
        return list(by_name.values())

    def commit(self, repository: AnalyzerRepository, item_ids=None) -> int:
        updates = self.pending_commit(item_ids)
        repository.set_tag_embeddings({int(key): entry["embedding"] for key, entry in updates.items()})
        return len(updates)


class ChunksEmbeddingTask(AnalyzerTask):
    """Embed description chunks not embedded yet. Inserted after the last chunk task."""
    kind: Literal["embeddings_chunks"] = "embeddings_chunks"
    name: str = "embeddings_chunks"

    def batch_policy(self) -> BatchPolicy:
        return _embedding_policy()

    def build_inputs(self, pending: List[ChunkRecord]) -> List[EmbeddingInput]:
        return [EmbeddingInput(text=c.chunk, entity_ids=[c.id], photo_ids=[c.photo_id]) for c in pending]

    def commit(self, repository: AnalyzerRepository, item_ids=None) -> int:
        updates = self.pending_commit(item_ids)
        repository.set_chunk_embeddings({int(key): entry["embedding"] for key, entry in updates.items()})
        return len(updates)
