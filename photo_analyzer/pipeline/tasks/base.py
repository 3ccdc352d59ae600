"""
Base interface for analysis tasks.

A task is a unit of work bound to one pipeline stage. Every task kind is a
pydantic model carrying a `kind` discriminant plus its parameters, so a task
list round-trips through the process record as plain JSON. At runtime each
task also owns a `data` accumulator (item id -> partial result) that the
runner fills batch by batch and the task writes to persistence on `commit`.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, PrivateAttr

from photo_analyzer.db.repository import AnalyzerRepository


class TaskKind(str, Enum):
    """Discriminant of every task kind."""
    VISION = "vision"
    TAGS = "tags"
    EMBEDDINGS_TAGS = "embeddings_tags"
    CHUNKS = "chunks"
    EMBEDDINGS_CHUNKS = "embeddings_chunks"
    VISUAL_EMBEDDING = "visual_embedding"
    VISUAL_DETECTION = "visual_detection"
    VISUAL_COLOR_EMBEDDING = "visual_color_embedding"


# Kinds whose pending items are PhotoImages rather than PhotoRecords
VISION_CLASS_KINDS = {
    TaskKind.VISION,
    TaskKind.VISUAL_EMBEDDING,
    TaskKind.VISUAL_DETECTION,
    TaskKind.VISUAL_COLOR_EMBEDDING,
}


@dataclass(frozen=True)
class BatchPolicy:
    """
    How the runner slices and paces a task's pending items.

    Attributes:
        size: Items per batch
        sequential: Await each batch before starting the next
        stagger_sec: Extra delay per batch index (batch k waits k * stagger_sec)
        delay_sec: Fixed delay before every batch
        delay_first: Apply delay_sec before the first batch too
    """
    size: int
    sequential: bool = False
    stagger_sec: float = 0.0
    delay_sec: float = 0.0
    delay_first: bool = True

    def delay_for(self, index: int) -> float:
        fixed = self.delay_sec if (index or self.delay_first) else 0.0
        return index * self.stagger_sec + fixed


class AnalyzerTask(BaseModel):
    """
    Common fields and capability interface of all tasks.

    Subclasses must implement:
    - batch_policy(): batch size and pacing
    - commit(): write the accumulator through the repository

    Optional overrides:
    - merge_result(): how a result lands in the accumulator
    - commit_per_batch: commit after each successful batch instead of once
    """
    model_config = ConfigDict(extra="forbid")

    name: str
    kind: str

    commit_per_batch: ClassVar[bool] = False

    _data: Dict[str, Dict[str, Any]] = PrivateAttr(default_factory=dict)

    @property
    def data(self) -> Dict[str, Dict[str, Any]]:
        return self._data

    @property
    def uses_images(self) -> bool:
        return TaskKind(self.kind) in VISION_CLASS_KINDS

    def reset(self) -> None:
        """Clear the accumulator. Called once at the start of a run."""
        self._data = {}

    def batch_policy(self) -> BatchPolicy:
        raise NotImplementedError

    def merge_result(self, item_id: str, result: Dict[str, Any]) -> None:
        """Shallow-merge a result into the accumulator entry of `item_id`."""
        self._data.setdefault(str(item_id), {}).update(result)

    def pending_commit(self, item_ids: Optional[Iterable[str]] = None) -> Dict[str, Dict[str, Any]]:
        """Accumulator entries to write, optionally restricted to `item_ids`."""
        if item_ids is None:
            return dict(self._data)
        wanted = {str(i) for i in item_ids}
        return {key: value for key, value in self._data.items() if key in wanted}

    def commit(self, repository: AnalyzerRepository, item_ids: Optional[Iterable[str]] = None) -> int:
        """
        Write the accumulator to persistence.

        Commits are idempotent: writing the same accumulator twice leaves
        the same persisted state.

        Returns:
            Number of accumulator entries written
        """
        raise NotImplementedError

    def to_descriptor(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


def chunked(items: List[Any], size: int) -> List[List[Any]]:
    """Contiguous slices of `items` of at most `size` elements."""
    size = max(1, int(size))
    return [items[i:i + size] for i in range(0, len(items), size)]
