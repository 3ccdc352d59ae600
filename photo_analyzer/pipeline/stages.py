"""
Pipeline stages and their fixed execution order.
"""
from enum import Enum
from typing import Dict, List, Optional

from photo_analyzer.pipeline.tasks.base import TaskKind


class Stage(str, Enum):
    """Values of a process's `current_stage`, in pipeline order."""
    INIT = "init"
    VISION_TASKS = "vision_tasks"
    TAGS_TASKS = "tags_tasks"
    EMBEDDINGS_TAGS = "embeddings_tags"
    CHUNKS_TASKS = "chunks_tasks"
    EMBEDDINGS_CHUNKS = "embeddings_chunks"
    FINISHED = "finished"


STAGE_ORDER: List[Stage] = list(Stage)

# Execution order of task kinds; visual tasks run last without a stage of their own
KIND_ORDER: List[TaskKind] = [
    TaskKind.VISION,
    TaskKind.TAGS,
    TaskKind.EMBEDDINGS_TAGS,
    TaskKind.CHUNKS,
    TaskKind.EMBEDDINGS_CHUNKS,
    TaskKind.VISUAL_EMBEDDING,
    TaskKind.VISUAL_DETECTION,
    TaskKind.VISUAL_COLOR_EMBEDDING,
]

KIND_STAGE: Dict[TaskKind, Optional[Stage]] = {
    TaskKind.VISION: Stage.VISION_TASKS,
    TaskKind.TAGS: Stage.TAGS_TASKS,
    TaskKind.EMBEDDINGS_TAGS: Stage.EMBEDDINGS_TAGS,
    TaskKind.CHUNKS: Stage.CHUNKS_TASKS,
    TaskKind.EMBEDDINGS_CHUNKS: Stage.EMBEDDINGS_CHUNKS,
    TaskKind.VISUAL_EMBEDDING: None,
    TaskKind.VISUAL_DETECTION: None,
    TaskKind.VISUAL_COLOR_EMBEDDING: None,
}


def stage_rank(stage) -> int:
    return STAGE_ORDER.index(Stage(stage))


def kind_rank(kind) -> int:
    return KIND_ORDER.index(TaskKind(kind))


def stage_for_kind(kind) -> Optional[Stage]:
    return KIND_STAGE[TaskKind(kind)]
