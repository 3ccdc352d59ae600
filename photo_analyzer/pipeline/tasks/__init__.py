"""
Analysis tasks.

TaskDescriptor is the discriminated union of every task kind; parse_tasks
and dump_tasks convert task lists to and from their JSON descriptors as
stored on the process record.
"""
from typing import Annotated, Any, Dict, List, Union

from pydantic import Field, TypeAdapter

from photo_analyzer.pipeline.tasks.base import AnalyzerTask, BatchPolicy, TaskKind, VISION_CLASS_KINDS, chunked
from photo_analyzer.pipeline.tasks.chunks import ChunkMethod, ChunkTask
from photo_analyzer.pipeline.tasks.embeddings import ChunksEmbeddingTask, EmbeddingInput, TagsEmbeddingTask
from photo_analyzer.pipeline.tasks.tags import TagTask, parse_tag_list
from photo_analyzer.pipeline.tasks.vision import VISION_HANDLERS, VisionHandler, VisionTask
from photo_analyzer.pipeline.tasks.visual import (
    VisualColorEmbeddingTask,
    VisualDetectionTask,
    VisualEmbeddingTask,
    VisualTask,
)

TaskDescriptor = Annotated[
    Union[
        VisionTask,
        TagTask,
        TagsEmbeddingTask,
        ChunkTask,
        ChunksEmbeddingTask,
        VisualEmbeddingTask,
        VisualDetectionTask,
        VisualColorEmbeddingTask,
    ],
    Field(discriminator="kind"),
]

_task_list_adapter = TypeAdapter(List[TaskDescriptor])


def parse_tasks(descriptors: List[Dict[str, Any]]) -> List[AnalyzerTask]:
    """Build task instances from JSON descriptors. Raises pydantic.ValidationError."""
    return _task_list_adapter.validate_python(descriptors)


def dump_tasks(tasks: List[AnalyzerTask]) -> List[Dict[str, Any]]:
    return [task.to_descriptor() for task in tasks]


__all__ = [
    "AnalyzerTask",
    "BatchPolicy",
    "TaskKind",
    "VISION_CLASS_KINDS",
    "chunked",
    "ChunkMethod",
    "ChunkTask",
    "ChunksEmbeddingTask",
    "EmbeddingInput",
    "TagsEmbeddingTask",
    "TagTask",
    "parse_tag_list",
    "VISION_HANDLERS",
    "VisionHandler",
    "VisionTask",
    "VisualColorEmbeddingTask",
    "VisualDetectionTask",
    "VisualEmbeddingTask",
    "VisualTask",
    "TaskDescriptor",
    "parse_tasks",
    "dump_tasks",
]
