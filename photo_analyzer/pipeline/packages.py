"""
Task packages - pre-configured task lists for common analyses.

A package is a list of task descriptors. get_task_list() builds fresh task
instances from it and normalises them into execution order, inserting the
embedding task that follows the tag tasks and the one that follows the
chunk tasks, so a task's position in the list is also its execution order.
"""
from typing import Any, Dict, List

from photo_analyzer.core.exceptions import PackageNotFoundError
from photo_analyzer.pipeline.stages import kind_rank
from photo_analyzer.pipeline.tasks import (
    AnalyzerTask,
    ChunksEmbeddingTask,
    TagsEmbeddingTask,
    TaskKind,
    parse_tasks,
)

# Kinds that may appear at most once in a task list
_SINGLE_KINDS = {
    TaskKind.EMBEDDINGS_TAGS,
    TaskKind.EMBEDDINGS_CHUNKS,
    TaskKind.VISUAL_EMBEDDING,
    TaskKind.VISUAL_DETECTION,
    TaskKind.VISUAL_COLOR_EMBEDDING,
}


# ===== BASIC PACKAGE =====
# Context + story descriptions, tags, chunks and image embedding

BASIC_PACKAGE = [
    {
        "kind": "vision",
        "name": "vision_context_story",
        "model": "gpt",
        "prompts": ["context_story"],
        "prompts_names": ["context_story"],
        "images_per_batch": 4,
        "resolution": "high",
    },
    {
        "kind": "tags",
        "name": "tags_context_story",
        "prompt": "tags_default",
        "description_source_fields": ["context", "story"],
    },
    {
        "kind": "chunks",
        "name": "chunks_context_story",
        "description_source_fields": ["context", "story"],
        "chunk_methods": {
            "context": {"type": "split_by_size", "max_length": 300},
            "story": {"type": "split_by_size", "max_length": 300},
        },
    },
    {"kind": "visual_embedding", "name": "visual_embedding"},
]


# ===== TOPOLOGY PACKAGE =====
# Adds per-area descriptions (guide lines), object detection and colors

TOPOLOGY_PACKAGE = [
    {
        "kind": "vision",
        "name": "vision_context",
        "model": "gpt",
        "prompts": ["context"],
        "prompts_names": ["context"],
        "images_per_batch": 4,
    },
    {
        "kind": "vision",
        "name": "vision_topology",
        "model": "molmo",
        "prompts": ["topology"],
        "prompts_names": ["topology"],
        "images_per_batch": 4,
        "sequential": True,
        "use_guide_lines": True,
        "prompt_dependent_field": "context",
    },
    {
        "kind": "tags",
        "name": "tags_context",
        "prompt": "tags_default",
        "description_source_fields": ["context"],
    },
    {
        "kind": "tags",
        "name": "tags_topology",
        "prompt": "tags_objects",
        "description_source_fields": ["topology"],
    },
    {
        "kind": "chunks",
        "name": "chunks_topology",
        "description_source_fields": ["context", "topology"],
        "chunk_methods": {"topology": {"type": "split_by_pipes"}},
    },
    {"kind": "visual_embedding", "name": "visual_embedding"},
    {"kind": "visual_detection", "name": "visual_detection"},
    {"kind": "visual_color_embedding", "name": "visual_color_embedding"},
]


# ===== CHUNKS ONLY PACKAGE =====
# Re-chunks existing descriptions without any model call but embeddings

CHUNKS_ONLY_PACKAGE = [
    {
        "kind": "chunks",
        "name": "chunks_context_story",
        "description_source_fields": ["context", "story"],
    },
]


_PACKAGES: Dict[str, List[Dict[str, Any]]] = {
    "basic": BASIC_PACKAGE,
    "topology": TOPOLOGY_PACKAGE,
    "chunks_only": CHUNKS_ONLY_PACKAGE,
}


def normalize_tasks(tasks: List[AnalyzerTask]) -> List[AnalyzerTask]:
    """
    Order tasks by stage (stable) and insert the implicit embedding tasks.

    Raises:
        ValueError: duplicated task names or a repeated single-instance kind
    """
    names = [task.name for task in tasks]
    duplicated = sorted({name for name in names if names.count(name) > 1})
    if duplicated:
        raise ValueError(f"Duplicated task names: {duplicated}")

    ordered = sorted(tasks, key=lambda task: kind_rank(task.kind))
    kinds = [TaskKind(task.kind) for task in ordered]
    for kind in _SINGLE_KINDS:
        if kinds.count(kind) > 1:
            raise ValueError(f"At most one {kind.value} task per package")

    if TaskKind.TAGS in kinds and TaskKind.EMBEDDINGS_TAGS not in kinds:
        ordered.append(TagsEmbeddingTask())
    if TaskKind.CHUNKS in kinds and TaskKind.EMBEDDINGS_CHUNKS not in kinds:
        ordered.append(ChunksEmbeddingTask())
    ordered.sort(key=lambda task: kind_rank(task.kind))

    if len({task.name for task in ordered}) != len(ordered):
        raise ValueError("Implicit embedding task name collides with a package task")
    return ordered


def get_task_list(package_id: str) -> List[AnalyzerTask]:
    """
    Get fresh, normalised task instances of a package.

    Args:
        package_id: Package identifier (e.g., "basic", "topology")

    Returns:
        Tasks in execution order

    Raises:
        PackageNotFoundError: If the package doesn't exist
    """
    if package_id not in _PACKAGES:
        raise PackageNotFoundError(
            f"Package '{package_id}' not found. Available: {list(_PACKAGES.keys())}"
        )
    return normalize_tasks(parse_tasks(_PACKAGES[package_id]))


def list_packages() -> Dict[str, List[str]]:
    """Package ids with the names of their declared tasks."""
    return {
        package_id: [descriptor["name"] for descriptor in descriptors]
        for package_id, descriptors in _PACKAGES.items()
    }


def register_package(package_id: str, descriptors: List[Dict[str, Any]]) -> None:
    """
    Register a custom package.

    The descriptors are validated immediately so a bad package fails here
    rather than at the start of a run.
    """
    if package_id in _PACKAGES:
        raise ValueError(f"Package '{package_id}' already exists")
    normalize_tasks(parse_tasks(descriptors))
    _PACKAGES[package_id] = descriptors
