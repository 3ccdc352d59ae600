"""
Tag extraction task.
"""
import json
from typing import Any, List, Literal, Optional, Tuple

from pydantic import Field, field_validator

from photo_analyzer.core.config import settings
from photo_analyzer.core.exceptions import ModelCallError
from photo_analyzer.db.repository import AnalyzerRepository, PhotoRecord
from photo_analyzer.pipeline.chunking import build_source_text
from photo_analyzer.pipeline.prompts import TAG_PROMPTS
from photo_analyzer.pipeline.tasks.base import AnalyzerTask, BatchPolicy

DEFAULT_GROUP = "misc"
PERSON_GROUP = "person"
NO_PEOPLE_TAG = ("no people", DEFAULT_GROUP)

TagPair = Tuple[str, str]


def parse_tag(raw: str) -> Optional[TagPair]:
    """Parse `"tag | group"`; the group defaults to misc."""
    parts = [part.strip() for part in str(raw).split("|")]
    name = parts[0]
    if not name:
        return None
    group = parts[1] if len(parts) > 1 and parts[1] else DEFAULT_GROUP
    return name, group


def parse_tag_list(raw_tags: List[Any]) -> List[TagPair]:
    """
    Parse a model tag list, appending `no people | misc` when no tag has
    the person group.
    """
    tags = [tag for tag in (parse_tag(raw) for raw in raw_tags) if tag]
    if not any(group == PERSON_GROUP for _, group in tags):
        tags.append(NO_PEOPLE_TAG)
    return tags


def extract_tag_list(result: Any) -> List[Any]:
    """Tag strings of a chat result: `{"tags": [...]}` or a bare list."""
    if isinstance(result, dict):
        result = result.get("tags")
    if not isinstance(result, list):
        raise ModelCallError("tags", f"no tag list in response: {result!r:.200}")
    return result


class TagTask(AnalyzerTask):
    """
    Extract `tag | group` pairs from cleaned photo descriptions.

    Descriptions named in `description_source_fields` are joined, cleaned by
    the model service, then sent one photo per request to the chat model.
    Commit replaces each photo's tag associations.
    """
    kind: Literal["tags"] = "tags"
    prompt: str = "tags_default"
    description_source_fields: List[str] = Field(min_length=1)
    model: str = Field(default_factory=lambda: settings.openai_model)

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v: str) -> str:
        if v not in TAG_PROMPTS:
            raise ValueError(f"Unknown tag prompt: {v}")
        return v

    @property
    def system_prompt(self) -> str:
        return TAG_PROMPTS[self.prompt]

    def batch_policy(self) -> BatchPolicy:
        # one photo per request, every request dispatched at once
        return BatchPolicy(size=1, stagger_sec=settings.tags_stagger_sec)

    def cleaning_policy(self) -> BatchPolicy:
        return BatchPolicy(
            size=settings.cleaning_batch_size,
            sequential=True,
            delay_sec=settings.cleaning_delay_sec,
            delay_first=False,
        )

    def source_text(self, photo: PhotoRecord) -> str:
        return build_source_text(photo.descriptions, self.description_source_fields)

    def user_content(self, cleaned: str) -> str:
        return json.dumps({"description": cleaned}, ensure_ascii=False)

    def commit(self, repository: AnalyzerRepository, item_ids=None) -> int:
        updates = self.pending_commit(item_ids)
        repository.replace_photo_tags({
            photo_id: [tuple(pair) for pair in entry.get("tags", [])]
            for photo_id, entry in updates.items()
        })
        return len(updates)
