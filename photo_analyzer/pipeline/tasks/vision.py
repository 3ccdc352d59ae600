"""
Vision tasks: image description with a chat model or the molmo service.

The task's `model` is resolved to a handler once, when the task is built,
from the VISION_HANDLERS mapping. A handler receives the batch of
PhotoImages plus the prompts built for it and returns the descriptions per
photo id together with the cost of any chat completions it issued.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Literal, Optional, Tuple, Union

from pydantic import Field, PrivateAttr, field_validator, model_validator

from photo_analyzer.core.config import settings
from photo_analyzer.core.exceptions import ModelCallError
from photo_analyzer.db.repository import AnalyzerRepository, PhotoRecord
from photo_analyzer.pipeline.photo_image import PhotoImage
from photo_analyzer.pipeline.prompts import VISION_PROMPTS, render_prompt
from photo_analyzer.pipeline.tasks.base import AnalyzerTask, BatchPolicy
from photo_analyzer.services.models_service import CallCost, ModelsService

# Shared prompts are plain strings; per-photo prompts are {"id", "prompts": [{"id", "text"}]}
BuiltPrompts = List[Union[str, Dict[str, Any]]]
VisionOutput = Tuple[Dict[str, Dict[str, Any]], List[CallCost]]


@dataclass(frozen=True)
class VisionHandler:
    execute: Callable[[ModelsService, "VisionTask", List[PhotoImage], BuiltPrompts], Awaitable[VisionOutput]]
    per_item_prompts: bool = False


def _image_part(image: PhotoImage, detail: str) -> Dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": image.data_url, "detail": detail}}


def _as_description(result: Any, name: str) -> Dict[str, Any]:
    return result if isinstance(result, dict) else {name: result}


async def execute_gpt(
    models: ModelsService,
    task: "VisionTask",
    images: List[PhotoImage],
    prompts: BuiltPrompts,
) -> VisionOutput:
    """
    Describe a batch with the chat vision model.

    Shared prompt: one completion with every image of the batch, whose JSON
    result is a list aligned with the batch by position. Per-photo prompts:
    one completion per photo and prompt.
    """
    results: Dict[str, Dict[str, Any]] = {}
    costs: List[CallCost] = []

    if prompts and isinstance(prompts[0], dict):
        by_id = {image.id: image for image in images}
        for entry in prompts:
            image = by_id[entry["id"]]
            for prompt in entry["prompts"]:
                chat = await models.chat_completion(
                    prompt["text"], [_image_part(image, task.resolution)],
                    settings.openai_vision_model, response_format=None,
                )
                costs.append(chat.cost)
                results.setdefault(image.id, {}).update(_as_description(chat.result, prompt["id"]))
        return results, costs

    chat = await models.chat_completion(
        prompts[0], [_image_part(image, task.resolution) for image in images],
        settings.openai_vision_model, response_format=None,
    )
    costs.append(chat.cost)
    described = chat.result
    if not isinstance(described, list) or len(described) != len(images):
        raise ModelCallError(
            "vision_gpt",
            f"expected {len(images)} descriptions, got {type(described).__name__} "
            f"of length {len(described) if isinstance(described, (list, dict)) else 0}",
        )
    for image, description in zip(images, described):
        results[image.id] = _as_description(description, task.output_names[0])
    return results, costs


async def execute_molmo(
    models: ModelsService,
    task: "VisionTask",
    images: List[PhotoImage],
    prompts: BuiltPrompts,
) -> VisionOutput:
    """Describe a batch with the molmo service; prompts are always per photo."""
    response = await models.molmo_descriptions([image.to_payload() for image in images], prompts)
    batch_ids = {image.id for image in images}
    results: Dict[str, Dict[str, Any]] = {}
    for photo_result in response or []:
        photo_id = str(photo_result.get("id"))
        if photo_id not in batch_ids:
            continue
        by_prompt = {d.get("id_prompt"): d.get("description") for d in photo_result.get("descriptions") or []}
        missing = [name for name in task.output_names if name not in by_prompt]
        if missing:
            raise ModelCallError("vision_molmo", f"photo {photo_id} has no description for {missing}")
        results[photo_id] = {name: by_prompt[name] for name in task.output_names}
    undescribed = [image.id for image in images if image.id not in results]
    if undescribed:
        raise ModelCallError("vision_molmo", f"no descriptions for photos {undescribed}")
    return results, []


VISION_HANDLERS: Dict[str, VisionHandler] = {
    "gpt": VisionHandler(execute_gpt),
    "molmo": VisionHandler(execute_molmo, per_item_prompts=True),
}


class VisionTask(AnalyzerTask):
    """
    Describe photos with a vision model and merge the descriptions into
    each photo's `descriptions` column.

    Attributes:
        model: Handler key in VISION_HANDLERS
        prompts: Prompt template ids (see VISION_PROMPTS)
        prompts_names: Description category written by each prompt
        images_per_batch: Photos sent per request
        sequential: Await each batch before dispatching the next
        use_guide_lines: Send images with the left/middle/right overlay
        prompt_dependent_field: Description field the prompts read, forcing
            a refresh of each photo before its prompts are built
        resolution: Image detail requested from the chat model
    """
    kind: Literal["vision"] = "vision"
    model: str = "gpt"
    prompts: List[str]
    prompts_names: List[str] = Field(default_factory=list)
    images_per_batch: int = Field(default=4, ge=1)
    sequential: bool = False
    use_guide_lines: bool = False
    prompt_dependent_field: Optional[str] = None
    resolution: Literal["low", "high", "auto"] = "high"

    commit_per_batch: ClassVar[bool] = True

    _handler: VisionHandler = PrivateAttr()

    @field_validator("model")
    @classmethod
    def validate_model(cls, v: str) -> str:
        if v not in VISION_HANDLERS:
            raise ValueError(f"Unknown vision model: {v}. Available: {sorted(VISION_HANDLERS)}")
        return v

    @field_validator("prompts")
    @classmethod
    def validate_prompts(cls, v: List[str]) -> List[str]:
        unknown = [p for p in v if p not in VISION_PROMPTS]
        if not v or unknown:
            raise ValueError(f"Vision task needs known prompts, got unknown: {unknown}")
        return v

    @model_validator(mode="after")
    def validate_names(self) -> "VisionTask":
        if self.prompts_names and len(self.prompts_names) != len(self.prompts):
            raise ValueError("prompts_names must name every prompt")
        return self

    def model_post_init(self, __context: Any) -> None:
        self._handler = VISION_HANDLERS[self.model]

    @property
    def handler(self) -> VisionHandler:
        return self._handler

    @property
    def output_names(self) -> List[str]:
        return self.prompts_names or list(self.prompts)

    @property
    def needs_item_prompts(self) -> bool:
        return bool(self.prompt_dependent_field) or self._handler.per_item_prompts

    def batch_policy(self) -> BatchPolicy:
        return BatchPolicy(
            size=self.images_per_batch,
            sequential=self.sequential,
            stagger_sec=settings.vision_stagger_sec,
        )

    def build_prompts(self, photos: List[PhotoRecord]) -> BuiltPrompts:
        """
        Render the prompts for a batch.

        Args:
            photos: Batch photos, already refreshed when per-photo prompts apply

        Returns:
            One string per prompt, or one {"id", "prompts"} entry per photo
        """
        if self.needs_item_prompts:
            return [
                {
                    "id": photo.id,
                    "prompts": [
                        {"id": name, "text": render_prompt(prompt_id, [photo])}
                        for prompt_id, name in zip(self.prompts, self.output_names)
                    ],
                }
                for photo in photos
            ]
        return [render_prompt(prompt_id, photos) for prompt_id in self.prompts]

    async def describe(self, models: ModelsService, images: List[PhotoImage], prompts: BuiltPrompts) -> VisionOutput:
        return await self._handler.execute(models, self, images, prompts)

    def commit(self, repository: AnalyzerRepository, item_ids=None) -> int:
        updates = self.pending_commit(item_ids)
        return repository.merge_descriptions(updates)
