"""
Visual tasks on photo images: image embedding, object detection and color
embedding. Responses are matched to photos by id, not by position.
"""
from typing import Any, ClassVar, Dict, List, Literal

from pydantic import Field

from photo_analyzer.core.config import settings
from photo_analyzer.core.exceptions import ModelCallError
from photo_analyzer.db.repository import AnalyzerRepository
from photo_analyzer.pipeline.tasks.base import AnalyzerTask, BatchPolicy
from photo_analyzer.services.models_service import ModelsService


class VisualTask(AnalyzerTask):
    """Shared request/merge logic of the visual tasks."""
    use_guide_lines: ClassVar[bool] = False

    def batch_size(self) -> int:
        raise NotImplementedError

    def batch_policy(self) -> BatchPolicy:
        return BatchPolicy(size=self.batch_size(), sequential=True, delay_sec=settings.embeddings_delay_sec)

    async def request(self, models: ModelsService, payload: List[Dict[str, str]]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def to_result(self, response_item: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def merge_response(self, batch_ids: List[str], response: List[Dict[str, Any]]) -> None:
        """
        Merge the response entries of one batch.

        Raises:
            ModelCallError: the response has no entry for some photo of the
                batch; nothing is merged
        """
        by_id = {str(entry.get("id")): entry for entry in response or []}
        missing = [photo_id for photo_id in batch_ids if photo_id not in by_id]
        if missing:
            raise ModelCallError(self.kind, f"no result for photos {missing}")
        for photo_id in batch_ids:
            self.merge_result(photo_id, self.to_result(by_id[photo_id]))

    def commit(self, repository: AnalyzerRepository, item_ids=None) -> int:
        return repository.update_photos(self.pending_commit(item_ids))


class VisualEmbeddingTask(VisualTask):
    kind: Literal["visual_embedding"] = "visual_embedding"
    name: str = "visual_embedding"

    def batch_size(self) -> int:
        return settings.visual_embedding_batch_size

    async def request(self, models, payload):
        return await models.image_embeddings(payload)

    def to_result(self, response_item):
        return {"embedding": response_item.get("embedding")}


class VisualDetectionTask(VisualTask):
    """Detect objects of the given categories; commits per batch."""
    kind: Literal["visual_detection"] = "visual_detection"
    name: str = "visual_detection"
    categories: List[str] = Field(default_factory=lambda: ["person", "animal", "vehicle", "food"])

    commit_per_batch: ClassVar[bool] = True

    def batch_size(self) -> int:
        return settings.detection_batch_size

    async def request(self, models, payload):
        return await models.object_detection(payload, self.categories)

    def to_result(self, response_item):
        return {"detections": response_item.get("detections")}


class VisualColorEmbeddingTask(VisualTask):
    """Color embedding, stored both as palette and as flat array; commits per batch."""
    kind: Literal["visual_color_embedding"] = "visual_color_embedding"
    name: str = "visual_color_embedding"

    commit_per_batch: ClassVar[bool] = True

    def batch_size(self) -> int:
        return settings.color_embedding_batch_size

    async def request(self, models, payload):
        return await models.color_embeddings(payload)

    def to_result(self, response_item):
        embedding = response_item.get("embedding")
        return {"color_palette": embedding, "color_array": embedding}
