"""
Shared fixtures: in-memory database, fake models service, photo factory.
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from photo_analyzer.core.config import settings
from photo_analyzer.core.exceptions import ModelCallError
from photo_analyzer.db import AnalyzerRepository, ProcessRepository, init_db, make_session_factory
from photo_analyzer.db.models import Photo
from photo_analyzer.pipeline.packages import normalize_tasks
from photo_analyzer.pipeline.progress import MemoryProgressSink
from photo_analyzer.pipeline.runner import PipelineRunner
from photo_analyzer.pipeline.state import ProcessState
from photo_analyzer.pipeline.tasks import parse_tasks
from photo_analyzer.services.models_service import CallCost, ChatResult


class FakeModels:
    """
    Records every call. Chat results come from `chat_handler`; operations
    listed in `failing` raise ModelCallError.
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.failing = set()
        self.chat_handler: Callable[[Optional[str], Any, Optional[str]], Any] = self._default_chat

    @staticmethod
    def _default_chat(system_prompt, user_content, model):
        if isinstance(user_content, list):
            return [{"context": "A dog on a beach. The sun is setting."} for _ in user_content]
        return {"tags": ["dog | animal", "beach | place"]}

    def _check(self, operation: str):
        if operation in self.failing:
            raise ModelCallError(operation, "service unavailable")

    async def chat_completion(self, system_prompt, user_content, model=None, response_format=None):
        self.calls.append(("chat_completion", system_prompt, user_content, model))
        self._check("chat_completion")
        result = self.chat_handler(system_prompt, user_content, model)
        return ChatResult(result=result, cost=CallCost(model=model or "gpt-4o-mini", total_tokens=10, total_cost_eur=0.001))

    async def text_embeddings(self, texts):
        self.calls.append(("text_embeddings", list(texts)))
        self._check("text_embeddings")
        return [[float(len(text)), 1.0] for text in texts]

    async def image_embeddings(self, items):
        self.calls.append(("image_embeddings", [item["id"] for item in items]))
        self._check("image_embeddings")
        return [{"id": item["id"], "embedding": [0.5, 0.5]} for item in reversed(items)]

    async def object_detection(self, items, categories):
        self.calls.append(("object_detection", [item["id"] for item in items], list(categories)))
        self._check("object_detection")
        return [{"id": item["id"], "detections": {"person": 1}} for item in items]

    async def color_embeddings(self, items):
        self.calls.append(("color_embeddings", [item["id"] for item in items]))
        self._check("color_embeddings")
        return [{"id": item["id"], "embedding": [0.1, 0.2, 0.3]} for item in items]

    async def clean_descriptions(self, texts, threshold=None):
        self.calls.append(("clean_descriptions", list(texts)))
        self._check("clean_descriptions")
        return [text.lower() for text in texts]

    async def molmo_descriptions(self, items, prompts):
        self.calls.append(("molmo_descriptions", [item["id"] for item in items], prompts))
        self._check("molmo_descriptions")
        return [
            {
                "id": entry["id"],
                "descriptions": [
                    {"id_prompt": p["id"], "description": "left: sea | middle: dog | right: sand"}
                    for p in entry["prompts"]
                ],
            }
            for entry in prompts
        ]

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def repository(session_factory):
    return AnalyzerRepository(session_factory)


@pytest.fixture
def processes(session_factory):
    return ProcessRepository(session_factory)


@pytest.fixture
def fake_models():
    return FakeModels()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def photos_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "photos_dir", str(tmp_path))
    return tmp_path


@pytest.fixture
def make_photos(session_factory, repository, photos_dir):
    """Create photos (and small image files); returns their PhotoRecords."""

    def _make(count: int, descriptions: Optional[Dict[str, Any]] = None, prefix: str = "photo"):
        ids = []
        with session_factory() as db:
            for index in range(count):
                name = f"{prefix}_{index}.jpg"
                Image.new("RGB", (64, 48), color=(index * 10 % 255, 100, 150)).save(photos_dir / name)
                photo = Photo(name=name, descriptions=dict(descriptions) if descriptions else None)
                db.add(photo)
                db.flush()
                ids.append(photo.id)
        return repository.get_photos(ids)

    return _make


def task_resolver(descriptors: List[Dict[str, Any]]):
    """Resolver returning fresh normalised tasks built from `descriptors`."""
    return lambda package_id: normalize_tasks(parse_tasks(descriptors))


@pytest.fixture
def make_state(processes, repository):
    def _make(photos, descriptors, mode="first", process_id=None, package_id="test"):
        return ProcessState.init(
            photos,
            package_id,
            mode=mode,
            process_id=process_id,
            processes=processes,
            photos_repository=repository,
            resolver=task_resolver(descriptors),
        )

    return _make


@pytest.fixture
def make_runner(fake_models, repository, recording_sleep):
    def _make(state):
        return PipelineRunner(
            state,
            models=fake_models,
            repository=repository,
            sink=MemoryProgressSink(),
            sleep=recording_sleep,
        )

    return _make


def collect_events(runner: PipelineRunner):
    """Drive a runner to completion and return its events."""

    async def _consume():
        return [event async for event in runner.run()]

    return asyncio.run(_consume())
