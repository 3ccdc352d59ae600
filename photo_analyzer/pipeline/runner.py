"""
Pipeline runner for one analysis run.

The PipelineRunner drives a ProcessState through the fixed stage order:
- Computes each task's pending items through the funnel
- Slices them into batches and dispatches them (sequentially or at once,
  with a per-batch stagger)
- Merges results into the task accumulator and commits them
- Records every item of a failing batch as failed for the task
- Publishes progress events

A driver coroutine owns the state machine and puts events on a bounded
queue; run() yields them. A consumer that stops iterating parks the driver
on the full queue, and closing the generator cancels it. Committed work and
the current stage stay persisted either way.

The progress sink is fed from its own task, so a slow sink delays only
itself; the run waits a bounded time for it to catch up before finishing.
"""
import asyncio
from contextlib import suppress
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from photo_analyzer.core.config import settings
from photo_analyzer.core.exceptions import DataIntegrityError, ProcessNotFoundError
from photo_analyzer.core.logging import get_logger
from photo_analyzer.db.repository import AnalyzerRepository
from photo_analyzer.pipeline.photo_image import PhotoImage
from photo_analyzer.pipeline.progress import (
    ANALYSIS_COMPLETE,
    STAGE_CHANGED,
    STAGE_COMPLETED,
    LoggingProgressSink,
    PipelineEvent,
    ProgressSink,
)
from photo_analyzer.pipeline.stages import KIND_ORDER, Stage, stage_for_kind
from photo_analyzer.pipeline.state import ProcessMode, ProcessState
from photo_analyzer.pipeline.tasks import (
    AnalyzerTask,
    BatchPolicy,
    ChunksEmbeddingTask,
    ChunkTask,
    TagsEmbeddingTask,
    TagTask,
    TaskKind,
    VisionTask,
    VisualTask,
    chunked,
    parse_tag_list,
)
from photo_analyzer.pipeline.tasks.tags import extract_tag_list
from photo_analyzer.services.models_service import CallCost, ModelsService
from photo_analyzer.utils.timing import StageClock, timer

logger = get_logger("pipeline.runner")

Sleep = Callable[[float], Awaitable[Any]]

KIND_LABELS: Dict[TaskKind, str] = {
    TaskKind.VISION: "Vision task",
    TaskKind.TAGS: "Tags task",
    TaskKind.EMBEDDINGS_TAGS: "Tags embeddings",
    TaskKind.CHUNKS: "Chunks task",
    TaskKind.EMBEDDINGS_CHUNKS: "Chunks embeddings",
    TaskKind.VISUAL_EMBEDDING: "Visual embedding",
    TaskKind.VISUAL_DETECTION: "Visual detection",
    TaskKind.VISUAL_COLOR_EMBEDDING: "Visual color embedding",
}


class PipelineRunner:
    """
    Executes the tasks of a ProcessState in stage order.

    Usage:
        state = ProcessState.init(photos, "basic", mode="first")
        runner = PipelineRunner(state)
        async for event in runner.run():
            ...
    """

    def __init__(
        self,
        process: Optional[ProcessState],
        models: Optional[ModelsService] = None,
        repository: Optional[AnalyzerRepository] = None,
        sink: Optional[ProgressSink] = None,
        sleep: Sleep = asyncio.sleep,
        queue_size: Optional[int] = None,
    ):
        """
        Initialize the runner.

        Args:
            process: State of the run to execute
            models: Inference boundary
            repository: Photo / tag / chunk persistence
            sink: Receives a copy of every event
            sleep: Awaitable used for batch staggering and delays
            queue_size: Events buffered ahead of the consumer
        """
        self.process = process
        self.models = models or ModelsService()
        self.repository = repository or AnalyzerRepository()
        self.sink = sink or LoggingProgressSink()
        self._sleep = sleep
        self.queue_size = queue_size or settings.event_queue_size
        self.costs: List[Dict[str, Any]] = []
        self.clock = StageClock()
        self._queue: Optional[asyncio.Queue] = None
        self._outbox: Optional[asyncio.Queue] = None
        self._executors: Dict[TaskKind, Callable[[Any], Awaitable[None]]] = {
            TaskKind.VISION: self._execute_vision_task,
            TaskKind.TAGS: self._execute_tags_task,
            TaskKind.EMBEDDINGS_TAGS: self._execute_tags_embeddings,
            TaskKind.CHUNKS: self._execute_chunks_task,
            TaskKind.EMBEDDINGS_CHUNKS: self._execute_chunks_embeddings,
            TaskKind.VISUAL_EMBEDDING: self._execute_visual_task,
            TaskKind.VISUAL_DETECTION: self._execute_visual_task,
            TaskKind.VISUAL_COLOR_EMBEDDING: self._execute_visual_task,
        }

    # =========================================================================
    # Event stream
    # =========================================================================

    async def run(self) -> AsyncIterator[PipelineEvent]:
        """
        Run the pipeline, yielding progress events until `analysisComplete`.

        Raises:
            ProcessNotFoundError: no process or task list is loaded
            DataIntegrityError: a stage found required data missing
        """
        if self.process is None or not self.process.tasks:
            raise ProcessNotFoundError("No process with a task list loaded")
        if self._queue is not None:
            raise RuntimeError(f"Process {self.process.id} was already run by this runner")

        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._outbox = asyncio.Queue()
        publisher = asyncio.ensure_future(self._publish_events())
        driver = asyncio.ensure_future(self._drive())
        try:
            while True:
                if driver.done() and self._queue.empty():
                    driver.result()
                    return
                getter = asyncio.ensure_future(self._queue.get())
                await asyncio.wait({getter, driver}, return_when=asyncio.FIRST_COMPLETED)
                if getter.done():
                    yield getter.result()
                else:
                    getter.cancel()
        finally:
            for task in (driver, publisher):
                if not task.done():
                    task.cancel()
                    with suppress(asyncio.CancelledError):
                        await task

    async def _emit(self, event_type: str, data: Dict[str, Any]) -> None:
        event = PipelineEvent(type=event_type, data=data)
        self._outbox.put_nowait(event)
        await self._queue.put(event)

    async def _publish_events(self) -> None:
        """Hand events to the sink in order, off the driver's path."""
        while True:
            event = await self._outbox.get()
            try:
                await self.sink.publish(self.process.id, event)
            except Exception as e:
                logger.warning(f"Progress sink failed for {event.type}: {e}")
            finally:
                self._outbox.task_done()

    async def _drain_sink(self) -> None:
        try:
            await asyncio.wait_for(self._outbox.join(), timeout=settings.sink_drain_timeout_sec)
        except asyncio.TimeoutError:
            logger.warning(
                f"Progress sink still has {self._outbox.qsize()} events pending for process {self.process.id}"
            )

    # =========================================================================
    # State machine
    # =========================================================================

    async def _drive(self) -> None:
        state = self.process
        for task in state.tasks:
            task.reset()
        self.costs = []

        await self._emit(STAGE_CHANGED, {
            "stage": state.current_stage.value,
            "message": (
                f"Process started | package: {state.package_id} | mode: {state.mode.value} "
                f"| items: {len(state.items)}"
            ),
        })

        for kind in KIND_ORDER:
            for task in [t for t in state.tasks if TaskKind(t.kind) == kind]:
                await self._run_task(task)

        state.advance_to(Stage.FINISHED)
        logger.info(f"Process {state.id} finished: {len(state.failed)} failed items")
        await self._emit(ANALYSIS_COMPLETE, {
            "stage": Stage.FINISHED.value,
            "message": "Analysis complete",
            "costs": list(self.costs),
            "totalCostInEur": sum(cost["totalCostInEur"] for cost in self.costs),
            "failed": dict(state.failed),
            "timing": self.clock.summary(),
        })
        await self._drain_sink()

    async def _run_task(self, task: AnalyzerTask) -> None:
        kind = TaskKind(task.kind)
        label = f"{KIND_LABELS[kind]}: {task.name}"
        stage = stage_for_kind(kind)
        if stage is not None:
            self.process.advance_to(stage)

        await self._emit(STAGE_CHANGED, {
            "stage": self.process.current_stage.value,
            "task": task.name,
            "message": f"{label} initiating",
        })

        self.clock.start(task.name)
        with timer(task.name):
            await self._executors[kind](task)
        elapsed = self.clock.stop(task.name)

        failed = sum(1 for name in self.process.failed.values() if name == task.name)
        await self._emit(STAGE_COMPLETED, {
            "stage": self.process.current_stage.value,
            "task": task.name,
            "message": f"{label} complete",
            "failed": failed,
            "seconds": round(elapsed, 3),
        })

    # =========================================================================
    # Funnel and dispatch
    # =========================================================================

    def get_pending_items(self, task: AnalyzerTask) -> list:
        """
        Items `task` must process: PhotoImages for vision-class tasks,
        PhotoRecords otherwise. Loaded by id, so retried items outside the
        run's member set are reachable too.
        """
        photos = self.repository.get_photos(self.process.pending_item_ids(task.name))
        if task.uses_images:
            with_guides = bool(getattr(task, "use_guide_lines", False))
            return [PhotoImage(photo, with_guides=with_guides) for photo in photos]
        return photos

    async def _dispatch(
        self,
        task: AnalyzerTask,
        items: Sequence[Any],
        policy: BatchPolicy,
        handle: Callable[[List[Any]], Awaitable[None]],
        ids_of: Callable[[Any], Iterable[str]],
        settle: bool = True,
    ) -> None:
        """
        Run `handle` over contiguous batches of `items`.

        A batch that raises has every one of its item ids recorded as failed
        for `task`, even when only one item caused the error.
        DataIntegrityError is not a batch failure and aborts the run.

        Args:
            ids_of: Photo ids an item accounts for
            settle: In retry mode, clear the task's failures of ids that no
                failing batch accounts for, once every batch has run
        """
        batches = chunked(list(items), policy.size)
        if not batches:
            return
        logger.debug(
            f"{task.name}: {len(items)} items in {len(batches)} batches "
            f"({'sequential' if policy.sequential else 'concurrent'})"
        )

        succeeded: List[str] = []
        failed: set = set()

        async def process_batch(index: int, batch: List[Any]) -> None:
            await self._sleep(policy.delay_for(index))
            ids = list(dict.fromkeys(str(i) for item in batch for i in ids_of(item)))
            try:
                await handle(batch)
                if task.commit_per_batch:
                    task.commit(self.repository, ids)
            except DataIntegrityError:
                raise
            except Exception as e:
                logger.error(
                    f"{task.name}: batch {index + 1}/{len(batches)} failed, marking {len(ids)} items: {e}",
                    exc_info=True,
                )
                self.process.add_failed(ids, task.name)
                failed.update(ids)
                return
            succeeded.extend(ids)

        if policy.sequential:
            for index, batch in enumerate(batches):
                await process_batch(index, batch)
        else:
            await asyncio.gather(*(process_batch(index, batch) for index, batch in enumerate(batches)))

        # one photo's tags or chunks can span several batches
        if settle and self.process.mode == ProcessMode.RETRY:
            self.process.remove_failed([i for i in dict.fromkeys(succeeded) if i not in failed], task.name)

    def _settle_untouched(self, task: AnalyzerTask, pending_ids: List[str], touched: Iterable[str]) -> None:
        """In retry mode, clear failures of pending items that had nothing left to do."""
        if self.process.mode != ProcessMode.RETRY:
            return
        touched = set(touched)
        self.process.remove_failed([i for i in pending_ids if i not in touched], task.name)

    def _record_costs(self, task: AnalyzerTask, costs: List[CallCost]) -> None:
        for cost in costs:
            self.costs.append({"task": task.name, **cost.to_dict()})

    # =========================================================================
    # Stage executors
    # =========================================================================

    async def _execute_vision_task(self, task: VisionTask) -> None:
        images: List[PhotoImage] = self.get_pending_items(task)
        logger.info(f"{task.name}: {len(images)} photos with {task.model} ({task.images_per_batch} per batch)")

        async def describe(batch: List[PhotoImage]) -> None:
            if task.needs_item_prompts:
                refreshed = {p.id: p for p in self.repository.get_photos([image.id for image in batch])}
                for image in batch:
                    image.photo = refreshed.get(image.id, image.photo)
            prompts = task.build_prompts([image.photo for image in batch])
            results, costs = await task.describe(self.models, batch, prompts)
            self._record_costs(task, costs)
            for photo_id, result in results.items():
                task.merge_result(photo_id, result)

        await self._dispatch(task, images, task.batch_policy(), describe, lambda image: [image.id])

    async def _execute_tags_task(self, task: TagTask) -> None:
        photos = self.get_pending_items(task)
        logger.info(f"{task.name}: cleaning descriptions of {len(photos)} photos")

        cleaned: Dict[str, str] = {}

        async def clean(batch) -> None:
            texts = [task.source_text(photo) for photo in batch]
            results = await self.models.clean_descriptions(texts)
            for photo, text in zip(batch, results):
                cleaned[photo.id] = text

        await self._dispatch(task, photos, task.cleaning_policy(), clean, lambda p: [p.id], settle=False)

        async def request_tags(batch) -> None:
            photo = batch[0]
            chat = await self.models.chat_completion(
                task.system_prompt, task.user_content(cleaned[photo.id]), task.model,
            )
            self._record_costs(task, [chat.cost])
            task.merge_result(photo.id, {"tags": parse_tag_list(extract_tag_list(chat.result))})

        to_tag = [photo for photo in photos if photo.id in cleaned]
        logger.info(f"{task.name}: requesting tags for {len(to_tag)} photos")
        await self._dispatch(task, to_tag, task.batch_policy(), request_tags, lambda p: [p.id])
        task.commit(self.repository)

    async def _execute_chunks_task(self, task: ChunkTask) -> None:
        photos = self.get_pending_items(task)
        for photo in photos:
            task.merge_result(photo.id, task.chunk_photo(photo))
        written = task.commit(self.repository)
        logger.info(f"{task.name}: chunked {written} photos")
        self._settle_untouched(task, [photo.id for photo in photos], [])

    async def _execute_tags_embeddings(self, task: TagsEmbeddingTask) -> None:
        pending_ids = self.process.pending_item_ids(task.name)
        inputs = task.build_inputs(self.repository.get_unembedded_tags(pending_ids))
        logger.info(f"{task.name}: {len(inputs)} distinct tags to embed")
        await self._embed(task, inputs)
        task.commit(self.repository)
        self._settle_untouched(task, pending_ids, [i for entry in inputs for i in entry.photo_ids])

    async def _execute_chunks_embeddings(self, task: ChunksEmbeddingTask) -> None:
        pending_ids = self.process.pending_item_ids(task.name)
        inputs = task.build_inputs(self.repository.get_unembedded_chunks(pending_ids))
        logger.info(f"{task.name}: {len(inputs)} chunks to embed")
        await self._embed(task, inputs)
        task.commit(self.repository)
        self._settle_untouched(task, pending_ids, [i for entry in inputs for i in entry.photo_ids])

    async def _embed(self, task: AnalyzerTask, inputs) -> None:
        async def embed(batch) -> None:
            vectors = await self.models.text_embeddings([entry.text for entry in batch])
            for entry, vector in zip(batch, vectors):
                for entity_id in entry.entity_ids:
                    task.merge_result(str(entity_id), {"embedding": vector})

        await self._dispatch(task, inputs, task.batch_policy(), embed, lambda entry: entry.photo_ids)

    async def _execute_visual_task(self, task: VisualTask) -> None:
        images: List[PhotoImage] = self.get_pending_items(task)
        logger.info(f"{task.name}: {len(images)} photos")

        async def request(batch: List[PhotoImage]) -> None:
            response = await task.request(self.models, [image.to_payload() for image in batch])
            task.merge_response([image.id for image in batch], response)

        await self._dispatch(task, images, task.batch_policy(), request, lambda image: [image.id])
        if not task.commit_per_batch:
            task.commit(self.repository)
