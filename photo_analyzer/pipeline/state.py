"""
Durable state of one analysis run.

ProcessState holds the run's mode, task list, current stage, member photo
ids and the failure map, and writes every change through ProcessRepository
so a stopped run can be resumed in retry mode.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from photo_analyzer.core.exceptions import ProcessNotFoundError
from photo_analyzer.core.logging import get_logger
from photo_analyzer.db.repository import AnalyzerRepository, PhotoRecord, ProcessRepository
from photo_analyzer.pipeline.packages import get_task_list
from photo_analyzer.pipeline.stages import Stage, stage_for_kind, stage_rank
from photo_analyzer.pipeline.tasks import AnalyzerTask, dump_tasks, parse_tasks

logger = get_logger("pipeline.state")


class ProcessMode(str, Enum):
    """Run initialization policy."""
    FIRST = "first"
    ADDING = "adding"
    REMAKE = "remake"
    RETRY = "retry"


@dataclass
class ProcessState:
    """
    One run of the pipeline.

    Attributes:
        id: Process record id
        mode: Initialization policy of the run
        package_id: Package the task list was resolved from
        tasks: Ordered tasks, immutable once the run starts
        current_stage: Non-decreasing position in the stage order
        items: Member photo ids of the run
        failed: photo id -> name of the task it last failed at
    """
    id: str
    mode: ProcessMode
    package_id: Optional[str]
    tasks: Optional[List[AnalyzerTask]]
    current_stage: Stage = Stage.INIT
    items: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    repository: ProcessRepository = field(default_factory=ProcessRepository, repr=False)

    # ---- construction ----

    @classmethod
    def init(
        cls,
        photos: Sequence[PhotoRecord],
        package_id: Optional[str],
        mode: str = ProcessMode.FIRST,
        process_id: Optional[str] = None,
        processes: Optional[ProcessRepository] = None,
        photos_repository: Optional[AnalyzerRepository] = None,
        resolver: Callable[[str], List[AnalyzerTask]] = get_task_list,
    ) -> "ProcessState":
        """
        Create (or, in retry mode, reload) the process of a run.

        Args:
            photos: Candidate photos of the run
            package_id: Task package; retry falls back to the stored one
            mode: first / remake use every photo, adding only photos with no
                owning run, retry starts from an empty set
            process_id: Existing process, required in retry mode

        Returns:
            The persisted state, moved to the first stage that has tasks

        Raises:
            ProcessNotFoundError: retry without an existing process
            PackageNotFoundError: unknown package id
        """
        mode = ProcessMode(mode)
        processes = processes or ProcessRepository()
        photos_repository = photos_repository or AnalyzerRepository()

        failed: Dict[str, str] = {}
        if mode == ProcessMode.RETRY:
            record = processes.get(process_id) if process_id else None
            if record is None:
                raise ProcessNotFoundError(f"No process found to retry: {process_id}")
            state_id = record.id
            package_id = package_id or record.package_id
            failed = dict(record.failed)
            items: List[str] = []
        else:
            if mode == ProcessMode.ADDING:
                items = [p.id for p in photos if p.analyzer_process_id is None]
            else:
                items = [p.id for p in photos]
            state_id = processes.create(mode.value, package_id)

        tasks = resolver(package_id)
        state = cls(
            id=state_id,
            mode=mode,
            package_id=package_id,
            tasks=tasks,
            items=list(dict.fromkeys(items)),
            failed=failed,
            repository=processes,
        )
        state._drop_unknown_failures()
        state.save()

        if mode != ProcessMode.RETRY:
            photos_repository.assign_photos_to_process(state.id, state.items)

        state.advance_to(state.first_stage())
        logger.info(
            f"Process {state.id} initialized: mode={mode.value}, package={package_id}, "
            f"items={len(state.items)}, tasks={state.task_names}"
        )
        return state

    @classmethod
    def load(cls, process_id: str, processes: Optional[ProcessRepository] = None) -> "ProcessState":
        """Rebuild a state from its process record."""
        processes = processes or ProcessRepository()
        record = processes.get(process_id)
        if record is None:
            raise ProcessNotFoundError(f"Process not found: {process_id}")
        return cls(
            id=record.id,
            mode=ProcessMode(record.mode),
            package_id=record.package_id,
            tasks=parse_tasks(record.tasks) if record.tasks else None,
            current_stage=Stage(record.current_stage),
            items=list(record.photo_ids),
            failed=dict(record.failed),
            repository=processes,
        )

    # ---- tasks ----

    @property
    def task_names(self) -> List[str]:
        return [task.name for task in self.tasks or []]

    def task_position(self, task_name: str) -> int:
        try:
            return self.task_names.index(task_name)
        except ValueError:
            raise ValueError(f"Task '{task_name}' is not part of process {self.id}") from None

    def first_stage(self) -> Stage:
        """First stage with tasks; `init` when only visual tasks exist."""
        for task in self.tasks or []:
            stage = stage_for_kind(task.kind)
            if stage is not None:
                return stage
        return self.current_stage

    # ---- failure map ----

    def add_failed(self, item_ids: Iterable[str], task_name: str) -> None:
        """Record `item_ids` as failed at `task_name`, overwriting older failures."""
        self.task_position(task_name)
        ids = [str(i) for i in item_ids]
        if not ids:
            return
        for item_id in ids:
            self.failed[item_id] = task_name
        logger.warning(f"Process {self.id}: {len(ids)} items failed at {task_name}")
        self._save_failed()

    def remove_failed(self, item_ids: Iterable[str], task_name: str) -> None:
        """Clear the failures of `item_ids` recorded at `task_name`."""
        removed = [
            str(i) for i in item_ids
            if self.failed.get(str(i)) == task_name
        ]
        for item_id in removed:
            del self.failed[item_id]
        if removed:
            logger.info(f"Process {self.id}: {len(removed)} items recovered at {task_name}")
            self._save_failed()

    def pending_item_ids(self, task_name: str) -> List[str]:
        """
        Funnel: item ids a task must process.

        Items that failed at an earlier task are excluded. In retry mode the
        items that failed at this very task are added back.
        """
        position = self.task_position(task_name)
        earlier = set(self.task_names[:position])
        pending = [i for i in self.items if self.failed.get(i) not in earlier]
        if self.mode == ProcessMode.RETRY:
            pending.extend(
                item_id for item_id, name in self.failed.items()
                if name == task_name and item_id not in pending
            )
        return pending

    def _drop_unknown_failures(self) -> None:
        names = set(self.task_names)
        unknown = {item_id: name for item_id, name in self.failed.items() if name not in names}
        if unknown:
            logger.warning(f"Process {self.id}: dropping failures at unknown tasks {sorted(set(unknown.values()))}")
            for item_id in unknown:
                del self.failed[item_id]

    # ---- stage ----

    def advance_to(self, stage) -> bool:
        """
        Move `current_stage` forward and persist it.

        Returns:
            True if the stage changed

        Raises:
            ValueError: the stage is before the current one
        """
        stage = Stage(stage)
        if stage_rank(stage) < stage_rank(self.current_stage):
            raise ValueError(f"Cannot move process {self.id} back from {self.current_stage.value} to {stage.value}")
        if stage == self.current_stage:
            return False
        self.current_stage = stage
        self.repository.update(self.id, current_stage=stage.value)
        return True

    @property
    def is_finished(self) -> bool:
        return self.current_stage == Stage.FINISHED

    # ---- persistence ----

    def save(self) -> None:
        self.repository.update(
            self.id,
            mode=self.mode.value,
            package_id=self.package_id,
            current_stage=self.current_stage.value,
            tasks=dump_tasks(self.tasks) if self.tasks is not None else None,
            failed=dict(self.failed),
        )

    def _save_failed(self) -> None:
        self.repository.update(self.id, failed=dict(self.failed))
