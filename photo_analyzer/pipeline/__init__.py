"""
Analysis pipeline: process state, tasks, packages and the runner.
"""
from photo_analyzer.pipeline.stages import Stage
from photo_analyzer.pipeline.packages import get_task_list, list_packages, register_package
from photo_analyzer.pipeline.state import ProcessMode, ProcessState
from photo_analyzer.pipeline.progress import (
    ANALYSIS_COMPLETE,
    STAGE_CHANGED,
    STAGE_COMPLETED,
    LoggingProgressSink,
    PipelineEvent,
    ProgressSink,
    WebSocketProgressSink,
)
from photo_analyzer.pipeline.runner import PipelineRunner

__all__ = [
    "Stage",
    "get_task_list",
    "list_packages",
    "register_package",
    "ProcessMode",
    "ProcessState",
    "ANALYSIS_COMPLETE",
    "STAGE_CHANGED",
    "STAGE_COMPLETED",
    "LoggingProgressSink",
    "PipelineEvent",
    "ProgressSink",
    "WebSocketProgressSink",
    "PipelineRunner",
]
