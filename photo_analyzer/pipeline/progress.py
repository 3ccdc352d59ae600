"""
Progress events and sinks.

The runner publishes every event it yields to a ProgressSink. Sinks are
best-effort: a failing sink never affects the run.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set

from fastapi import WebSocket

from photo_analyzer.core.logging import get_logger

logger = get_logger("pipeline.progress")

STAGE_CHANGED = "stageChanged"
STAGE_COMPLETED = "stageCompleted"
ANALYSIS_COMPLETE = "analysisComplete"


@dataclass
class PipelineEvent:
    """A progress event of a run."""
    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "data": self.data}


class ProgressSink(ABC):
    """Receives progress events of a run."""

    @abstractmethod
    async def publish(self, process_id: str, event: PipelineEvent) -> None:
        pass


class LoggingProgressSink(ProgressSink):
    """Writes events to the log."""

    async def publish(self, process_id: str, event: PipelineEvent) -> None:
        message = event.data.get("message") if isinstance(event.data, dict) else None
        logger.info(f"[{process_id}] {event.type}: {message or ''}")


class MemoryProgressSink(ProgressSink):
    """Keeps every published event; useful in tests and scripts."""

    def __init__(self):
        self.events: List[PipelineEvent] = []

    async def publish(self, process_id: str, event: PipelineEvent) -> None:
        self.events.append(event)


class WebSocketProgressSink(ProgressSink):
    """Broadcast events as JSON to the WebSockets watching each process."""

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, process_id: str):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        self.active_connections.setdefault(process_id, set()).add(websocket)
        logger.info(f"WebSocket connected for process {process_id}")

    def disconnect(self, websocket: WebSocket, process_id: str):
        """Remove a WebSocket connection."""
        if process_id in self.active_connections:
            self.active_connections[process_id].discard(websocket)
            if not self.active_connections[process_id]:
                del self.active_connections[process_id]
        logger.info(f"WebSocket disconnected for process {process_id}")

    async def publish(self, process_id: str, event: PipelineEvent) -> None:
        if process_id not in self.active_connections:
            return

        disconnected = set()
        for connection in list(self.active_connections[process_id]):
            try:
                await connection.send_json(event.to_dict())
            except Exception as e:
                logger.error(f"Failed to send progress: {e}")
                disconnected.add(connection)

        for conn in disconnected:
            self.disconnect(conn, process_id)
