"""
Database module for the photo analyzer.
"""
from photo_analyzer.db.connection import get_db_session, init_db, make_session_factory
from photo_analyzer.db.models import (
    AnalyzerProcess,
    Photo,
    Tag,
    TagPhoto,
    DescriptionChunk,
)
from photo_analyzer.db.repository import (
    AnalyzerRepository,
    ProcessRepository,
    PhotoRecord,
    TagRecord,
    ChunkRecord,
)

__all__ = [
    "get_db_session",
    "init_db",
    "make_session_factory",
    "AnalyzerProcess",
    "Photo",
    "Tag",
    "TagPhoto",
    "DescriptionChunk",
    "AnalyzerRepository",
    "ProcessRepository",
    "PhotoRecord",
    "TagRecord",
    "ChunkRecord",
]
