"""
Database repositories for the analysis pipeline.

The pipeline never holds ORM instances across awaits: every method opens its
own transactional session through the injected session factory and returns
plain records. This keeps the async runner free of lazy-load surprises and
lets tests run against an in-memory SQLite engine.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.attributes import flag_modified

from photo_analyzer.db.connection import SessionFactory, get_db_session
from photo_analyzer.db.models import AnalyzerProcess, DescriptionChunk, Photo, Tag, TagPhoto
from photo_analyzer.core.logging import get_logger

logger = get_logger("db.repository")


# ============== RECORDS ==============

@dataclass
class TagRecord:
    """A tag as attached to one photo."""
    id: int
    name: str
    group: Optional[str]
    embedding: Optional[List[float]] = None
    category: Optional[str] = None
    area: Optional[str] = None


@dataclass
class PhotoRecord:
    """Read model of a photo used by the pipeline."""
    id: str
    name: str
    url: Optional[str] = None
    descriptions: Optional[Dict[str, Any]] = None
    tags: List[TagRecord] = field(default_factory=list)
    analyzer_process_id: Optional[str] = None
    process_stage: Optional[str] = None

    @property
    def needs_process(self) -> bool:
        """True while the owning run has not finished."""
        return self.process_stage != "finished"


@dataclass
class ChunkRecord:
    """A description chunk awaiting (or holding) an embedding."""
    id: int
    photo_id: str
    category: str
    chunk: str
    embedding: Optional[List[float]] = None


@dataclass
class PendingTag:
    """An unembedded tag with the photos (of the queried set) carrying it."""
    id: int
    name: str
    group: Optional[str]
    photo_ids: List[str] = field(default_factory=list)


@dataclass
class ProcessRecord:
    """Persisted view of an analyzer process."""
    id: str
    mode: str
    package_id: Optional[str]
    current_stage: str
    tasks: Optional[List[Dict[str, Any]]]
    failed: Dict[str, str]
    photo_ids: List[str] = field(default_factory=list)


def _to_photo_record(photo: Photo) -> PhotoRecord:
    return PhotoRecord(
        id=photo.id,
        name=photo.name,
        url=photo.url,
        descriptions=dict(photo.descriptions) if photo.descriptions else None,
        tags=[
            TagRecord(
                id=link.tag.id,
                name=link.tag.name,
                group=link.tag.group,
                embedding=link.tag.embedding,
                category=link.category,
                area=link.area,
            )
            for link in photo.tags
        ],
        analyzer_process_id=photo.analyzer_process_id,
        process_stage=photo.analyzer_process.current_stage if photo.analyzer_process else None,
    )


# ============== PHOTO / TAG / CHUNK REPOSITORY ==============

class AnalyzerRepository:
    """Reads and partial writes of photos, tags and description chunks."""

    def __init__(self, session_factory: SessionFactory = get_db_session):
        self._session = session_factory

    # ---- photos ----

    def get_photos(self, photo_ids: Iterable[str]) -> List[PhotoRecord]:
        """Load photos with descriptions and tags, preserving the order of `photo_ids`."""
        ids = list(dict.fromkeys(photo_ids))
        if not ids:
            return []
        with self._session() as db:
            rows = (
                db.query(Photo)
                .options(
                    selectinload(Photo.tags).selectinload(TagPhoto.tag),
                    selectinload(Photo.analyzer_process),
                )
                .filter(Photo.id.in_(ids))
                .all()
            )
            by_id = {row.id: _to_photo_record(row) for row in rows}
        missing = [pid for pid in ids if pid not in by_id]
        if missing:
            logger.warning(f"Photos not found: {missing}")
        return [by_id[pid] for pid in ids if pid in by_id]

    def get_photo(self, photo_id: str) -> Optional[PhotoRecord]:
        found = self.get_photos([photo_id])
        return found[0] if found else None

    def get_process_photo_ids(self, process_id: str) -> List[str]:
        with self._session() as db:
            rows = (
                db.query(Photo.id)
                .filter(Photo.analyzer_process_id == process_id)
                .order_by(Photo.created_at, Photo.id)
                .all()
            )
            return [row[0] for row in rows]

    def update_photos(self, updates: Dict[str, Dict[str, Any]]) -> int:
        """
        Write partial column updates per photo.

        Args:
            updates: photo id -> {column: value}

        Returns:
            Number of photos updated
        """
        if not updates:
            return 0
        with self._session() as db:
            photos = db.query(Photo).filter(Photo.id.in_(list(updates.keys()))).all()
            for photo in photos:
                for key, value in updates[photo.id].items():
                    if hasattr(photo, key):
                        setattr(photo, key, value)
            return len(photos)

    def merge_descriptions(self, updates: Dict[str, Dict[str, Any]]) -> int:
        """Shallow-merge description categories into each photo's `descriptions`."""
        if not updates:
            return 0
        with self._session() as db:
            photos = db.query(Photo).filter(Photo.id.in_(list(updates.keys()))).all()
            for photo in photos:
                merged = dict(photo.descriptions or {})
                merged.update(updates[photo.id])
                photo.descriptions = merged
                flag_modified(photo, "descriptions")
            return len(photos)

    def assign_photos_to_process(self, process_id: str, photo_ids: Sequence[str]) -> None:
        """Make `photo_ids` the exact membership of the process, in one transaction."""
        ids = list(photo_ids)
        with self._session() as db:
            stale = db.query(Photo).filter(Photo.analyzer_process_id == process_id)
            if ids:
                stale = stale.filter(~Photo.id.in_(ids))
            stale.update({Photo.analyzer_process_id: None}, synchronize_session=False)
            if ids:
                db.query(Photo).filter(Photo.id.in_(ids)).update(
                    {Photo.analyzer_process_id: process_id}, synchronize_session=False
                )
        logger.debug(f"Assigned {len(ids)} photos to process {process_id}")

    # ---- tags ----

    def _upsert_tag(self, db: Session, name: str, group: Optional[str]) -> Tag:
        group_filter = Tag.group.is_(None) if group is None else Tag.group == group
        tag = db.query(Tag).filter(Tag.name == name, group_filter).first()
        if tag is None:
            tag = Tag(name=name, group=group)
            db.add(tag)
            db.flush()
        return tag

    def replace_photo_tags(self, photo_tags: Dict[str, List[Tuple[str, Optional[str]]]]) -> None:
        """
        Replace the tag associations of each photo.

        Tags are upserted by (name, group); a pair listed twice for the same
        photo is linked once.
        """
        with self._session() as db:
            for photo_id, pairs in photo_tags.items():
                db.query(TagPhoto).filter(TagPhoto.photo_id == photo_id).delete(synchronize_session=False)
                seen = set()
                for name, group in pairs:
                    if (name, group) in seen:
                        continue
                    seen.add((name, group))
                    tag = self._upsert_tag(db, name, group)
                    db.add(TagPhoto(photo_id=photo_id, tag_id=tag.id))

    def get_unembedded_tags(self, photo_ids: Iterable[str]) -> List[PendingTag]:
        ids = list(photo_ids)
        if not ids:
            return []
        with self._session() as db:
            rows = (
                db.query(Tag, TagPhoto.photo_id)
                .join(TagPhoto, TagPhoto.tag_id == Tag.id)
                .filter(TagPhoto.photo_id.in_(ids), Tag.embedding.is_(None))
                .order_by(Tag.id)
                .all()
            )
            pending: Dict[int, PendingTag] = {}
            for tag, photo_id in rows:
                entry = pending.setdefault(tag.id, PendingTag(id=tag.id, name=tag.name, group=tag.group))
                if photo_id not in entry.photo_ids:
                    entry.photo_ids.append(photo_id)
            return list(pending.values())

    def set_tag_embeddings(self, embeddings: Dict[int, List[float]]) -> None:
        if not embeddings:
            return
        with self._session() as db:
            for tag in db.query(Tag).filter(Tag.id.in_(list(embeddings.keys()))).all():
                tag.embedding = embeddings[tag.id]

    # ---- chunks ----

    def replace_chunks(self, photo_id: str, category: str, chunks: Sequence[str]) -> None:
        """Delete the chunks of (photo, category) and write the new ordered set."""
        with self._session() as db:
            db.query(DescriptionChunk).filter(
                DescriptionChunk.photo_id == photo_id,
                DescriptionChunk.category == category,
            ).delete(synchronize_session=False)
            db.add_all([
                DescriptionChunk(photo_id=photo_id, category=category, chunk=chunk)
                for chunk in chunks
            ])

    def get_chunks(self, photo_id: str, category: Optional[str] = None) -> List[ChunkRecord]:
        with self._session() as db:
            query = db.query(DescriptionChunk).filter(DescriptionChunk.photo_id == photo_id)
            if category:
                query = query.filter(DescriptionChunk.category == category)
            return [
                ChunkRecord(id=c.id, photo_id=c.photo_id, category=c.category, chunk=c.chunk, embedding=c.embedding)
                for c in query.order_by(DescriptionChunk.id).all()
            ]

    def get_unembedded_chunks(self, photo_ids: Iterable[str]) -> List[ChunkRecord]:
        ids = list(photo_ids)
        if not ids:
            return []
        with self._session() as db:
            rows = (
                db.query(DescriptionChunk)
                .filter(DescriptionChunk.photo_id.in_(ids), DescriptionChunk.embedding.is_(None))
                .order_by(DescriptionChunk.id)
                .all()
            )
            return [
                ChunkRecord(id=c.id, photo_id=c.photo_id, category=c.category, chunk=c.chunk)
                for c in rows
            ]

    def set_chunk_embeddings(self, embeddings: Dict[int, List[float]]) -> None:
        if not embeddings:
            return
        with self._session() as db:
            for chunk in db.query(DescriptionChunk).filter(DescriptionChunk.id.in_(list(embeddings.keys()))).all():
                chunk.embedding = embeddings[chunk.id]


# ============== PROCESS REPOSITORY ==============

class ProcessRepository:
    """Repository for AnalyzerProcess rows."""

    def __init__(self, session_factory: SessionFactory = get_db_session):
        self._session = session_factory

    def create(self, mode: str, package_id: Optional[str], **kwargs) -> str:
        """Create a new process record and return its id."""
        with self._session() as db:
            process = AnalyzerProcess(mode=mode, package_id=package_id, failed={}, **kwargs)
            db.add(process)
            db.flush()
            process_id = process.id
        logger.info(f"Created analyzer process: {process_id}")
        return process_id

    def get(self, process_id: str) -> Optional[ProcessRecord]:
        with self._session() as db:
            process = db.query(AnalyzerProcess).filter(AnalyzerProcess.id == process_id).first()
            if not process:
                return None
            return ProcessRecord(
                id=process.id,
                mode=process.mode,
                package_id=process.package_id,
                current_stage=process.current_stage,
                tasks=process.tasks,
                failed=dict(process.failed or {}),
                photo_ids=[
                    photo.id for photo in sorted(process.photos, key=lambda p: (p.created_at, p.id))
                ],
            )

    def update(self, process_id: str, **kwargs) -> bool:
        """Update process columns. JSON columns are replaced, never mutated in place."""
        with self._session() as db:
            process = db.query(AnalyzerProcess).filter(AnalyzerProcess.id == process_id).first()
            if not process:
                return False
            for key, value in kwargs.items():
                if hasattr(process, key):
                    setattr(process, key, value)
                    if key in ("tasks", "failed"):
                        flag_modified(process, key)
            process.updated_at = datetime.utcnow()
            return True
