"""
SQLAlchemy database models for the photo analyzer.

Schema:
- Photo: a photographic item; owned by at most one AnalyzerProcess
- Tag: a (name, group) pair with an optional text embedding
- TagPhoto: association between photos and tags
- DescriptionChunk: a slice of one description category of a photo
- AnalyzerProcess: durable record of one pipeline run

Vectors are stored as JSON arrays so the schema runs on any backend.
"""
from datetime import datetime
from sqlalchemy import (
    Column, String, Integer, DateTime, Text,
    ForeignKey, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship, declarative_base
import uuid

Base = declarative_base()


def generate_uuid() -> str:
    """Generate a short UUID."""
    return str(uuid.uuid4())[:8]


class AnalyzerProcess(Base):
    """
    One pipeline run over a set of photos.
    
    `tasks` holds the serialized task descriptors of the run package and
    `failed` maps photo id -> task name of the last failure.
    """
    __tablename__ = "analyzer_processes"
    
    id = Column(String(36), primary_key=True, default=generate_uuid)
    mode = Column(String(20), nullable=False, default="first")
    package_id = Column(String(64), nullable=True)
    current_stage = Column(String(50), nullable=False, default="init")
    tasks = Column(JSON, nullable=True)
    failed = Column(JSON, nullable=False, default=dict)
    
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    photos = relationship("Photo", back_populates="analyzer_process")


class Photo(Base):
    """A photo and the analysis outputs written back to it."""
    __tablename__ = "photos"
    
    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    url = Column(Text, nullable=True)
    title = Column(String(255), nullable=True)
    model = Column(String(100), nullable=True)
    
    descriptions = Column(JSON, nullable=True)  # {category: text | object}
    embedding = Column(JSON(none_as_null=True), nullable=True)
    color_palette = Column(JSON, nullable=True)
    color_array = Column(JSON, nullable=True)
    detections = Column(JSON, nullable=True)
    
    analyzer_process_id = Column(
        String(36), ForeignKey("analyzer_processes.id", ondelete="SET NULL"), nullable=True, index=True
    )
    
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    analyzer_process = relationship("AnalyzerProcess", back_populates="photos")
    tags = relationship("TagPhoto", back_populates="photo", cascade="all, delete-orphan")
    description_chunks = relationship("DescriptionChunk", back_populates="photo", cascade="all, delete-orphan")


class Tag(Base):
    """A tag, unique by (name, group)."""
    __tablename__ = "tags"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    group = Column(String(255), nullable=True)
    embedding = Column(JSON(none_as_null=True), nullable=True)
    
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    photos = relationship("TagPhoto", back_populates="tag")
    
    __table_args__ = (
        UniqueConstraint("name", "group", name="uq_tags_name_group"),
    )


class TagPhoto(Base):
    """Pivot between photos and tags."""
    __tablename__ = "tags_photos"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    photo_id = Column(String(36), ForeignKey("photos.id", ondelete="CASCADE"), nullable=False)
    tag_id = Column(Integer, ForeignKey("tags.id", ondelete="CASCADE"), nullable=False)
    category = Column(String(50), nullable=True)
    area = Column(String(20), nullable=True)
    
    photo = relationship("Photo", back_populates="tags")
    tag = relationship("Tag", back_populates="photos")
    
    __table_args__ = (
        Index("ix_tags_photos_photo_tag", "photo_id", "tag_id"),
    )


class DescriptionChunk(Base):
    """One chunk of a photo description category."""
    __tablename__ = "descriptions_chunks"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    photo_id = Column(String(36), ForeignKey("photos.id", ondelete="CASCADE"), nullable=False)
    category = Column(String(50), nullable=False)
    area = Column(String(20), nullable=True)  # left | right | middle
    chunk = Column(Text, nullable=False)
    embedding = Column(JSON(none_as_null=True), nullable=True)
    
    photo = relationship("Photo", back_populates="description_chunks")
    
    __table_args__ = (
        Index("ix_descriptions_chunks_photo_category", "photo_id", "category"),
    )
