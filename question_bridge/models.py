"""
SQLAlchemy models for Question Bridge.

Concept cards keep their authored text and AI suggestion state on the
``concepts`` row; every source link lives in the single normalized
``concept_links`` table, from which both the sequence view and the legacy
A/B evidence view are derived.
"""

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, Text, DateTime, JSON,
    ForeignKey, Index, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid

Base = declarative_base()


def _new_id() -> str:
    return uuid.uuid4().hex


class Concept(Base):
    """User-authored concept card"""
    __tablename__ = "concepts"

    # Identity
    id = Column(String(64), primary_key=True, default=_new_id)
    concept_name = Column(Text, nullable=False, default="")
    concept_phrase = Column(Text)

    # Question Bridge
    question = Column(String(120), nullable=False, default="")

    # Corrected framing (B statement)
    conclusion = Column(Text)
    # Legacy bridge.bStatement, kept for older documents
    b_statement = Column(Text)

    # responses, aStatement and the ai*Suggestions arrays
    sequence = Column(JSON, nullable=False, default=dict)

    # Ownership
    user_id = Column(Text, nullable=False)
    user_name = Column(Text)

    # Metadata
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_concepts_user', 'user_id'),
        Index('idx_concepts_created', 'created_at'),
    )


class ConceptLink(Base):
    """One source item (news or reflection) attached to a concept card"""
    __tablename__ = "concept_links"

    id = Column(String(64), primary_key=True, default=_new_id)
    concept_id = Column(String(64), ForeignKey('concepts.id', ondelete='CASCADE'), nullable=False)

    # Source reference
    source_type = Column(Text, nullable=False)  # 'news', 'reflection'
    source_id = Column(Text, nullable=False)
    source_path = Column(Text)  # reflections may live under different parents

    # Placement
    target = Column(Text, nullable=False)  # 'recent', 'scripture_support'
    position = Column(Integer, nullable=False, default=0)

    # Provenance
    pinned = Column(Boolean, nullable=False, default=False)
    confidence = Column(Float, nullable=False, default=1.0)
    created_by = Column(Text, nullable=False, default='manual')  # 'ai', 'manual'

    # Legacy A/B evidence excerpts: [{id, slot, excerpt, why, title, pinned, ...}]
    evidence = Column(JSON, nullable=False, default=list)

    added_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("source_type IN ('news', 'reflection')", name='valid_link_source_type'),
        CheckConstraint("target IN ('recent', 'scripture_support')", name='valid_link_target'),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name='valid_link_confidence'),
        UniqueConstraint('concept_id', 'target', 'source_type', 'source_id', name='uq_concept_link_source'),
        Index('idx_concept_links_concept', 'concept_id', 'target', 'position'),
    )


class NewsItem(Base):
    """News update that can be linked into a concept's RECENT section"""
    __tablename__ = "news_items"

    id = Column(String(64), primary_key=True, default=_new_id)
    title = Column(Text, nullable=False)
    subtitle = Column(Text)
    content = Column(Text)
    question = Column(String(120))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('idx_news_items_created', 'created_at'),
    )


class Reflection(Base):
    """Personal reflection (memo), usually written against a scripture passage"""
    __tablename__ = "reflections"

    id = Column(String(64), primary_key=True, default=_new_id)
    parent_title = Column(Text)
    parent_path = Column(Text)
    content = Column(Text, nullable=False)
    bible_ref = Column(Text)
    question = Column(String(120))
    user_id = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('idx_reflections_created', 'created_at'),
    )
