"""Shared Pydantic request/response models used across multiple routers."""
from pydantic import BaseModel, Field
from typing import Dict, List, Any, Optional


class SourceRefModel(BaseModel):
    source_type: str  # "news" | "reflection"
    source_id: str
    source_path: Optional[str] = None

class CreateConceptRequest(BaseModel):
    user_id: str
    user_name: Optional[str] = None
    concept_name: str
    question: str
    concept_phrase: Optional[str] = None
    conclusion: Optional[str] = None
    a_statement: Optional[str] = None
    recent: List[SourceRefModel] = Field(default_factory=list)
    scripture_support: List[SourceRefModel] = Field(default_factory=list)
    responses: List[str] = Field(default_factory=list)

class UpdateConceptRequest(BaseModel):
    concept_name: Optional[str] = None
    question: Optional[str] = None
    concept_phrase: Optional[str] = None

class AddLinkRequest(BaseModel):
    target: str  # "recent" | "scripture_support" | "scriptureSupport"
    source_type: str
    source_id: str
    source_path: Optional[str] = None

class LinkEvidenceRequest(BaseModel):
    """Legacy "link to concept" payload with an explicit A/B slot."""
    slot: str  # "A" | "B"
    source_type: str
    source_id: str
    source_path: Optional[str] = None
    excerpt: str
    why: Optional[str] = None
    title: Optional[str] = None
    pinned: bool = True

class ResponseTextRequest(BaseModel):
    text: str

class StatementRequest(BaseModel):
    text: str

class ConceptCreatedResponse(BaseModel):
    id: str
    concept: Dict[str, Any]

class ConceptsListResponse(BaseModel):
    concepts: List[Dict[str, Any]]
    count: int

class ImportConceptRequest(BaseModel):
    document: Dict[str, Any]

class QuestionValidationRequest(BaseModel):
    question: str

class QuestionValidationResponse(BaseModel):
    valid: bool
    error: Optional[str] = None

class SimilarityRequest(BaseModel):
    first: str
    second: str

class SimilarityResponse(BaseModel):
    score: float

class RelatedQuestionsRequest(BaseModel):
    question: str
    exclude_id: Optional[str] = None
    exclude_type: Optional[str] = None
    threshold: Optional[float] = None

class CreateNewsRequest(BaseModel):
    title: str
    subtitle: Optional[str] = None
    content: Optional[str] = None
    question: Optional[str] = None

class CreateReflectionRequest(BaseModel):
    content: str
    parent_title: Optional[str] = None
    parent_path: Optional[str] = None
    bible_ref: Optional[str] = None
    question: Optional[str] = None
    user_id: Optional[str] = None
