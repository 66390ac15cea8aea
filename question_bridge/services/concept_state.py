"""
Concept card state - the link model, response snippets and AI stage states.

A concept card collects evidence for one recurring question:
- RECENT: linked news items (what I noticed)
- RESPONSES: short reaction snippets (what I felt / assumed)
- CONCLUSION: the corrected framing ("B statement")
- SCRIPTURE SUPPORT: linked reflections backing the conclusion

All links live in one normalized list of ``LinkRow`` objects. The sequence
view (``recent`` / ``scriptureSupport``) and the legacy A/B evidence view
(``bridge.aEvidence`` / ``bridge.bEvidence``) are both projections of it.

Pure in-memory operations; persistence is handled by ``ConceptSession``.
"""

import copy
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

SOURCE_TYPES = ("news", "reflection")
LINK_TARGETS = ("recent", "scripture_support")
EVIDENCE_SLOTS = ("A", "B")

# Document keys used by the persisted card shape
TARGET_DOCUMENT_KEYS = {
    "recent": "recent",
    "scripture_support": "scriptureSupport",
}
DEFAULT_TARGET_FOR_SOURCE = {
    "news": "recent",
    "reflection": "scripture_support",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_snippet_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _timestamp_to_json(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _timestamp_from_json(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return utcnow()


def normalize_target(target: str) -> str:
    """Accept both ``scripture_support`` and the document key ``scriptureSupport``."""
    if target == "scriptureSupport":
        return "scripture_support"
    if target not in LINK_TARGETS:
        raise ValueError(f"Unknown link target: {target}")
    return target


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SourceRef:
    """Reference to a news item or reflection stored elsewhere."""

    source_type: str
    source_id: str
    source_path: Optional[str] = None

    def __post_init__(self):
        if self.source_type not in SOURCE_TYPES:
            raise ValueError(f"Unknown source type: {self.source_type}")
        if not self.source_id:
            raise ValueError("source_id is required")


@dataclass
class EvidenceEntry:
    """One A/B evidence excerpt recorded against a link row."""

    id: str
    slot: str
    excerpt: str = ""
    why: Optional[str] = None
    title: Optional[str] = None
    pinned: bool = False
    confidence: float = 1.0
    created_by: str = "manual"
    added_at: datetime = field(default_factory=utcnow)

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slot": self.slot,
            "excerpt": self.excerpt,
            "why": self.why,
            "title": self.title,
            "pinned": self.pinned,
            "confidence": self.confidence,
            "createdBy": self.created_by,
            "addedAt": _timestamp_to_json(self.added_at),
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any], slot: Optional[str] = None) -> "EvidenceEntry":
        slot = slot or data.get("slot")
        if slot not in EVIDENCE_SLOTS:
            raise ValueError(f"Unknown evidence slot: {slot}")
        return cls(
            id=data.get("id") or new_snippet_id("evidence"),
            slot=slot,
            excerpt=data.get("excerpt") or "",
            why=data.get("why"),
            title=data.get("title"),
            pinned=bool(data.get("pinned", False)),
            confidence=float(data.get("confidence", 1.0)),
            created_by=data.get("createdBy", "manual"),
            added_at=_timestamp_from_json(data.get("addedAt")),
        )


@dataclass
class LinkRow:
    """One row of the normalized link table.

    A row is unique per ``(target, source_type, source_id)``; every A/B
    evidence excerpt taken from the source is kept in ``evidence``.
    """

    source_type: str
    source_id: str
    target: str
    source_path: Optional[str] = None
    pinned: bool = False
    confidence: float = 1.0
    created_by: str = "manual"
    evidence: List[EvidenceEntry] = field(default_factory=list)
    added_at: datetime = field(default_factory=utcnow)

    def matches(self, source_type: str, source_id: str) -> bool:
        return self.source_type == source_type and self.source_id == source_id

    def to_sequence_item(self) -> Dict[str, Any]:
        item = {
            "sourceType": self.source_type,
            "sourceId": self.source_id,
            "pinned": self.pinned,
            "confidence": self.confidence,
            "addedAt": _timestamp_to_json(self.added_at),
        }
        if self.source_path:
            item["sourcePath"] = self.source_path
        return item

    def to_evidence_item(self, entry: EvidenceEntry) -> Dict[str, Any]:
        return {
            "id": entry.id,
            "sourceId": self.source_id,
            "sourceType": self.source_type,
            "title": entry.title,
            "excerpt": entry.excerpt,
            "why": entry.why,
            "confidence": entry.confidence,
            "pinned": entry.pinned,
            "createdBy": entry.created_by,
            "addedAt": _timestamp_to_json(entry.added_at),
        }


# ---------------------------------------------------------------------------
# Snippets and suggestions
# ---------------------------------------------------------------------------

@dataclass
class ResponseSnippet:
    id: str
    text: str
    pinned: bool = False
    source: str = "manual"  # 'ai', 'manual'
    status: Optional[str] = None  # 'suggested', 'selected', 'rejected' for AI output
    created_at: datetime = field(default_factory=utcnow)

    def to_document(self) -> Dict[str, Any]:
        doc = {
            "id": self.id,
            "text": self.text,
            "pinned": self.pinned,
            "source": self.source,
            "createdAt": _timestamp_to_json(self.created_at),
        }
        if self.status:
            doc["status"] = self.status
        return doc

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "ResponseSnippet":
        return cls(
            id=data.get("id") or new_snippet_id("resp"),
            text=data.get("text", ""),
            pinned=bool(data.get("pinned", False)),
            source=data.get("source", "manual"),
            status=data.get("status"),
            created_at=_timestamp_from_json(data.get("createdAt")),
        )


@dataclass
class ConclusionSuggestion:
    id: str
    text: str
    status: str = "suggested"
    created_at: datetime = field(default_factory=utcnow)

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "status": self.status,
            "createdAt": _timestamp_to_json(self.created_at),
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "ConclusionSuggestion":
        return cls(
            id=data.get("id") or new_snippet_id("ai_concl"),
            text=data.get("text", ""),
            status=data.get("status", "suggested"),
            created_at=_timestamp_from_json(data.get("createdAt")),
        )


@dataclass
class ScriptureSuggestion:
    reflection_id: str
    reason: str
    similarity: Optional[float] = None
    status: str = "suggested"

    def to_document(self) -> Dict[str, Any]:
        return {
            "reflectionId": self.reflection_id,
            "reason": self.reason,
            "similarity": self.similarity,
            "status": self.status,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "ScriptureSuggestion":
        return cls(
            reflection_id=data.get("reflectionId", ""),
            reason=data.get("reason", ""),
            similarity=data.get("similarity"),
            status=data.get("status", "suggested"),
        )


# ---------------------------------------------------------------------------
# Stage states
#
# Every variant carries the suggestions currently on screen. Only a
# successful generation produces a new ``Suggested`` with a different
# list, so a regeneration always replaces the whole list and a failure
# never touches it.
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Idle:
    items: Tuple[Any, ...] = ()
    name = "idle"


@dataclass(frozen=True)
class Loading:
    items: Tuple[Any, ...] = ()
    name = "loading"


@dataclass(frozen=True)
class Suggested:
    items: Tuple[Any, ...] = ()
    name = "suggested"


@dataclass(frozen=True)
class Failed:
    kind: str = "generation"
    message: str = ""
    items: Tuple[Any, ...] = ()
    name = "error"


StageState = Union[Idle, Loading, Suggested, Failed]


def settled(items) -> StageState:
    """State after a user accepted/rejected something: ``Suggested`` or ``Idle``."""
    items = tuple(items)
    return Suggested(items) if items else Idle()


def with_items(state: StageState, items) -> StageState:
    """Keep an in-flight request in flight; otherwise settle (clears a stale error)."""
    if isinstance(state, Loading):
        return Loading(tuple(items))
    return settled(items)


def describe_stage(state: StageState) -> Dict[str, Any]:
    described = {
        "state": state.name,
        "items": [item.to_document() for item in state.items],
    }
    if isinstance(state, Failed):
        described["error"] = {"kind": state.kind, "message": state.message}
    return described


# ---------------------------------------------------------------------------
# Concept state
# ---------------------------------------------------------------------------

@dataclass
class ConceptState:
    """Everything a concept card holds, independent of where it is stored."""

    user_id: str
    concept_name: str = ""
    question: str = ""
    concept_phrase: Optional[str] = None
    conclusion: Optional[str] = None
    a_statement: Optional[str] = None
    b_statement: Optional[str] = None
    user_name: Optional[str] = None
    links: List[LinkRow] = field(default_factory=list)
    responses: List[ResponseSnippet] = field(default_factory=list)
    reactions: StageState = field(default_factory=Idle)
    conclusions: StageState = field(default_factory=Idle)
    scriptures: StageState = field(default_factory=Idle)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def snapshot(self) -> "ConceptState":
        return copy.deepcopy(self)

    # -- links -------------------------------------------------------------

    def links_for(self, target: str) -> List[LinkRow]:
        target = normalize_target(target)
        return [link for link in self.links if link.target == target]

    def find_link(self, target: str, source_id: str,
                  source_type: Optional[str] = None) -> Optional[LinkRow]:
        for link in self.links_for(target):
            if link.source_id == source_id and (source_type is None or link.source_type == source_type):
                return link
        return None

    def add_link(self, target: str, ref: SourceRef, *, pinned: bool = False,
                 confidence: float = 1.0, created_by: str = "manual") -> bool:
        """Append a link unless ``(source_type, source_id)`` is already in ``target``."""
        target = normalize_target(target)
        if not 0.0 <= confidence <= 1.0:
            raise ValueError("confidence must be between 0 and 1")
        if self.find_link(target, ref.source_id, ref.source_type):
            return False
        self.links.append(LinkRow(
            source_type=ref.source_type,
            source_id=ref.source_id,
            source_path=ref.source_path,
            target=target,
            pinned=pinned,
            confidence=confidence,
            created_by=created_by,
        ))
        return True

    def remove_link(self, target: str, source_id: str) -> bool:
        target = normalize_target(target)
        remaining = [
            link for link in self.links
            if not (link.target == target and link.source_id == source_id)
        ]
        removed = len(remaining) != len(self.links)
        self.links = remaining
        return removed

    def toggle_pin(self, target: str, source_id: str) -> Optional[bool]:
        """Flip ``pinned`` on the matching link; returns the new value or None if absent."""
        link = self.find_link(target, source_id)
        if link is None:
            return None
        link.pinned = not link.pinned
        return link.pinned

    def attach_evidence(self, ref: SourceRef, slot: str, *, excerpt: str,
                        why: Optional[str] = None, title: Optional[str] = None,
                        pinned: bool = True) -> LinkRow:
        """Legacy A/B linking, stored as one row visible in both views.

        A source already linked keeps its row (and pin state). Each call
        appends a new evidence entry, available as ``link.evidence[-1]``.
        """
        if slot not in EVIDENCE_SLOTS:
            raise ValueError(f"Unknown evidence slot: {slot}")
        target = DEFAULT_TARGET_FOR_SOURCE[ref.source_type]
        self.add_link(target, ref, pinned=pinned)
        link = self.find_link(target, ref.source_id, ref.source_type)
        if ref.source_path and not link.source_path:
            link.source_path = ref.source_path
        link.evidence.append(EvidenceEntry(
            id=f"{ref.source_type}_{ref.source_id}_{uuid.uuid4().hex[:8]}",
            slot=slot,
            excerpt=excerpt,
            why=why or None,
            title=title,
            pinned=pinned,
        ))
        return link

    # -- responses ---------------------------------------------------------

    def find_response(self, response_id: str) -> Optional[ResponseSnippet]:
        return next((r for r in self.responses if r.id == response_id), None)

    def pinned_response_texts(self) -> List[str]:
        return [r.text for r in self.responses if r.pinned]

    # -- projections -------------------------------------------------------

    def sequence_view(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            TARGET_DOCUMENT_KEYS[target]: [link.to_sequence_item() for link in self.links_for(target)]
            for target in LINK_TARGETS
        }

    def bridge_view(self) -> Dict[str, Any]:
        evidence = {"A": [], "B": []}
        for link in self.links:
            for entry in link.evidence:
                evidence[entry.slot].append(link.to_evidence_item(entry))
        bridge = {"aEvidence": evidence["A"], "bEvidence": evidence["B"]}
        if self.a_statement:
            bridge["aStatement"] = self.a_statement
        if self.b_statement:
            bridge["bStatement"] = self.b_statement
        return bridge

    def sequence_document(self) -> Dict[str, Any]:
        """The ``sequence`` fields that are not derived from the link table."""
        doc = {
            "responses": [r.to_document() for r in self.responses],
            "aiReactionSuggestions": [s.to_document() for s in self.reactions.items],
            "aiConclusionSuggestions": [s.to_document() for s in self.conclusions.items],
            "aiScriptureSuggestions": [s.to_document() for s in self.scriptures.items],
        }
        if self.a_statement is not None:
            doc["aStatement"] = self.a_statement
        return doc

    def to_document(self) -> Dict[str, Any]:
        """Render the persisted concept document shape."""
        sequence = self.sequence_view()
        sequence.update(self.sequence_document())
        doc = {
            "type": "concept",
            "conceptName": self.concept_name,
            "question": self.question,
            "sequence": sequence,
            "bridge": self.bridge_view(),
            "userId": self.user_id,
            "createdAt": _timestamp_to_json(self.created_at),
            "updatedAt": _timestamp_to_json(self.updated_at),
        }
        if self.concept_phrase:
            doc["conceptPhrase"] = self.concept_phrase
        if self.conclusion is not None:
            doc["conclusion"] = self.conclusion
        if self.user_name:
            doc["userName"] = self.user_name
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ConceptState":
        """Load a concept document, folding legacy ``bridge`` evidence into link rows."""
        sequence = doc.get("sequence") or {}
        bridge = doc.get("bridge") or {}
        state = cls(
            user_id=doc.get("userId", ""),
            user_name=doc.get("userName"),
            concept_name=doc.get("conceptName", ""),
            concept_phrase=doc.get("conceptPhrase"),
            question=doc.get("question", ""),
            conclusion=doc.get("conclusion"),
            a_statement=sequence.get("aStatement", bridge.get("aStatement")),
            b_statement=bridge.get("bStatement"),
            created_at=_timestamp_from_json(doc["createdAt"]) if doc.get("createdAt") else None,
            updated_at=_timestamp_from_json(doc["updatedAt"]) if doc.get("updatedAt") else None,
        )

        for target, key in TARGET_DOCUMENT_KEYS.items():
            for item in sequence.get(key) or []:
                ref = SourceRef(item.get("sourceType"), item.get("sourceId"), item.get("sourcePath"))
                if state.add_link(target, ref, pinned=bool(item.get("pinned", False)),
                                  confidence=float(item.get("confidence", 1.0))):
                    state.links[-1].added_at = _timestamp_from_json(item.get("addedAt"))

        for slot, key in (("A", "aEvidence"), ("B", "bEvidence")):
            for evidence in bridge.get(key) or []:
                ref = SourceRef(evidence.get("sourceType"), evidence.get("sourceId"))
                target = DEFAULT_TARGET_FOR_SOURCE[ref.source_type]
                entry = EvidenceEntry.from_document(evidence, slot)
                state.add_link(target, ref, pinned=entry.pinned, created_by=entry.created_by)
                state.find_link(target, ref.source_id, ref.source_type).evidence.append(entry)

        state.load_sequence_fields(sequence)
        return state

    def load_sequence_fields(self, sequence: Dict[str, Any]) -> None:
        """Read responses and AI suggestion lists from a stored ``sequence`` document."""
        self.responses = [ResponseSnippet.from_document(r) for r in sequence.get("responses") or []]
        self.reactions = settled(
            ResponseSnippet.from_document(r) for r in sequence.get("aiReactionSuggestions") or []
        )
        self.conclusions = settled(
            ConclusionSuggestion.from_document(c) for c in sequence.get("aiConclusionSuggestions") or []
        )
        self.scriptures = settled(
            ScriptureSuggestion.from_document(s) for s in sequence.get("aiScriptureSuggestions") or []
        )


# ---------------------------------------------------------------------------
# Card identity
# ---------------------------------------------------------------------------

@dataclass
class DraftCard:
    """A card that has never been stored; all changes stay local until saved."""

    state: ConceptState

    @property
    def is_draft(self) -> bool:
        return True


@dataclass
class PersistedCard:
    """A card with a stored identity."""

    id: str
    state: ConceptState

    @property
    def is_draft(self) -> bool:
        return False


CardHandle = Union[DraftCard, PersistedCard]


def persist_handle(handle: CardHandle, card_id: str) -> PersistedCard:
    """Promote a draft to a persisted card once the store assigned ``card_id``."""
    if isinstance(handle, PersistedCard):
        raise ValueError(f"Card {handle.id} is already persisted")
    return PersistedCard(id=card_id, state=handle.state)


def mark_suggestion(suggestion: ConclusionSuggestion, chosen_id: str) -> ConclusionSuggestion:
    return replace(suggestion, status="selected" if suggestion.id == chosen_id else "rejected")
