"""Exception taxonomy for the linking workflow and the AI suggestion pipeline."""


class QuestionBridgeError(Exception):
    """Base class for domain errors surfaced to API callers."""

    kind = "error"


class PreconditionError(QuestionBridgeError):
    """A stage was triggered before its inputs exist (no news, no pinned response, no conclusion)."""

    kind = "precondition"


class GenerationDisabledError(QuestionBridgeError):
    """The text-generation collaborator is not configured."""

    kind = "disabled"


class GenerationFailedError(QuestionBridgeError):
    """The text-generation collaborator returned an error or unusable output."""

    kind = "generation"


class StageBusyError(QuestionBridgeError):
    """A stage was triggered while a request for the same stage is still in flight."""

    kind = "busy"


class PersistenceError(QuestionBridgeError):
    """The store never acknowledged a write; the in-memory change was rolled back."""

    kind = "persistence"


class DraftCardError(QuestionBridgeError):
    """The operation needs a card that already has a stored identity."""

    kind = "draft"
