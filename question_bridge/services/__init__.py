"""Services for Question Bridge."""

from .concept_session import ConceptSession
from .concept_store import ConceptStore
from .generation_client import GenerationClient
from .prompt_manager import PromptManager
from .suggestion_pipeline import SuggestionPipeline

__all__ = [
    'ConceptSession',
    'ConceptStore',
    'GenerationClient',
    'PromptManager',
    'SuggestionPipeline',
]
