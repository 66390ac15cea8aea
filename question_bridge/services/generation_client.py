"""
Text-generation collaborator for the AI suggestion pipeline.

Three touch points, each returning a ``GenerationResult`` instead of raising:
1. News item -> reaction snippets (feelings, tension, misunderstanding)
2. Pinned reactions -> conclusion candidates (corrected framing)
3. Conclusion + reflection pool -> supporting reflections

The model only opens up thinking: it suggests, the author decides. Nothing
returned here is committed until the author accepts it.

Online mode calls Claude through the Anthropic SDK; local mode talks to an
OpenAI-compatible server over httpx.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import anthropic
import httpx

from question_bridge.config import REFLECTION_PREVIEW_CHARS, SCRIPTURE_POOL_LIMIT
from question_bridge.services.llm_config import get_env_llm_defaults, is_ai_enabled
from question_bridge.services.local_llm_client import extract_json_from_text, local_chat_json, preview_text
from question_bridge.services.prompt_manager import PromptManager, get_prompt_manager

logger = logging.getLogger(__name__)

AI_DISABLED_MESSAGE = "AI features are not configured"


@dataclass
class GenerationResult:
    success: bool
    items: List[Any] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class ScriptureCandidate:
    reflection_id: str
    reason: str
    similarity: float


def _clean_strings(values: Any) -> List[str]:
    if not isinstance(values, list):
        raise ValueError("Expected a JSON list of strings")
    return [str(v).strip() for v in values if isinstance(v, (str, int, float)) and str(v).strip()]


def format_reflection_pool(pool: List[Dict[str, Any]]) -> str:
    lines = []
    for index, reflection in enumerate(pool):
        bible_ref = reflection.get("bibleRef")
        prefix = f"({bible_ref}) " if bible_ref else ""
        content = (reflection.get("content") or "")[:REFLECTION_PREVIEW_CHARS]
        lines.append(f"[{index}] {prefix}{content}...")
    return "\n".join(lines)


def rank_scripture_candidates(raw: Any, pool: List[Dict[str, Any]]) -> List[ScriptureCandidate]:
    """Map index-based picks back to reflection ids; rank decides similarity."""
    if not isinstance(raw, list):
        raise ValueError("Expected a JSON list of scripture candidates")

    candidates: List[ScriptureCandidate] = []
    seen = set()
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        try:
            index = int(entry.get("index"))
        except (TypeError, ValueError):
            continue
        if index < 0 or index >= len(pool) or index in seen:
            continue
        seen.add(index)
        rank = len(candidates)
        candidates.append(ScriptureCandidate(
            reflection_id=pool[index]["id"],
            reason=str(entry.get("reason") or "").strip(),
            similarity=round(max(0.0, 1 - rank * 0.1), 2),
        ))
    return candidates


class GenerationClient:
    """Gateway to the text-generation model used by the suggestion pipeline."""

    def __init__(self, llm_config: Optional[Dict[str, Any]] = None,
                 prompt_manager: Optional[PromptManager] = None,
                 anthropic_client: Optional[anthropic.AsyncAnthropic] = None):
        self.config = llm_config or get_env_llm_defaults()
        self.prompt_manager = prompt_manager or get_prompt_manager()
        self._anthropic = anthropic_client

    def is_enabled(self) -> bool:
        return is_ai_enabled(self.config)

    def _anthropic_client(self) -> anthropic.AsyncAnthropic:
        if self._anthropic is None:
            self._anthropic = anthropic.AsyncAnthropic(api_key=self.config.get("anthropic_api_key"))
        return self._anthropic

    async def _complete_json(self, prompt_name: str, variables: Dict[str, Any]) -> Any:
        """Render a prompt, call the model and return the payload under the prompt's result key."""
        prompt = self.prompt_manager.render_prompt(prompt_name, variables)
        metadata = self.prompt_manager.get_prompt_metadata(prompt_name)
        temperature = metadata["temperature"]
        max_tokens = metadata["max_tokens"]

        if self.config.get("mode") == "local":
            parsed = await local_chat_json(self.config, prompt, temperature=temperature, max_tokens=max_tokens)
        else:
            message = await self._anthropic_client().messages.create(
                model=self.config.get("anthropic_model"),
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[{"role": "user", "content": prompt}],
            )
            text = message.content[0].text
            logger.debug("[%s] raw response: %s", prompt_name, preview_text(text))
            parsed = extract_json_from_text(text)

        result_key = metadata.get("result_key")
        if result_key:
            if not isinstance(parsed, dict) or result_key not in parsed:
                raise ValueError(f"Response is missing '{result_key}'")
            return parsed[result_key]
        return parsed

    async def _run(self, prompt_name: str, variables: Dict[str, Any], convert) -> GenerationResult:
        if not self.is_enabled():
            return GenerationResult(success=False, error=AI_DISABLED_MESSAGE)
        try:
            raw = await self._complete_json(prompt_name, variables)
            return GenerationResult(success=True, items=convert(raw))
        except (anthropic.APIError, httpx.HTTPError) as e:
            logger.error("AI %s request failed: %s", prompt_name, e)
            return GenerationResult(success=False, error=str(e))
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            logger.error("AI %s response could not be parsed: %s", prompt_name, e)
            return GenerationResult(success=False, error=f"Failed to parse AI response: {e}")

    async def generate_reaction_snippets(self, news_title: str, news_content: str,
                                         concept_name: str) -> GenerationResult:
        """Three short inner reactions a reader might have to the news item."""
        return await self._run(
            "reaction_snippets",
            {
                "news_title": news_title,
                "news_content": news_content,
                "concept_name": concept_name,
            },
            _clean_strings,
        )

    async def generate_conclusion_candidates(self, pinned_reactions: List[str], concept_name: str,
                                             question: str) -> GenerationResult:
        """Conclusion sentences in the "not ___ but rather ___" frame."""
        reactions = "\n".join(f"{i + 1}. {text}" for i, text in enumerate(pinned_reactions))
        return await self._run(
            "conclusion_candidates",
            {
                "reactions": reactions,
                "concept_name": concept_name,
                "question": question,
            },
            _clean_strings,
        )

    async def recommend_scriptures(self, conclusion: str,
                                   reflections: List[Dict[str, Any]]) -> GenerationResult:
        """Reflections that support ``conclusion``, best first."""
        if not self.is_enabled():
            return GenerationResult(success=False, error=AI_DISABLED_MESSAGE)
        if not reflections:
            return GenerationResult(success=True, items=[])

        pool = reflections[:SCRIPTURE_POOL_LIMIT]
        return await self._run(
            "scripture_recommendations",
            {
                "conclusion": conclusion,
                "reflections": format_reflection_pool(pool),
            },
            lambda raw: rank_scripture_candidates(raw, pool),
        )


_generation_client: Optional[GenerationClient] = None


def get_generation_client() -> GenerationClient:
    global _generation_client
    if _generation_client is None:
        _generation_client = GenerationClient()
    return _generation_client
