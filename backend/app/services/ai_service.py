"""
AI Service for one-shot JSON completions (OpenAI chat, JSON mode)
"""
import json
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from app.core.config import settings
from app.utils.exceptions import ConfigurationError, OrchestratorError

import logging
logger = logging.getLogger(__name__)


class AIService:
    """
    Stateless prompts used by the evidence functions (categorizer,
    summarizer, timeline). Conversations with memory go through the
    orchestrator handlers instead.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise ConfigurationError("OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        return self._client

    async def complete_json(self, prompt: str, model: Optional[str] = None) -> Dict[str, Any]:
        """
        Send a single user prompt and parse the JSON object the model returns.
        """
        completion = await self.client.chat.completions.create(
            model=model or settings.OPENAI_CHAT_MODEL,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
        )
        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise OrchestratorError("AI returned an empty response.")

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"AI returned invalid JSON: {content[:200]}")
            raise OrchestratorError(f"AI returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise OrchestratorError("AI response was not a JSON object.")
        return data


# Singleton instance
ai_service = AIService()
