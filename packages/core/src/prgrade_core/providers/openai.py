from __future__ import annotations

from openai import OpenAI

from prgrade_core.providers.base import BaseScorer


class OpenAIScorer(BaseScorer):
    MODEL = "gpt-4o-mini"
    BASE_URL: str | None = None
    # Low temperature keeps the JSON structure stable across retries.
    TEMPERATURE = 0.2
    service = "openai"

    def __init__(self, api_key: str, model: str | None = None, timeout: float = 30, max_retries: int = 3):
        super().__init__(max_retries=max_retries, timeout=timeout)
        self.model = model or self.MODEL
        # SDK-level retries are disabled; BaseScorer owns the retry loop.
        self.client = OpenAI(api_key=api_key, base_url=self.BASE_URL, timeout=timeout, max_retries=0)

    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )
        usage = getattr(response, "usage", None)
        self._record_usage(getattr(usage, "prompt_tokens", 0), getattr(usage, "completion_tokens", 0))
        return response.choices[0].message.content or ""


class GroqScorer(OpenAIScorer):
    """Groq serves an OpenAI-compatible chat completions API."""

    MODEL = "llama-3.3-70b-versatile"
    BASE_URL = "https://api.groq.com/openai/v1"
    service = "groq"
