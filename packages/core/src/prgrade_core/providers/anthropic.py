from __future__ import annotations

from prgrade_core.providers.base import BaseScorer


class AnthropicScorer(BaseScorer):
    MODEL = "claude-sonnet-4-20250514"
    TEMPERATURE = 0.2
    service = "anthropic"

    def __init__(self, api_key: str, model: str | None = None, timeout: float = 30, max_retries: int = 3):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this provider. "
                "Install it with: pip install 'prgrade[anthropic]'"
            )
        super().__init__(max_retries=max_retries, timeout=timeout)
        self.model = model or self.MODEL
        self.client = Anthropic(api_key=api_key, timeout=timeout, max_retries=0)

    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        from anthropic.types import TextBlock

        response = self.client.messages.create(
            model=self.model,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )
        usage = getattr(response, "usage", None)
        self._record_usage(getattr(usage, "input_tokens", 0), getattr(usage, "output_tokens", 0))
        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        return "".join(text_blocks).strip()
