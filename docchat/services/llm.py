from typing import Dict, List, Tuple

import httpx
from openai import AsyncOpenAI, OpenAIError
import structlog

from ..errors import GenerationFailed

logger = structlog.get_logger(logger_name=__name__)

PERPLEXITY_BASE_URL = "https://api.perplexity.ai"
PERPLEXITY_FALLBACK_MODELS = ["sonar", "sonar-pro"]


class TextGenerator:
    """Chat-style completion: a system prompt plus one user message in, text out.

    Talks to OpenAI through the shared ``AsyncOpenAI`` client or to Perplexity
    over ``httpx``, depending on ``provider``.
    """

    def __init__(
        self,
        provider: str = "openai",
        *,
        openai_client: AsyncOpenAI | None = None,
        openai_model: str = "gpt-4o-mini",
        http_client: httpx.AsyncClient | None = None,
        perplexity_api_key: str = "",
        perplexity_model: str = "sonar",
        temperature: float = 0.1,
    ) -> None:
        self.provider = (provider or "openai").lower()
        self._openai = openai_client
        self.openai_model = openai_model
        self._http = http_client
        self._pplx_key = perplexity_api_key
        self.perplexity_model = perplexity_model
        self.temperature = temperature

    @property
    def model_name(self) -> str:
        return self.perplexity_model if self.provider == "perplexity" else self.openai_model

    async def generate(self, system: str, user: str) -> Tuple[str, str]:
        """Return (text, model_used)."""
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        if self.provider == "perplexity":
            return await self._pplx_chat(messages)
        return await self._openai_chat(messages)

    async def _openai_chat(self, messages: List[Dict[str, str]]) -> Tuple[str, str]:
        if self._openai is None:
            raise GenerationFailed("OpenAI client is not configured")
        try:
            chat = await self._openai.chat.completions.create(
                model=self.openai_model,
                messages=messages,
                temperature=self.temperature,
            )
        except OpenAIError as e:
            raise GenerationFailed(f"OpenAI chat completion failed: {e}") from e
        choices = getattr(chat, "choices", None)
        message = getattr(choices[0], "message", None) if choices else None
        if message is None:
            raise GenerationFailed("OpenAI chat completion returned no choices")
        text = message.content or ""
        return text, getattr(chat, "model", None) or self.openai_model

    async def _pplx_chat(self, messages: List[Dict[str, str]]) -> Tuple[str, str]:
        if not self._pplx_key:
            raise GenerationFailed("PERPLEXITY_API_KEY is not set")
        if self._http is None:
            raise GenerationFailed("HTTP client is not configured")

        headers = {
            "Authorization": f"Bearer {self._pplx_key}",
            "Content-Type": "application/json",
        }
        # Preserve order and uniqueness
        seen = set()
        candidates = [self.perplexity_model] + PERPLEXITY_FALLBACK_MODELS
        models_to_try = [m for m in candidates if m and not (m in seen or seen.add(m))]

        last_detail = None
        for model in models_to_try:
            payload = {"model": model, "messages": messages, "temperature": self.temperature}
            try:
                resp = await self._http.post(f"{PERPLEXITY_BASE_URL}/chat/completions", json=payload, headers=headers)
            except httpx.HTTPError as e:
                raise GenerationFailed(f"Perplexity request failed: {e}") from e
            if resp.status_code == 400:
                try:
                    detail_json = resp.json()
                except ValueError:
                    detail_json = {"text": resp.text}
                err = detail_json.get("error", {}) if isinstance(detail_json, dict) else {}
                if isinstance(err, dict) and err.get("type") == "invalid_model":
                    logger.warning("perplexity_invalid_model", model=model)
                    last_detail = detail_json
                    continue
            if resp.is_error:
                raise GenerationFailed(f"Perplexity API error {resp.status_code}: {resp.text[:500]}")
            try:
                data = resp.json()
            except ValueError as e:
                raise GenerationFailed(f"Perplexity returned a non-JSON body: {resp.text[:200]}") from e
            return _pplx_content(data), (data.get("model") or model)

        raise GenerationFailed(
            f"Perplexity API invalid_model for all candidates: {models_to_try}. Last detail: {last_detail}"
        )


def _pplx_content(data) -> str:
    if not isinstance(data, dict):
        raise GenerationFailed(f"Perplexity returned unexpected JSON: {str(data)[:200]}")
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise GenerationFailed("Perplexity response has no choices")
    message = choices[0].get("message")
    if not isinstance(message, dict):
        raise GenerationFailed("Perplexity response choice has no message")
    return message.get("content") or ""
