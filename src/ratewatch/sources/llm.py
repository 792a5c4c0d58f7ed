"""LLM providers for the narrative reports.

Providers are tried in order (Gemini, then Hugging Face); the first one
that answers wins. A provider without an API key is not constructed.
"""

from abc import ABC, abstractmethod

from ratewatch.config import AISettings
from ratewatch.exceptions import DataIntegrityError, NarrativeUnavailableError, UpstreamError
from ratewatch.logging import get_logger
from ratewatch.sources.http import HttpClient

logger = get_logger(__name__)

_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
_HF_URL = "https://api-inference.huggingface.co/models/{model}"


class NarrativeProvider(ABC):
    """Text generation backend."""

    name: str

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """Return generated text or raise UpstreamError."""
        ...


class GeminiProvider(NarrativeProvider):
    name = "gemini"

    def __init__(self, http: HttpClient, settings: AISettings) -> None:
        self._http = http
        self._settings = settings

    async def generate(self, prompt: str) -> str:
        data = await self._http.post_json(
            self.name,
            _GEMINI_URL.format(model=self._settings.gemini_model),
            {"contents": [{"parts": [{"text": prompt}]}]},
            headers={"x-goog-api-key": self._settings.gemini_api_key.get_secret_value()},
            timeout=self._settings.timeout_seconds,
        )
        try:
            parts = data["candidates"][0]["content"]["parts"]
            return "".join(part.get("text", "") for part in parts).strip()
        except (KeyError, IndexError, TypeError) as exc:
            raise DataIntegrityError(self.name, "no candidate text in response") from exc


class HuggingFaceProvider(NarrativeProvider):
    name = "huggingface"

    def __init__(self, http: HttpClient, settings: AISettings) -> None:
        self._http = http
        self._settings = settings

    async def generate(self, prompt: str) -> str:
        data = await self._http.post_json(
            self.name,
            _HF_URL.format(model=self._settings.huggingface_model),
            {
                "inputs": f"<s>[INST] {prompt} [/INST]",
                "parameters": {
                    "max_new_tokens": 1000,
                    "return_full_text": False,
                    "temperature": 0.7,
                },
            },
            headers={
                "Authorization": f"Bearer {self._settings.huggingface_api_key.get_secret_value()}"
            },
            timeout=self._settings.timeout_seconds,
        )
        if isinstance(data, dict) and data.get("error"):
            raise UpstreamError(self.name, str(data["error"]))
        if isinstance(data, list) and data and data[0].get("generated_text"):
            return data[0]["generated_text"].strip()
        raise DataIntegrityError(self.name, "no generated_text in response")


class NarrativeGenerator:
    """Runs a prompt through the provider chain."""

    def __init__(self, providers: list[NarrativeProvider]) -> None:
        self._providers = providers

    @classmethod
    def from_settings(cls, http: HttpClient, settings: AISettings) -> "NarrativeGenerator":
        providers: list[NarrativeProvider] = []
        if settings.gemini_api_key.get_secret_value():
            providers.append(GeminiProvider(http, settings))
        if settings.huggingface_api_key.get_secret_value():
            providers.append(HuggingFaceProvider(http, settings))
        if not providers:
            logger.warning("no_ai_provider_configured")
        return cls(providers)

    @property
    def available(self) -> bool:
        return bool(self._providers)

    async def generate(self, prompt: str) -> str:
        """Return the first successful provider answer.

        Raises:
            NarrativeUnavailableError: No provider configured or all failed.
        """
        errors = []
        for provider in self._providers:
            try:
                text = await provider.generate(prompt)
            except UpstreamError as exc:
                logger.warning("ai_provider_failed", provider=provider.name, error=str(exc))
                errors.append(str(exc))
                continue
            if text:
                logger.info("ai_provider_answered", provider=provider.name)
                return text
            errors.append(f"{provider.name}: empty answer")
        last = errors[-1] if errors else "no provider configured"
        raise NarrativeUnavailableError(f"No AI provider produced a report. Last error: {last}")
