from __future__ import annotations

from .base import AIClient, LLMError

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"


class GeminiClient(AIClient):
    """HTTP client for Gemini via the Google AI Studio API."""

    name = "gemini"

    def __init__(self, api_key: str, *, model: str = "gemini-1.5-flash", temperature: float = 0.3) -> None:
        if not api_key:
            raise ValueError("GEMINI_API_KEY is required for the gemini backend")
        self.api_key = api_key
        self.model = model
        self.temperature = temperature

    def complete(self, prompt: str, *, timeout: float) -> str:
        url = f"{GEMINI_API_BASE}/{self.model}:generateContent"
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": self.temperature},
        }
        data = self._post(url, payload, timeout=timeout, headers={"x-goog-api-key": self.api_key})
        # Extract text from the first candidate
        candidates = (data.get("candidates") or []) if isinstance(data, dict) else []
        if not candidates:
            raise LLMError("gemini returned no candidates", retryable=True)
        parts = candidates[0].get("content", {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts).strip()
        if not text:
            raise LLMError("gemini returned an empty completion", retryable=True)
        return text
