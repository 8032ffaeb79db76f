from __future__ import annotations

from .base import AIClient, LLMError


class OllamaClient(AIClient):
    """HTTP client for a local Ollama server's generate API."""

    name = "ollama"

    def __init__(
        self,
        *,
        host: str = "http://localhost:11434",
        model: str = "llama3.1:8b-instruct",
        temperature: float = 0.3,
    ) -> None:
        self.host = host.rstrip("/")
        self.model = model
        self.temperature = temperature

    def complete(self, prompt: str, *, timeout: float) -> str:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": self.temperature},
        }
        data = self._post(f"{self.host}/api/generate", payload, timeout=timeout)
        # Ollama returns {'response': '...'}
        text = (data.get("response") or "").strip() if isinstance(data, dict) else ""
        if not text:
            raise LLMError("ollama returned an empty completion", retryable=True)
        return text
