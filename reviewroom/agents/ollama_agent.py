"""
Ollama-backed model client.
"""

from typing import Any, Dict, List, Optional

import ollama

from .agent import BaseModelClient, ModelMessage
from ..core.config import get_ollama_host


class EmptyModelResponse(Exception):
    """The provider answered but returned no content."""


class OllamaModelClient(BaseModelClient):
    """
    Model client that talks to an Ollama server.
    A fresh ollama.Client is built per call so each attempt gets its own timeout.
    """

    name = "ollama"

    def __init__(self, host: Optional[str] = None, temperature: float = 0.3):
        self.host = host or get_ollama_host()
        self.temperature = temperature

    def chat(self, model: str, messages: List[ModelMessage], timeout: float) -> str:
        client = ollama.Client(host=self.host, timeout=timeout)
        response = client.chat(
            model=model,
            messages=[m.to_dict() for m in messages],
            options={'temperature': self.temperature}
        )

        content = response.get('message', {}).get('content', '')
        if not content or not content.strip():
            raise EmptyModelResponse(f"Empty response from model {model}")
        return content

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status.update({
            'host': self.host,
            'ollama_available': check_ollama_health(self.host)
        })
        return status


def check_ollama_health(host: Optional[str] = None) -> bool:
    """Check if the Ollama server answers a model listing."""
    try:
        ollama.Client(host=host or get_ollama_host(), timeout=5).list()
        return True
    except Exception:
        return False
