"""Client for the local text-generation (Ollama chat) endpoint."""

import logging
from typing import Any, Dict, List

from venue_pipeline.core.remote import post_with_failover

logger = logging.getLogger(__name__)


class OllamaError(RuntimeError):
    """Raised when the chat response carries no message content."""


def chat(
    base_url: str,
    *,
    model: str,
    messages: List[Dict[str, str]],
    options: Dict[str, Any],
    timeout: float = 30,
) -> str:
    """Send a non-streaming chat request and return the assistant message content."""
    _endpoint, response = post_with_failover(
        [f"{base_url}/api/chat"],
        json={
            "model": model,
            "messages": messages,
            "stream": False,
            "format": "json",
            "options": options,
        },
        timeout=timeout,
    )
    try:
        payload = response.json()
    except ValueError as exc:
        raise OllamaError("chat endpoint returned a non-JSON body") from exc

    content = (payload.get("message") or {}).get("content") if isinstance(payload, dict) else None
    if not isinstance(content, str):
        raise OllamaError(f"chat response missing message content: {str(payload)[:200]}")
    return content
