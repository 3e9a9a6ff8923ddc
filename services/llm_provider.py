import logging
import os
from typing import Dict, List, Optional, Sequence

from openai import OpenAI, OpenAIError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = os.getenv("MILLENNION_OPENAI_MODEL", "gpt-4.1-mini")
DEFAULT_MAX_OUTPUT_TOKENS = int(os.getenv("MILLENNION_MAX_OUTPUT_TOKENS", "900"))


class LLMError(RuntimeError):
    pass


def format_history(history: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:
    """
    Convierte el historial del frontend ({sender, text}) al formato de mensajes.
    sender == "user" -> user, cualquier otro -> assistant.
    """
    out: List[Dict[str, str]] = []
    for msg in history or []:
        text = (msg.get("text") or "").strip()
        if not text:
            continue
        role = "user" if (msg.get("sender") or "").strip().lower() == "user" else "assistant"
        out.append({"role": role, "content": text})
    return out


class LLMProvider:
    """Cliente perezoso: no falla al importar si falta OPENAI_API_KEY."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
    ) -> None:
        self._api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY", "")
        self._client: Optional[OpenAI] = None
        self.model = model
        self.max_output_tokens = max_output_tokens

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self._api_key:
                raise LLMError("Falta OPENAI_API_KEY")
            self._client = OpenAI(api_key=self._api_key)
        return self._client

    def generate(
        self,
        system_prompt: str,
        prompt: str,
        history: Sequence[Dict[str, str]] = (),
    ) -> str:
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(format_history(history))
        messages.append({"role": "user", "content": prompt})

        try:
            resp = self._get_client().responses.create(
                model=self.model,
                input=messages,
                max_output_tokens=self.max_output_tokens,
            )
        except OpenAIError as e:
            logger.error("OpenAI error (model=%s): %r", self.model, e)
            raise LLMError(str(e)) from e

        return (resp.output_text or "").strip()
