"""Text generation providers."""

from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional

import ollama

from knowledge_rag.utils.config import Settings, get_settings
from knowledge_rag.utils.logger import get_logger

logger = get_logger()


@dataclass
class GenerationOptions:
    """Per-request generation parameters."""
    system_prompt: str
    temperature: float = 0.7
    max_tokens: int = 2048

    @classmethod
    def from_settings(cls, system_prompt: str, settings: Optional[Settings] = None) -> "GenerationOptions":
        settings = settings or get_settings()
        return cls(
            system_prompt=system_prompt,
            temperature=settings.response_temperature,
            max_tokens=settings.max_response_tokens,
        )


class GenerationProvider(ABC):
    """Prompt to text backend."""

    @abstractmethod
    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        """
        Generate a complete response.

        Args:
            prompt: User prompt (question plus retrieved context)
            options: Generation parameters

        Returns:
            Response text
        """
        pass

    @abstractmethod
    def stream(self, prompt: str, options: GenerationOptions) -> AsyncIterator[str]:
        """
        Generate a response incrementally.

        Implementations are async generators; closing the iterator must
        release the underlying connection.

        Args:
            prompt: User prompt (question plus retrieved context)
            options: Generation parameters

        Yields:
            Response text chunks
        """
        pass


class OllamaGenerationProvider(GenerationProvider):
    """Chat completion through an Ollama server."""

    def __init__(
        self,
        client: Optional[ollama.AsyncClient] = None,
        model: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.model = model or self.settings.ollama_model_name
        self.client = client or ollama.AsyncClient(
            host=self.settings.ollama_base_url,
            timeout=self.settings.request_timeout_seconds,
        )

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        logger.debug(f"Calling Ollama with model {self.model} (prompt length: {len(prompt)})")

        response = await self.client.chat(
            model=self.model,
            messages=self._messages(prompt, options),
            options=self._options(options),
        )

        response_text = response["message"]["content"]

        logger.debug(f"LLM generated {len(response_text)} characters")
        return response_text

    async def stream(self, prompt: str, options: GenerationOptions) -> AsyncIterator[str]:
        logger.debug(f"Streaming from Ollama with model {self.model} (prompt length: {len(prompt)})")

        chunks = await self.client.chat(
            model=self.model,
            messages=self._messages(prompt, options),
            options=self._options(options),
            stream=True,
        )

        async with aclosing(chunks) as stream:
            async for chunk in stream:
                content = chunk["message"]["content"]
                if content:
                    yield content

    @staticmethod
    def _messages(prompt: str, options: GenerationOptions) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": options.system_prompt},
            {"role": "user", "content": prompt},
        ]

    @staticmethod
    def _options(options: GenerationOptions) -> Dict[str, float]:
        return {
            "temperature": options.temperature,
            "num_predict": options.max_tokens,
        }
