"""
OpenAI-compatible language model provider

Works against the OpenAI API or any compatible endpoint (a local Ollama
server via base_url, for example). Each call is bounded by a request
timeout; there is no other cancellation.
"""

import asyncio
import os
import time
from typing import Any, Dict, Optional

from loguru import logger
from openai import AsyncOpenAI

from mazemind.errors import CapabilityUnavailableError
from mazemind.providers.base import GenerateOptions, LLMProvider

TAG = __name__

DEFAULT_SYSTEM_PROMPT = (
    "You are Arth, a former engineer trapped in a maze, trying to find the exit "
    "while managing hunger, thirst and energy. Answer in the exact format requested."
)


class OpenAIProvider(LLMProvider):
    """Chat-completions provider"""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ):
        """
        Args:
            api_key: API key, defaults to OPENAI_API_KEY
            base_url: endpoint override (local servers need no key)
            model: chat model name
            timeout: per-request timeout in seconds
            system_prompt: system message sent with every prompt
        """
        self.model = model
        self.timeout = timeout
        self.system_prompt = system_prompt
        self.client: Optional[AsyncOpenAI] = None

        # statistics
        self.total_calls = 0
        self.failed_calls = 0
        self.total_latency = 0.0

        api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not api_key and base_url:
            # local OpenAI-compatible servers ignore the key
            api_key = "not-needed"

        if api_key:
            try:
                self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
                logger.bind(tag=TAG).info(f"OpenAI provider initialized: model={model}, base_url={base_url}")
            except Exception as e:
                logger.bind(tag=TAG).error(f"Failed to initialize OpenAI client: {e}")
                self.client = None
        else:
            logger.bind(tag=TAG).warning("No API key configured, language model unavailable")

    def is_available(self) -> bool:
        return self.client is not None

    async def generate(self, prompt: str, options: Optional[GenerateOptions] = None) -> str:
        if self.client is None:
            raise CapabilityUnavailableError("OpenAI client not initialized")

        options = options or GenerateOptions()
        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": prompt},
        ]
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        if options.stop:
            kwargs["stop"] = options.stop

        self.total_calls += 1
        started = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(**kwargs),
                timeout=self.timeout,
            )
        except Exception:
            self.failed_calls += 1
            raise
        finally:
            self.total_latency += time.monotonic() - started

        content = response.choices[0].message.content or ""
        logger.bind(tag=TAG).debug(f"LLM response ({len(content)} chars): {content[:80]}...")
        return content

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "provider": self.name,
            "model": self.model,
            "available": self.is_available(),
            "total_calls": self.total_calls,
            "failed_calls": self.failed_calls,
            "avg_latency": self.total_latency / self.total_calls if self.total_calls else 0.0,
        }
