"""
Chat-completion client for the tenant's LLM provider (Groq, OpenAI-compatible).

The provider key is supplied per call, so one client serves every tenant.
Provider failures are translated into the ZBØTS error taxonomy:
rejected keys become :class:`AuthenticationRejected`, everything retryable
becomes :class:`TransientIOError`, any other refusal becomes
:class:`ProviderError`.
"""
from __future__ import annotations

import logging

import openai
from openai import AsyncOpenAI

from .exceptions import AuthenticationRejected, ProviderError, TransientIOError

logger = logging.getLogger("zbots.llm")

RESPONSE_TIMEOUT_SECONDS = 60


class ChatClient:
    def __init__(
        self,
        base_url: str,
        model: str,
        system_prompt: str,
        timeout: float = RESPONSE_TIMEOUT_SECONDS,
    ) -> None:
        self.base_url = base_url
        self.model = model
        self.system_prompt = system_prompt
        self.timeout = timeout

    def build_client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(base_url=self.base_url, api_key=api_key, timeout=self.timeout)

    async def complete(self, api_key: str, prompt: str) -> str:
        """
        Send ``prompt`` with the fixed system preamble and return the reply text.
        """
        client = self.build_client(api_key)
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": prompt},
                ],
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise AuthenticationRejected("The LLM provider rejected the API key.") from e
        except (
            openai.APIConnectionError,
            openai.RateLimitError,
            openai.InternalServerError,
        ) as e:
            logger.warning("LLM provider unavailable: %s", type(e).__name__)
            raise TransientIOError("The LLM provider is unavailable.") from e
        except openai.APIStatusError as e:
            logger.error(
                "LLM provider refused the request (HTTP %s, model=%s)", e.status_code, self.model
            )
            raise ProviderError(
                f"The LLM provider refused the request (HTTP {e.status_code})."
            ) from e
        finally:
            await client.close()

        choice = response.choices[0] if response.choices else None
        return (choice.message.content or "").strip() if choice else ""
