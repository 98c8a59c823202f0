"""
OpenAI chat completion client for RAG answers.

Uses a persistent aiohttp session (connection pooling) so each RAG turn only
pays for the request itself.
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from rag_relay.errors import CompletionError

logger = logging.getLogger(__name__)


class CompletionClient:
    """
    Non-streaming chat completion client.

    Features:
    - Single request per answer, bounded output length
    - Persistent HTTP connection pool
    - Every failure surfaces as CompletionError
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        organization_id: Optional[str] = None,
        project_id: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1/chat/completions",
    ):
        self.api_key = api_key
        self.model = model
        self.organization_id = organization_id
        self.project_id = project_id
        self.base_url = base_url

        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create persistent aiohttp session with connection pooling."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,  # Max 10 concurrent connections
                ttl_dns_cache=300,  # Cache DNS for 5 minutes
                keepalive_timeout=120,
            )

            timeout = aiohttp.ClientTimeout(
                total=30,
                connect=3,
                sock_read=10
            )

            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout
            )
            logger.info("Created persistent OpenAI session with connection pooling")

        return self._session

    async def close(self):
        """Close persistent session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.info("Closed OpenAI persistent session")

    def _headers(self) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self.organization_id:
            headers["OpenAI-Organization"] = self.organization_id
        if self.project_id:
            headers["OpenAI-Project"] = self.project_id
        return headers

    async def complete(
        self,
        system: str,
        user: str,
        max_output_tokens: int = 200,
        temperature: float = 0.7,
    ) -> str:
        """
        Generate a single answer.

        Args:
            system: System instruction (including retrieved context)
            user: User turn text
            max_output_tokens: Upper bound on generated tokens
            temperature: Sampling temperature

        Returns:
            The answer text, stripped

        Raises:
            CompletionError: On network errors, non-200 status, or an empty answer
        """
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "max_tokens": max_output_tokens,
            "temperature": temperature,
        }

        start = asyncio.get_running_loop().time()
        try:
            session = await self._get_session()
            async with session.post(self.base_url, headers=self._headers(), json=payload) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"OpenAI API error {response.status}: {error_text[:500]}")
                    raise CompletionError(f"OpenAI API returned status {response.status}")

                data = await response.json()
        except aiohttp.ClientError as e:
            raise CompletionError(f"OpenAI network error: {e}") from e
        except ValueError as e:
            raise CompletionError(f"Malformed OpenAI response: {e}") from e

        answer = _extract_answer(data)
        elapsed_ms = (asyncio.get_running_loop().time() - start) * 1000

        usage = data.get("usage") or {}
        logger.info(
            f"LLM completion done in {elapsed_ms:.0f}ms: {len(answer)} chars, "
            f"prompt_tokens={usage.get('prompt_tokens', 0)}, "
            f"completion_tokens={usage.get('completion_tokens', 0)}"
        )
        return answer


def _extract_answer(data) -> str:
    """Pull the first choice's message content out of a completion response."""
    if not isinstance(data, dict):
        raise CompletionError("Completion response is not a JSON object")

    choices = data.get("choices") or []
    if not choices:
        raise CompletionError("Completion response has no choices")

    message = choices[0].get("message") or {}
    content = message.get("content")
    if not isinstance(content, str) or not content.strip():
        raise CompletionError("Completion response has empty content")

    return content.strip()
