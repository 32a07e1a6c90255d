"""
This module contains the base class for structured-output agent plugins.
"""

import asyncio
import json
from typing import Generic, Optional, Type, TypeVar

from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError
from tiktoken import Encoding

from analyzers.rate_limiter import RequestRateLimiter
from config import logger
from errors import AnalysisTimeoutError, MilestoneParseError, to_analysis_error


OutputT = TypeVar("OutputT", bound=BaseModel)


class AgentPlugin(Generic[OutputT]):
    """
    One JSON-mode completion whose answer is validated into a pydantic model.

    Subclasses set ``name``, ``instructions`` and ``output_model``.

    Attributes:
        client (AsyncOpenAI): OpenAI API client
        model (str): Chat model name
        timeout (float): Wall-clock limit for one call in seconds
        encoding (Optional[Encoding]): Tokenizer used for prompt accounting
        rate_limiter (Optional[RequestRateLimiter]): Shared request limiter
    """

    name: str = "agent"
    instructions: str = ""
    output_model: Type[OutputT]

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "gpt-4o",
        timeout: float = 120.0,
        temperature: float = 0.7,
        max_tokens: int = 4000,
        encoding: Optional[Encoding] = None,
        rate_limiter: Optional[RequestRateLimiter] = None,
    ):
        self.client = client
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.encoding = encoding
        self.rate_limiter = rate_limiter

    def _count_tokens(self, text: str) -> Optional[int]:
        if self.encoding is None:
            return None
        return len(self.encoding.encode(text))

    def parse(self, content: Optional[str]) -> OutputT:
        """
        Validate the raw answer into the agent's output model.

        Raises:
            MilestoneParseError: If the answer is empty, not JSON or malformed
        """
        if not content:
            raise MilestoneParseError(f"{self.name} returned no content")
        try:
            return self.output_model.model_validate(json.loads(content))
        except json.JSONDecodeError as e:
            raise MilestoneParseError(f"{self.name} returned invalid JSON: {e}") from e
        except ValidationError as e:
            raise MilestoneParseError(f"{self.name} returned malformed output: {e}") from e

    async def run(self, user_message: str) -> OutputT:
        """
        Perform one completion call and validate its answer.

        Args:
            user_message (str): Formatted agent input

        Returns:
            OutputT: Validated structured output

        Raises:
            AnalysisError: Classified failure of the call or of the answer
        """
        logger.debug(
            {
                "message": "Running agent",
                "agent": self.name,
                "prompt_tokens": self._count_tokens(self.instructions + user_message),
            }
        )

        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": self.instructions},
                        {"role": "user", "content": user_message},
                    ],
                    response_format={"type": "json_object"},
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise AnalysisTimeoutError(
                f"{self.name} timed out after {self.timeout}s"
            ) from e
        except Exception as e:
            error = to_analysis_error(e, f"{self.name} failed")
            logger.error(
                {
                    "message": "Agent call failed",
                    "agent": self.name,
                    "kind": error.kind.value,
                    "error": str(e),
                }
            )
            if error is e:
                raise
            raise error from e

        content = response.choices[0].message.content if response.choices else None
        return self.parse(content)
