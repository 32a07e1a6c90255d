"""
Milestone Extraction Module.

Sends one JSON-mode completion request per invocation and turns the answer
into validated Milestone records. All retry and backoff policy lives in the
callers; this module only performs the call, enforces its timeout and
classifies failures.
"""

import asyncio
import json
from typing import List, Optional

from openai import AsyncOpenAI
from pydantic import ValidationError
from tiktoken import Encoding

from analyzers.models import Milestone, MilestoneSource
from analyzers.payload import Payload
from analyzers.rate_limiter import RequestRateLimiter
from config import logger
from errors import AnalysisTimeoutError, MilestoneParseError, to_analysis_error


MILESTONE_FIELDS = (
    "title",
    "description",
    "commit_sha",
    "milestone_date",
    "x_post_suggestion",
)

SYSTEM_PROMPT = """You are an expert at analyzing git commit history and identifying significant milestones in a software project. Your job is to find commits that represent meaningful achievements worth sharing on X (Twitter) for developers who "build in public".

Look at the code changes of each commit when they are provided, not only the commit message. Commit messages are often generic or misleading.

A milestone is a commit (or group of related commits) that represents:
- A new feature launch or major functionality
- Performance improvements
- Bug fixes that affected users
- Architectural changes or refactors
- Version releases or deployments
- Integration of significant dependencies or services
- UI/UX improvements
- Security enhancements
- Project setup, first working version, or new tooling

Be generous: when in doubt whether a commit is a milestone, include it.

NOT milestones (skip these):
- Pure merge commits without content of their own
- WIP (work in progress) commits
- Trivial typo fixes

For each milestone you identify, provide:
1. title: a concise title (max 60 chars)
2. description: a brief description of what was achieved
3. commit_sha: the SHA of the commit it relates to, exactly as given
4. milestone_date: the date of that commit (ISO format)
5. x_post_suggestion: a ready-to-post X/Twitter suggestion (max 280 chars) that sounds authentic and engaging, not salesy

Respond with a single JSON object: { "milestones": [...] }"""


def parse_milestones(
    content: str, source: Optional[MilestoneSource] = None
) -> List[Milestone]:
    """
    Validate a model answer into milestones.

    A missing 'milestones' key yields an empty list; any other shape
    mismatch is a parse error rather than a silent empty result.

    Args:
        content (str): Raw JSON text returned by the model
        source (Optional[MilestoneSource]): Tag applied to every milestone

    Returns:
        List[Milestone]: Validated milestones

    Raises:
        MilestoneParseError: If the answer is not a milestone list
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise MilestoneParseError(f"Model returned invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MilestoneParseError(
            f"Model returned {type(data).__name__}, expected an object"
        )

    items = data.get("milestones")
    if items is None:
        return []
    if not isinstance(items, list):
        raise MilestoneParseError(
            f"'milestones' is {type(items).__name__}, expected a list"
        )

    milestones = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise MilestoneParseError(f"Milestone {index} is not an object")
        try:
            milestone = Milestone.model_validate(
                {field: item.get(field) for field in MILESTONE_FIELDS if field in item}
            )
        except ValidationError as e:
            raise MilestoneParseError(f"Milestone {index} is malformed: {e}") from e
        milestones.append(milestone.model_copy(update={"source": source}))
    return milestones


class MilestoneExtractor:
    """
    Single-call milestone extraction with OpenAI.

    Attributes:
        client (AsyncOpenAI): Injected OpenAI API client
        model (str): Chat model name
        timeout (float): Wall-clock limit for one call in seconds
        encoding (Optional[Encoding]): Tokenizer used for prompt accounting
        rate_limiter (Optional[RequestRateLimiter]): Shared request limiter
    """

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

    def build_user_message(self, repo_name: str, payload: Payload) -> str:
        """
        Embed the payload and output-count guidance in the user message.

        Args:
            repo_name (str): Repository display name
            payload (Payload): Built commit payload

        Returns:
            str: User message text
        """
        return f"""Analyze the following {payload.included} commits from the repository "{repo_name}" and identify significant milestones worth sharing on X.

Find the most impactful ones (aim for 5-15 milestones, proportional to the project's activity in these commits).

Commits:
{payload.text}

Respond with a JSON object: {{ "milestones": [...] }}"""

    async def extract(
        self,
        repo_name: str,
        payload: Payload,
        source: Optional[MilestoneSource] = None,
    ) -> List[Milestone]:
        """
        Perform exactly one completion call and parse its milestones.

        Args:
            repo_name (str): Repository display name
            payload (Payload): Non-empty commit payload
            source (Optional[MilestoneSource]): Tag applied to the milestones

        Returns:
            List[Milestone]: Milestones found, empty when the model answered nothing

        Raises:
            AnalysisError: Classified failure of the call or of the answer
        """
        user_message = self.build_user_message(repo_name, payload)
        logger.debug(
            {
                "message": "Requesting milestone extraction",
                "repository": repo_name,
                "commits": payload.included,
                "payload_bytes": payload.byte_size,
                "prompt_tokens": self._count_tokens(SYSTEM_PROMPT + user_message),
            }
        )

        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": user_message},
                    ],
                    response_format={"type": "json_object"},
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(
                {
                    "message": "OpenAI request timed out",
                    "repository": repo_name,
                    "timeout_seconds": self.timeout,
                }
            )
            raise AnalysisTimeoutError(
                f"OpenAI request timed out after {self.timeout}s"
            ) from e
        except Exception as e:
            error = to_analysis_error(e, "OpenAI analysis failed")
            logger.error(
                {
                    "message": "OpenAI analysis error",
                    "repository": repo_name,
                    "kind": error.kind.value,
                    "status": error.status,
                    "error": str(e),
                }
            )
            if error is e:
                raise
            raise error from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            logger.warning(
                {"message": "OpenAI returned no content", "repository": repo_name}
            )
            return []

        milestones = parse_milestones(content, source)
        logger.info(
            {
                "message": "Milestone extraction complete",
                "repository": repo_name,
                "milestones": len(milestones),
            }
        )
        return milestones
