"""
Judgment Oracle.

Scores one review text into a bucket, score, and confidence using an LLM,
or rejects the text as unscoreable.
"""

import asyncio
import json
import logging
import time
from typing import Optional, Union

import google.generativeai as genai

from scorecard.models.bucket import DEFAULT_BUCKETS, BucketDefinition, canonical_confidence
from scorecard.models.judgment import SIDED_WITH_VALUES, Judgment, Rejection
from scorecard.utils.extraction import parse_json_object

logger = logging.getLogger(__name__)

OracleOutcome = Union[Judgment, Rejection]

REJECTION_REASONS = ("wrong_show", "wrong_production", "not_a_review", "garbage_text")


class OracleError(Exception):
    """The oracle could not produce a Judgment or a Rejection."""


class OracleResponseError(OracleError):
    """The oracle answered, but the answer could not be understood."""


SYSTEM_PROMPT = """You are a theater critic review scorer. Your task is to determine how strongly a critic recommends seeing a production based on their review text.

Step 0: Is this text scoreable?
If ANY of the following apply, do not score. Return a rejection instead:
- "wrong_show": text is about a different show or topic
- "wrong_production": reviews a touring, off-Broadway, or previous production, not the current run
- "not_a_review": press release, plot summary with no evaluation, cast listing
- "garbage_text": navigation menus, error pages, ad copy, login prompts

Rejection format:
{"scoreable": false, "rejection": "wrong_show", "reasoning": "..."}

Step 1: Choose the bucket
- Rave (85-100): enthusiastic, must-see recommendation
- Positive (70-84): recommends seeing it, with or without reservations
- Mixed (55-69): neither recommends nor discourages
- Negative (35-54): does not recommend
- Pan (0-34): strongly negative

Step 2: Assign a score inside the bucket's range. Use the full range.

Rules:
- Score the FINAL RECOMMENDATION, not the opening setup
- Performer praise does not redeem a pan
- Excerpt-only or truncated text: score it, with "low" confidence
- Confidence: "high" = clear verdict, "medium" = some ambiguity but clear direction, "low" = genuinely uncertain

Output valid JSON only:
{"scoreable": true, "bucket": "Positive", "score": 78, "confidence": "high", "reasoning": "1-2 sentences"}"""


def _construct_user_prompt(text: str, context: str) -> str:
    """Construct user prompt from review text and optional context."""
    context_block = f"{context.strip()}\n\n" if context and context.strip() else ""
    return f"""{context_block}Review Text:
\"\"\"{text}\"\"\"

Respond with ONLY the JSON object."""


def parse_oracle_response(
    response_text: str,
    oracle_name: str,
    buckets: BucketDefinition = DEFAULT_BUCKETS
) -> OracleOutcome:
    """
    Parse an oracle answer into a Judgment or Rejection.

    The JSON may be fenced or embedded in prose. Scores outside the chosen
    bucket are clamped into it.

    Raises:
        OracleResponseError: If the answer is missing, not JSON, or incomplete
    """
    try:
        data = parse_json_object(response_text)
    except (json.JSONDecodeError, ValueError) as e:
        raise OracleResponseError(f"{oracle_name}: unparseable response: {e}") from e

    if data.get("scoreable") is False or data.get("rejected") is True:
        reason = data.get("rejection") or data.get("reason") or "unscoreable"
        return Rejection(
            reason=str(reason),
            rationale=str(data.get("reasoning") or ""),
            oracle=oracle_name,
        )

    bucket = buckets.canonical_name(data.get("bucket"))
    if bucket is None:
        raise OracleResponseError(f"{oracle_name}: invalid bucket {data.get('bucket')!r}")

    confidence = canonical_confidence(data.get("confidence"))
    if confidence is None:
        raise OracleResponseError(f"{oracle_name}: invalid confidence {data.get('confidence')!r}")

    raw_score = data.get("score")
    if isinstance(raw_score, bool):
        raise OracleResponseError(f"{oracle_name}: invalid score {raw_score!r}")
    try:
        score = buckets.clamp(float(raw_score), bucket)
    except (TypeError, ValueError) as e:
        raise OracleResponseError(f"{oracle_name}: invalid score {raw_score!r}") from e

    sided_with = data.get("sidedWith", data.get("sided_with"))
    if sided_with is not None:
        sided_with = str(sided_with).strip().lower()
        if sided_with not in SIDED_WITH_VALUES:
            sided_with = None

    return Judgment(
        bucket=bucket,
        score=score,
        confidence=confidence,
        rationale=str(data.get("reasoning") or data.get("rationale") or ""),
        oracle=oracle_name,
        sided_with=sided_with,
    )


class GeminiOracle:
    """
    Oracle backed by a Gemini model.

    Each instance is one oracle channel: calls through it are spaced by at
    least min_delay_seconds and retried up to max_retries times.
    """

    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-1.5-flash",
        temperature: float = 0.0,
        max_retries: int = 3,
        min_delay_seconds: float = 1.0,
        system_prompt: str = SYSTEM_PROMPT,
        buckets: BucketDefinition = DEFAULT_BUCKETS,
        name: Optional[str] = None
    ):
        """
        Initialize oracle.

        Args:
            api_key: Gemini API key
            model_name: Gemini model to use
            temperature: LLM temperature (0.0 for deterministic)
            max_retries: Attempts per judge() call on API or parse failure
            min_delay_seconds: Minimum gap between successive calls on this channel
            system_prompt: System instruction for the model
            buckets: Bucket table used to validate and clamp answers
            name: Oracle name recorded on its Judgments (defaults to model_name)
        """
        self.model_name = model_name
        self.name = name or model_name
        self.temperature = temperature
        self.max_retries = max_retries
        self.min_delay_seconds = min_delay_seconds
        self.buckets = buckets

        self._lock = None
        self._lock_loop = None
        self._last_call = None

        # Configure Gemini
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(
            model_name=model_name,
            generation_config={
                "temperature": temperature,
                "response_mime_type": "application/json"
            },
            system_instruction=system_prompt
        )

        logger.info(f"Initialized GeminiOracle {self.name} with model={model_name}, temp={temperature}")

    async def judge(self, text: str, context: str = "") -> OracleOutcome:
        """
        Judge one review text.

        Args:
            text: Review text or excerpt
            context: Optional framing (show title, disagreement details, ...)

        Returns:
            Judgment, or Rejection when the model declares the text unscoreable

        Raises:
            OracleError: If every attempt failed
        """
        if not text or len(text.strip()) == 0:
            raise OracleError(f"{self.name}: empty review text")

        user_prompt = _construct_user_prompt(text, context)
        last_error = None

        for attempt in range(self.max_retries):
            try:
                response_text = await self._generate(user_prompt)
                outcome = parse_oracle_response(response_text, self.name, self.buckets)
                logger.debug(f"{self.name} answered: {outcome}")
                return outcome

            except OracleResponseError as e:
                logger.error(f"Failed to parse {self.name} response (attempt {attempt + 1}): {e}")
                last_error = e

            except Exception as e:
                logger.error(f"{self.name} API error (attempt {attempt + 1}): {e}")
                last_error = e

        raise OracleError(f"{self.name} failed after {self.max_retries} attempts: {last_error}")

    def _channel_lock(self) -> asyncio.Lock:
        # A lock belongs to one event loop; each asyncio.run() gets a fresh one
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def _generate(self, prompt: str) -> str:
        async with self._channel_lock():
            await self._respect_rate_limit()
            try:
                response = await self.model.generate_content_async(prompt)
            finally:
                self._last_call = time.monotonic()
        return response.text

    async def _respect_rate_limit(self) -> None:
        if self._last_call is None or self.min_delay_seconds <= 0:
            return
        elapsed = time.monotonic() - self._last_call
        if elapsed < self.min_delay_seconds:
            await asyncio.sleep(self.min_delay_seconds - elapsed)
