"""
Completion Service Module

Thin async client for an OpenAI-compatible chat completions API (OpenRouter
by default) plus the three prompts the study assistant uses:

- generate_plan: a step-by-step learning plan for a topic (free text)
- generate_quiz: a short multiple-choice quiz (parsed from JSON, best effort)
- explain_answer: why the correct answer to a quiz question is right

Model output is untrusted. Quiz output that cannot be parsed becomes an
empty quiz rather than an error.
"""

import json
import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

PLAN_SYSTEM_PROMPT = (
    "You are an expert study assistant. Given a topic, generate a detailed, "
    "step-by-step personalized learning plan for a beginner. Use clear, actionable "
    "steps and include resources or tips if possible."
)

QUIZ_SYSTEM_PROMPT = (
    "You are an expert study assistant. Given a topic, generate a short interactive "
    "quiz (3-5 questions) for a beginner. Return the quiz as a JSON array of objects "
    "with 'question', 'choices' (array), and 'answer' (string). Do not include "
    "explanations unless asked."
)

EXPLAIN_SYSTEM_PROMPT = (
    "You are an expert tutor. When a student gets a quiz question wrong, provide a "
    "clear, concise explanation of why the correct answer is right and why the "
    "student's answer might be wrong. Keep explanations brief but helpful."
)

NO_PLAN_TEXT = "No plan generated."
NO_EXPLANATION_TEXT = "No explanation available."

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)


class CompletionError(Exception):
    """Raised when the completion service is unavailable or returns an error."""


@dataclass
class QuizQuestion:
    """One multiple-choice question."""

    question: str
    choices: List[str]
    answer: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce_question(item: Any) -> Optional[QuizQuestion]:
    if not isinstance(item, dict):
        return None
    question = item.get("question")
    choices = item.get("choices")
    answer = item.get("answer")
    if not isinstance(question, str) or not question.strip():
        return None
    if not isinstance(choices, list) or not choices:
        return None
    if answer is None:
        return None
    return QuizQuestion(
        question=question.strip(),
        choices=[str(choice) for choice in choices],
        answer=str(answer),
    )


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None


def parse_quiz(text: Optional[str]) -> List[QuizQuestion]:
    """
    Extract quiz questions from model output.

    Tries, in order: the whole text as JSON, the first fenced code block,
    and the span from the first "[" to the last "]". A top-level object with
    a "quiz" or "questions" list is unwrapped. Items missing a question,
    choices or answer are dropped.

    Returns:
        The parsed questions, or an empty list if nothing usable was found.
    """
    if not text:
        return []

    cleaned = _THINK_RE.sub("", text).strip()

    attempts = [cleaned]
    fence = _FENCE_RE.search(cleaned)
    if fence:
        attempts.append(fence.group(1).strip())
    start, end = cleaned.find("["), cleaned.rfind("]")
    if 0 <= start < end:
        attempts.append(cleaned[start:end + 1])

    for candidate in attempts:
        data = _load_json(candidate)
        if isinstance(data, dict):
            data = data.get("quiz") or data.get("questions")
        if isinstance(data, list):
            questions = [q for q in (_coerce_question(item) for item in data) if q]
            if questions:
                return questions

    logger.warning("Could not parse quiz from completion output")
    return []


class CompletionClient:
    """
    Async client for an OpenAI-compatible /chat/completions endpoint.

    Args:
        config: Dictionary with keys base_url, api_key, model, temperature,
                plan_max_tokens, quiz_max_tokens, explain_max_tokens,
                timeout_sec.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(self, config: dict = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        if config is None:
            config = {}
        self.base_url = config.get("base_url", "https://openrouter.ai/api/v1").rstrip("/")
        self._api_key = config.get("api_key")
        self.model = config.get("model", "deepseek/deepseek-r1:free")
        self.temperature = float(config.get("temperature", 0.7))
        self.plan_max_tokens = int(config.get("plan_max_tokens", 800))
        self.quiz_max_tokens = int(config.get("quiz_max_tokens", 800))
        self.explain_max_tokens = int(config.get("explain_max_tokens", 300))
        self.timeout_sec = float(config.get("timeout_sec", 60.0))
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def complete(self, system_prompt: str, user_prompt: str, max_tokens: int) -> Optional[str]:
        """
        Run one chat completion.

        Returns:
            The first choice's message content, or None if the response
            carried no content.

        Raises:
            CompletionError: If no API key is set, the request fails, or the
                             service answers with a non-2xx status.
        """
        if not self.is_configured:
            raise CompletionError("Completion API key not set")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": self.temperature,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout_sec,
                transport=self._transport,
            ) as client:
                response = await client.post("/chat/completions", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Completion request failed: {e}")
            raise CompletionError(f"Completion service unreachable: {e}") from e

        if not response.is_success:
            logger.error(f"Completion service error {response.status_code}: {response.text[:300]}")
            raise CompletionError(f"Completion service error ({response.status_code})")

        try:
            data = response.json()
            return data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("Completion response had no message content")
            return None

    async def generate_plan(self, topic: str) -> str:
        """Generate a learning plan for a topic."""
        content = await self.complete(
            PLAN_SYSTEM_PROMPT,
            f"Generate a personalized learning plan for: {topic}",
            self.plan_max_tokens,
        )
        return content or NO_PLAN_TEXT

    async def generate_quiz(self, topic: str) -> List[QuizQuestion]:
        """Generate a quiz for a topic. Unparseable output gives an empty list."""
        content = await self.complete(
            QUIZ_SYSTEM_PROMPT,
            f"Generate a quiz for: {topic}",
            self.quiz_max_tokens,
        )
        return parse_quiz(content)

    async def explain_answer(
        self,
        question: str,
        answer: str,
        user_answer: Optional[str],
        topic: str,
    ) -> str:
        """Explain why `answer` is the correct answer to `question`."""
        prompt = (
            f"Question: {question}\n"
            f"Correct Answer: {answer}\n"
            f"Student's Answer: {user_answer or 'No answer provided'}\n"
            f"Topic: {topic}\n\n"
            "Please explain why the correct answer is right."
        )
        content = await self.complete(EXPLAIN_SYSTEM_PROMPT, prompt, self.explain_max_tokens)
        return content or NO_EXPLANATION_TEXT


# Singleton instance
_completion_client: Optional[CompletionClient] = None


def get_completion_client() -> CompletionClient:
    """Get or create the singleton CompletionClient from config."""
    global _completion_client

    if _completion_client is None:
        from buddy_core.config import get_completion_config

        _completion_client = CompletionClient(get_completion_config())

    return _completion_client
