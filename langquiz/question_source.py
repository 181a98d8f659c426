"""
Question sources: where a session gets its questions from.

The quiz generator service answers a POST of ``{"language", "level"}`` with::

    {
        "questions": [
            {
                "question_id": 1,
                "english_text": str,
                "context": str,             # Optional
                "options": {"A": str, "B": str, "C": str, "D": str},
                "correct_answer": "A" | "B" | "C" | "D",
                "explanation": str          # Optional
            }
        ]
    }
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from .models import OPTION_LABELS, Question, QuizLevel


DEFAULT_API_ENDPOINT = "http://localhost:8000/api/language-test/generate"
DEFAULT_TIMEOUT = 30.0

logger = logging.getLogger(__name__)


class QuestionSourceError(Exception):
    """Raised when questions cannot be fetched or parsed."""
    pass


class QuestionSource(Protocol):
    """Anything that can supply questions for a language and level."""

    async def fetch_questions(self, language: str, level: QuizLevel) -> List[Question]:
        ...


def parse_question(data: Any, index: int = 0) -> Question:
    """
    Build a Question from one wire record.

    Raises:
        QuestionSourceError: If a required field is missing or has the wrong type
    """
    if not isinstance(data, dict):
        raise QuestionSourceError(f"Question {index} must be an object")

    prompt = data.get("english_text", data.get("question"))
    if not isinstance(prompt, str) or not prompt.strip():
        raise QuestionSourceError(f"Question {index} missing 'english_text' field")

    options = data.get("options")
    if not isinstance(options, dict):
        raise QuestionSourceError(f"Question {index} 'options' field must be an object")
    missing = [label for label in OPTION_LABELS if label not in options]
    if missing:
        raise QuestionSourceError(f"Question {index} missing options: {', '.join(missing)}")
    for label in OPTION_LABELS:
        if not isinstance(options[label], str):
            raise QuestionSourceError(f"Question {index} option {label} must be a string")

    correct = data.get("correct_answer")
    if not isinstance(correct, str) or correct.strip().upper() not in OPTION_LABELS:
        raise QuestionSourceError(f"Question {index} 'correct_answer' must be one of {', '.join(OPTION_LABELS)}")

    explanation = data.get("explanation") or ""
    context = data.get("context") or ""
    if not isinstance(explanation, str) or not isinstance(context, str):
        raise QuestionSourceError(f"Question {index} 'explanation' and 'context' must be strings")

    question_id = data.get("question_id", index + 1)

    return Question(
        question_id=str(question_id),
        prompt=prompt.strip(),
        options={label: options[label] for label in OPTION_LABELS},
        correct_answer=correct.strip().upper(),
        explanation=explanation,
        context=context,
    )


def parse_questions(payload: Any) -> List[Question]:
    """
    Parse a question list payload, either ``{"questions": [...]}`` or a bare list.

    Raises:
        QuestionSourceError: If the payload is malformed or holds no questions
    """
    if isinstance(payload, dict):
        records = payload.get("questions")
    else:
        records = payload

    if not isinstance(records, list):
        raise QuestionSourceError("Quiz data must contain a 'questions' array")
    if not records:
        raise QuestionSourceError("Question list cannot be empty")

    return [parse_question(record, i) for i, record in enumerate(records)]


class HttpQuestionSource:
    """Fetches questions from the quiz generator HTTP service."""

    def __init__(
        self,
        endpoint: str = DEFAULT_API_ENDPOINT,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self.endpoint = endpoint
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def fetch_questions(self, language: str, level: QuizLevel) -> List[Question]:
        payload: Dict[str, Any] = {"language": language, "level": QuizLevel.parse(level).value}
        logger.info(f"Requesting questions from {self.endpoint}: {payload}")
        try:
            r = await self._client.post(self.endpoint, json=payload)
            r.raise_for_status()
        except httpx.HTTPStatusError as http_err:
            raise QuestionSourceError(
                f"Quiz service returned HTTP {http_err.response.status_code}"
            ) from http_err
        except httpx.RequestError as net_err:
            raise QuestionSourceError(f"Failed to reach quiz service: {net_err}") from net_err

        try:
            data = r.json()
        except ValueError as e:
            raise QuestionSourceError(f"Quiz service returned invalid JSON: {e}") from e

        questions = parse_questions(data)
        logger.info(f"Fetched {len(questions)} questions for {language}/{payload['level']}")
        return questions

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
