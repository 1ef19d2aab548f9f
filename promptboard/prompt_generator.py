"""
Two-phase prompt generation for a task.

    idle ──begin()──▶ questions ──answer()/skip()──▶ generating ──▶ idle
      └───────── (no questions) ────────────────────▶ generating ──▶ idle

The caller drives the session. Question parsing is best-effort and never
blocks progress; a failed generation leaves the task's prompt untouched.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .errors import SessionStateError
from .llm import LLMRequest, TransportChain
from .prompts import BASE_GENERATE_PROMPT, FLAG_BLOCKS, MAX_QUESTIONS, QUESTIONS_SYSTEM_PROMPT
from .schema import Attachment

logger = logging.getLogger(__name__)

DATA_URI_RE = re.compile(r"^data:(image/[^;]+);base64,(.+)$", re.DOTALL)
_decoder = json.JSONDecoder()


@dataclass
class PromptParameters:
    """Flags that each append one instruction block to the system prompt."""
    plan_mode: bool = False
    task_breakdown: bool = False
    code_organization: bool = False
    test_coverage: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PromptParameters":
        data = data or {}
        return cls(
            plan_mode=bool(data.get("planMode", False)),
            task_breakdown=bool(data.get("taskBreakdown", False)),
            code_organization=bool(data.get("codeOrganization", False)),
            test_coverage=bool(data.get("testCoverage", False)),
        )


@dataclass
class ClarifyingQuestion:
    id: str
    question: str
    answer: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "question": self.question, "answer": self.answer}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClarifyingQuestion":
        return cls(
            id=str(data.get("id", "")),
            question=str(data.get("question", "")),
            answer=str(data.get("answer") or ""),
        )


def build_generate_system_prompt(params: PromptParameters) -> str:
    prompt = BASE_GENERATE_PROMPT
    for attr, block in FLAG_BLOCKS:
        if getattr(params, attr):
            prompt += block
    return prompt


def build_user_message(
    title: str,
    description: str,
    attachments: List[Attachment],
    questions: Optional[List[ClarifyingQuestion]] = None,
) -> List[Dict[str, Any]]:
    """
    One text block with the task details, then one image block per
    attachment whose URL is a base64 image data URI. Other image URLs are
    dropped.
    """
    text = f"**Task Title:** {title}"
    if description:
        text += f"\n\n**Description:** {description}"

    files = [a for a in attachments if not a.is_image]
    if files:
        text += f"\n\n**Attached files:** {', '.join(a.name for a in files)}"

    answered = [q for q in questions or [] if q.answer.strip()]
    if answered:
        text += "\n\n**Clarification answers:**"
        for q in answered:
            text += f"\n- Q: {q.question}\n  A: {q.answer}"

    content: List[Dict[str, Any]] = [{"type": "text", "text": text}]

    for img in (a for a in attachments if a.is_image):
        match = DATA_URI_RE.match(img.url)
        if not match:
            logger.debug(f"Dropping image attachment {img.name}: not a base64 data URI")
            continue
        content.append({
            "type": "image",
            "source": {"type": "base64", "media_type": match.group(1), "data": match.group(2)},
        })
    return content


def _first_json_array(text: str) -> Optional[List[Any]]:
    """First `[` that opens a complete JSON array; trailing text is ignored."""
    start = text.find("[")
    while start != -1:
        try:
            parsed, _ = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return parsed
        start = text.find("[", start + 1)
    return None


def parse_questions(response: str) -> List[ClarifyingQuestion]:
    """
    Pull the JSON array out of an LLM reply, tolerating fences or preamble.
    Anything unparseable yields [].
    """
    parsed = _first_json_array(response or "")
    if parsed is None:
        return []

    questions = []
    for i, item in enumerate(parsed):
        if not isinstance(item, dict) or not str(item.get("question", "")).strip():
            continue
        questions.append(ClarifyingQuestion(
            id=str(item.get("id") or f"q{i + 1}"),
            question=str(item["question"]),
        ))
    return questions[:MAX_QUESTIONS]


class PromptGenerator:
    """Stateless LLM calls for both phases."""

    def __init__(self, chain: TransportChain):
        self.chain = chain

    def generate_questions(self, title: str, description: str,
                           attachments: List[Attachment]) -> List[ClarifyingQuestion]:
        content = build_user_message(title, description, attachments)
        response = self.chain.complete(LLMRequest(QUESTIONS_SYSTEM_PROMPT, content))
        questions = parse_questions(response)
        logger.info(f"Clarifying questions for {title!r}: {len(questions)}")
        return questions

    def generate_prompt(self, title: str, description: str, attachments: List[Attachment],
                        params: PromptParameters,
                        questions: Optional[List[ClarifyingQuestion]] = None) -> str:
        system = build_generate_system_prompt(params)
        content = build_user_message(title, description, attachments, questions)
        return self.chain.complete(LLMRequest(system, content))


class SessionState(Enum):
    IDLE = "idle"
    QUESTIONS = "questions"
    GENERATING = "generating"


class PromptSession:
    """
    One generation run for one task.

    `on_complete` receives the final prompt (the board writes it to the
    task). It is only called on success.
    """

    def __init__(
        self,
        generator: PromptGenerator,
        title: str,
        description: str = "",
        attachments: Optional[List[Attachment]] = None,
        params: Optional[PromptParameters] = None,
        on_complete: Optional[Callable[[str], Any]] = None,
    ):
        if not title or not title.strip():
            raise ValueError("Title is required")
        self.generator = generator
        self.title = title
        self.description = description
        self.attachments = attachments or []
        self.params = params or PromptParameters()
        self.on_complete = on_complete
        self.state = SessionState.IDLE
        self.questions: List[ClarifyingQuestion] = []
        self.prompt: Optional[str] = None

    def begin(self) -> Optional[str]:
        """
        Ask for clarifying questions. Returns the final prompt when none
        were needed, else None with the session waiting in `questions`.
        """
        self._expect(SessionState.IDLE)
        self.questions = []
        self.prompt = None
        self.questions = self.generator.generate_questions(
            self.title, self.description, self.attachments
        )
        if self.questions:
            self.state = SessionState.QUESTIONS
            return None
        return self._generate()

    def answer(self, answers: Dict[str, str]) -> str:
        """Record answers by question id and generate the final prompt."""
        self._expect(SessionState.QUESTIONS)
        for q in self.questions:
            if q.id in answers:
                q.answer = answers[q.id] or ""
        return self._generate()

    def skip(self) -> str:
        self._expect(SessionState.QUESTIONS)
        for q in self.questions:
            q.answer = ""
        return self._generate()

    def _generate(self) -> str:
        self.state = SessionState.GENERATING
        try:
            prompt = self.generator.generate_prompt(
                self.title, self.description, self.attachments, self.params, self.questions
            )
            if self.on_complete is not None:
                self.on_complete(prompt)
        except Exception:
            self.state = SessionState.QUESTIONS if self.questions else SessionState.IDLE
            raise

        self.prompt = prompt
        self.questions = []
        self.state = SessionState.IDLE
        return prompt

    def _expect(self, state: SessionState) -> None:
        if self.state != state:
            raise SessionStateError(
                f"Cannot do that while session is {self.state.value} (expected {state.value})"
            )
