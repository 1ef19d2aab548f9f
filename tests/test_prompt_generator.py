"""
Tests for prompt generation: system prompt flags, user message, question
parsing, session state machine and the transport chain.
"""
import os
import subprocess
from unittest.mock import MagicMock, patch

import pytest
import requests

from promptboard.errors import LLMUnavailableError, SessionStateError, TransportError
from promptboard.llm import (
    AnthropicApiTransport,
    ClaudeCliTransport,
    LLMRequest,
    TransportChain,
)
from promptboard.prompt_generator import (
    ClarifyingQuestion,
    PromptGenerator,
    PromptParameters,
    PromptSession,
    SessionState,
    build_generate_system_prompt,
    build_user_message,
    parse_questions,
)
from promptboard.prompts import (
    BASE_GENERATE_PROMPT,
    CODE_ORGANIZATION_BLOCK,
    PLAN_MODE_BLOCK,
    TASK_BREAKDOWN_BLOCK,
    TEST_COVERAGE_BLOCK,
)
from promptboard.schema import Attachment, AttachmentType

from conftest import FakeChain

PNG = "data:image/png;base64,iVBORw0KGgo="


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# System prompt
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_no_flags_gives_base_prompt():
    assert build_generate_system_prompt(PromptParameters()) == BASE_GENERATE_PROMPT


def test_test_coverage_alone_appends_testing_block():
    prompt = build_generate_system_prompt(PromptParameters(test_coverage=True))
    assert prompt == BASE_GENERATE_PROMPT + TEST_COVERAGE_BLOCK
    assert '"Testing Requirements"' in prompt


def test_all_flags_append_every_block_once_in_order():
    params = PromptParameters.from_dict({
        "planMode": True, "taskBreakdown": True, "codeOrganization": True, "testCoverage": True,
    })
    prompt = build_generate_system_prompt(params)
    assert prompt == (
        BASE_GENERATE_PROMPT + PLAN_MODE_BLOCK + TASK_BREAKDOWN_BLOCK
        + CODE_ORGANIZATION_BLOCK + TEST_COVERAGE_BLOCK
    )
    for block in (PLAN_MODE_BLOCK, TASK_BREAKDOWN_BLOCK, CODE_ORGANIZATION_BLOCK, TEST_COVERAGE_BLOCK):
        assert prompt.count(block) == 1


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# User message
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_user_message_lists_files_and_embeds_images():
    attachments = [
        Attachment("a1", "trace.log", AttachmentType.FILE, "https://files/trace.log"),
        Attachment("a2", "shot.png", AttachmentType.IMAGE, PNG),
        Attachment("a3", "remote.png", AttachmentType.IMAGE, "https://cdn/remote.png"),
    ]
    content = build_user_message("Fix nav bug", "Menu overlaps", attachments)

    assert content[0]["type"] == "text"
    text = content[0]["text"]
    assert text.startswith("**Task Title:** Fix nav bug")
    assert "**Description:** Menu overlaps" in text
    assert "**Attached files:** trace.log" in text
    assert "shot.png" not in text

    images = content[1:]
    assert len(images) == 1
    assert images[0]["source"] == {
        "type": "base64", "media_type": "image/png", "data": "iVBORw0KGgo=",
    }


def test_user_message_includes_only_answered_questions():
    questions = [
        ClarifyingQuestion("q1", "Which browser?", "Safari"),
        ClarifyingQuestion("q2", "Mobile too?", "   "),
    ]
    text = build_user_message("T", "", [], questions)[0]["text"]
    assert "**Clarification answers:**" in text
    assert "- Q: Which browser?\n  A: Safari" in text
    assert "Mobile too?" not in text
    assert "**Description:**" not in text


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Question parsing
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_parse_questions_tolerates_preamble():
    questions = parse_questions('Sure! [{"id":"q1","question":"X?"}]')
    assert questions == [ClarifyingQuestion("q1", "X?", "")]


def test_parse_questions_tolerates_markdown_fence():
    reply = '```json\n[{"id": "q1", "question": "A?"}, {"id": "q2", "question": "B?"}]\n```'
    assert [q.id for q in parse_questions(reply)] == ["q1", "q2"]


def test_parse_questions_ignores_trailing_bracketed_text():
    reply = '[{"id": "q1", "question": "Which API [v1 or v2]?"}] see [docs] for more'
    assert parse_questions(reply) == [ClarifyingQuestion("q1", "Which API [v1 or v2]?", "")]


def test_parse_questions_skips_leading_bracketed_aside():
    reply = 'Notes [draft]:\n[{"id": "q1", "question": "X?"}]'
    assert [q.id for q in parse_questions(reply)] == ["q1"]


@pytest.mark.parametrize("reply", [
    "no json here",
    "[not valid json]",
    "",
    '{"id": "q1"}',
])
def test_parse_questions_degrades_to_empty(reply):
    assert parse_questions(reply) == []


def test_parse_questions_caps_at_five_and_skips_junk():
    items = ",".join(f'{{"question": "Q{i}?"}}' for i in range(8))
    questions = parse_questions(f'[1, "x", {items}]')
    assert len(questions) == 5
    assert questions[0].question == "Q0?"
    assert questions[0].id == "q3"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Session
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_session_without_questions_generates_directly():
    chain = FakeChain("[]", "## Fix the nav")
    written = []
    session = PromptSession(PromptGenerator(chain), "Fix nav bug", on_complete=written.append)

    assert session.begin() == "## Fix the nav"
    assert session.state == SessionState.IDLE
    assert written == ["## Fix the nav"]
    assert len(chain.requests) == 2


def test_session_with_questions_waits_for_answers():
    chain = FakeChain('[{"id": "q1", "question": "Which page?"}]', "final prompt")
    session = PromptSession(PromptGenerator(chain), "Fix nav bug",
                            params=PromptParameters(plan_mode=True))

    assert session.begin() is None
    assert session.state == SessionState.QUESTIONS
    assert [q.question for q in session.questions] == ["Which page?"]

    assert session.answer({"q1": "Home"}) == "final prompt"
    assert session.state == SessionState.IDLE
    final_request = chain.requests[1]
    assert "A: Home" in final_request.content[0]["text"]
    assert final_request.system.endswith(PLAN_MODE_BLOCK)


def test_session_skip_blanks_answers():
    chain = FakeChain('[{"id": "q1", "question": "Which page?"}]', "final prompt")
    session = PromptSession(PromptGenerator(chain), "Fix nav bug")
    session.begin()
    session.skip()
    assert "Clarification answers" not in chain.requests[1].content[0]["text"]


def test_failed_generation_returns_to_questions_and_writes_nothing():
    chain = FakeChain(
        '[{"id": "q1", "question": "Which page?"}]',
        LLMUnavailableError("nothing configured"),
        "second try",
    )
    written = []
    session = PromptSession(PromptGenerator(chain), "Fix nav bug", on_complete=written.append)
    session.begin()

    with pytest.raises(LLMUnavailableError):
        session.answer({"q1": "Home"})
    assert session.state == SessionState.QUESTIONS
    assert written == []

    assert session.answer({"q1": "Home"}) == "second try"
    assert written == ["second try"]


def test_failed_first_call_returns_to_idle():
    session = PromptSession(PromptGenerator(FakeChain(LLMUnavailableError("down"))), "T")
    with pytest.raises(LLMUnavailableError):
        session.begin()
    assert session.state == SessionState.IDLE


def test_session_rejects_out_of_order_calls():
    session = PromptSession(PromptGenerator(FakeChain()), "T")
    with pytest.raises(SessionStateError):
        session.answer({})
    with pytest.raises(SessionStateError):
        session.skip()


def test_session_requires_title():
    with pytest.raises(ValueError):
        PromptSession(PromptGenerator(FakeChain()), "   ")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Transports
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


REQUEST = LLMRequest("system text", [
    {"type": "text", "text": "user text"},
    {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "AA=="}},
])


def test_request_flatten_marks_images():
    flat = REQUEST.flatten()
    assert flat.startswith("system text\n\n---\n\nuser text")
    assert "[Image attachment provided" in flat


def test_cli_tries_paths_in_order_until_one_succeeds():
    ok = subprocess.CompletedProcess(args=[], returncode=0, stdout="  answer \n", stderr="")
    with patch("promptboard.llm.subprocess.run", side_effect=[FileNotFoundError(), ok]) as run:
        transport = ClaudeCliTransport(["/missing/claude", "claude"], model="m", timeout=30)
        assert transport.attempt(REQUEST) == "answer"

    assert run.call_count == 2
    assert run.call_args_list[0].args[0][0] == "/missing/claude"
    second = run.call_args_list[1]
    assert second.args[0] == ["claude", "-p", "--output-format", "text", "--model", "m"]
    assert second.kwargs["timeout"] == 30
    assert "ANTHROPIC_API_KEY" not in second.kwargs["env"]


def test_cli_failure_raises_transport_error():
    timeout = subprocess.TimeoutExpired(cmd="claude", timeout=30)
    failed = subprocess.CompletedProcess(args=[], returncode=1, stdout="", stderr="not logged in")
    with patch("promptboard.llm.subprocess.run", side_effect=[timeout, failed]):
        transport = ClaudeCliTransport(["a", "b"], model="m")
        with pytest.raises(TransportError, match="not logged in"):
            transport.attempt(REQUEST)


def test_cli_removes_temp_prompt_file(tmp_path):
    seen = []

    def fake_run(cmd, stdin, **kwargs):
        seen.append(stdin.name)
        assert "user text" in stdin.read()
        return subprocess.CompletedProcess(args=cmd, returncode=0, stdout="ok", stderr="")

    with patch("promptboard.llm.subprocess.run", side_effect=fake_run):
        ClaudeCliTransport(["claude"], model="m").attempt(REQUEST)

    assert seen and not os.path.exists(seen[0])


def test_api_without_key_is_unavailable():
    with pytest.raises(TransportError, match="ANTHROPIC_API_KEY"):
        AnthropicApiTransport(None, model="m").attempt(REQUEST)


def test_api_returns_first_text_block():
    session = MagicMock()
    session.post.return_value.json.return_value = {
        "content": [{"type": "thinking"}, {"type": "text", "text": "the prompt"}],
    }
    transport = AnthropicApiTransport("sk-test", model="m", max_tokens=2048, session=session)

    assert transport.attempt(REQUEST) == "the prompt"
    kwargs = session.post.call_args.kwargs
    assert kwargs["headers"]["x-api-key"] == "sk-test"
    assert kwargs["json"]["system"] == "system text"
    assert kwargs["json"]["messages"][0]["content"] == REQUEST.content


def test_api_http_error_raises_transport_error():
    session = MagicMock()
    session.post.return_value.raise_for_status.side_effect = requests.HTTPError("529 Overloaded")
    with pytest.raises(TransportError, match="Overloaded"):
        AnthropicApiTransport("sk-test", model="m", session=session).attempt(REQUEST)


def test_chain_falls_back_once_per_transport():
    first, second = MagicMock(), MagicMock()
    first.name, second.name = "cli", "api"
    first.attempt.side_effect = TransportError("not found")
    second.attempt.return_value = "from api"

    assert TransportChain([first, second]).complete(REQUEST) == "from api"
    assert first.attempt.call_count == 1
    assert second.attempt.call_count == 1


def test_chain_exhausted_is_configuration_error():
    first, second = MagicMock(), MagicMock()
    first.name, second.name = "cli", "api"
    first.attempt.side_effect = TransportError("not found")
    second.attempt.side_effect = TransportError("ANTHROPIC_API_KEY is not set")

    with pytest.raises(LLMUnavailableError) as exc:
        TransportChain([first, second]).complete(REQUEST)
    assert exc.value.attempts == ["cli: not found", "api: ANTHROPIC_API_KEY is not set"]
