"""
LLM transports for the prompt generator.

Each transport exposes attempt(request) -> str and raises TransportError on
failure. TransportChain tries them in order, once each, and returns the first
success:

    1. ClaudeCliTransport     local `claude` binary (subscription credentials)
    2. AnthropicApiTransport  Messages API with ANTHROPIC_API_KEY

When every transport fails the chain raises LLMUnavailableError.
"""
import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import requests

from .config import Config
from .errors import LLMUnavailableError, TransportError

logger = logging.getLogger(__name__)

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"
CLI_TIMEOUT = 30        # seconds; per install path
MAX_OUTPUT = 1024 * 1024


@dataclass
class LLMRequest:
    """A single-turn chat request: system prompt + user content blocks."""
    system: str
    content: List[Dict[str, Any]] = field(default_factory=list)

    def flatten(self) -> str:
        """Text-only rendering for transports that cannot take images."""
        parts = [self.system, "\n\n---\n\n"]
        for block in self.content:
            if block.get("type") == "text":
                parts.append(block["text"])
            elif block.get("type") == "image":
                parts.append("\n[Image attachment provided - see description above]")
        return "".join(parts)


class Transport:
    name = "transport"

    def attempt(self, request: LLMRequest) -> str:
        raise NotImplementedError


class ClaudeCliTransport(Transport):
    """
    Runs `claude -p` with the prompt fed on stdin from a temp file.

    Install paths are tried in order; the first one that exits 0 with
    output wins.
    """
    name = "claude-cli"

    def __init__(self, paths: Sequence[str], model: str, timeout: int = CLI_TIMEOUT):
        self.paths = list(paths)
        self.model = model
        self.timeout = timeout

    def attempt(self, request: LLMRequest) -> str:
        fd, tmp_path = tempfile.mkstemp(prefix="prompt-", suffix=".txt")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(request.flatten())

            # CLI runs on its own login, never the API key
            env = {k: v for k, v in os.environ.items() if k != "ANTHROPIC_API_KEY"}

            last_error = "no CLI paths configured"
            for cli_path in self.paths:
                try:
                    with open(tmp_path, "r", encoding="utf-8") as prompt_file:
                        result = subprocess.run(
                            [cli_path, "-p", "--output-format", "text", "--model", self.model],
                            stdin=prompt_file,
                            capture_output=True,
                            text=True,
                            timeout=self.timeout,
                            env=env,
                        )
                except FileNotFoundError:
                    last_error = f"{cli_path}: not found"
                    continue
                except subprocess.TimeoutExpired:
                    last_error = f"{cli_path}: timed out after {self.timeout}s"
                    logger.warning(last_error)
                    continue
                except OSError as e:
                    last_error = f"{cli_path}: {e}"
                    continue

                output = (result.stdout or "")[:MAX_OUTPUT].strip()
                if result.returncode == 0 and output:
                    logger.debug(f"Claude CLI answered via {cli_path}")
                    return output
                last_error = (
                    f"{cli_path}: exit {result.returncode}: {(result.stderr or '').strip()[:200]}"
                )

            raise TransportError(f"Claude CLI not available ({last_error})")
        finally:
            try:
                os.unlink(tmp_path)
            except OSError:
                logger.debug(f"Could not remove temp prompt file {tmp_path}")


class AnthropicApiTransport(Transport):
    """Direct Messages API call. Unavailable when no API key is configured."""
    name = "anthropic-api"

    def __init__(self, api_key: Optional[str], model: str, max_tokens: int = 2048,
                 timeout: int = 120, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.session = session or requests.Session()

    def attempt(self, request: LLMRequest) -> str:
        if not self.api_key:
            raise TransportError("ANTHROPIC_API_KEY is not set")

        body = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": request.system,
            "messages": [{"role": "user", "content": request.content}],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }
        try:
            r = self.session.post(API_URL, json=body, headers=headers, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            raise TransportError(f"Anthropic API call failed: {e}") from e
        except ValueError as e:
            raise TransportError(f"Anthropic API returned invalid JSON: {e}") from e

        for block in data.get("content", []):
            if block.get("type") == "text":
                return block.get("text", "")
        return ""


class TransportChain:
    """Ordered fallback over transports. Not a retry loop: one attempt each."""

    def __init__(self, transports: Sequence[Transport]):
        self.transports = list(transports)

    def complete(self, request: LLMRequest) -> str:
        attempts = []
        for transport in self.transports:
            try:
                return transport.attempt(request)
            except TransportError as e:
                logger.warning(f"LLM transport {transport.name} failed: {e}")
                attempts.append(f"{transport.name}: {e}")

        raise LLMUnavailableError(
            "Claude CLI not available and no working API key configured. "
            "Install the Claude CLI or set ANTHROPIC_API_KEY. "
            f"Attempts: {'; '.join(attempts) or 'none'}",
            attempts=attempts,
        )


def build_chain(cfg: Config) -> TransportChain:
    return TransportChain([
        ClaudeCliTransport(cfg.cli_paths, cfg.model, timeout=cfg.cli_timeout),
        AnthropicApiTransport(cfg.anthropic_api_key, cfg.model,
                              max_tokens=cfg.max_tokens, timeout=cfg.api_timeout),
    ])
