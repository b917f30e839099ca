"""
llm.py — The text-completion service boundary.

Everything that needs the model goes through ``CompletionService.complete``.
There's exactly one production implementation (OpenAI chat completions via
``AsyncOpenAI``) and a scripted fake in the tests. Nothing else in the
package imports ``openai``.

The model is NOT deterministic. Same proposal, same criterion, same
temperature can come back REGULAR on one run and MEETS_SUCCESSFULLY on the
next. Rankings are whatever the model says they are; we validate shape,
never second-guess the judgment.

Retry policy: bounded attempts, exponential backoff (1s, 2s, 4s...), then give up with CompletionError.
Only the call is retried. A response that arrives but doesn't parse is the
caller's problem, not a transport problem.
- Prathamesh, 2026-03-06
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol, runtime_checkable

from tender_evaluation.config import Config, config as default_config
from tender_evaluation.errors import CompletionError, describe_error

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert public-procurement evaluator. You assess tender "
    "proposals strictly against the tender specifications you are given, "
    "and you always answer in the exact output format requested."
)


@runtime_checkable
class CompletionService(Protocol):
    """
    Anything that can turn (instructions, context) into raw response text.

    ``expect_json`` is "object", "array" or None. It's a hint: the service
    may use it to switch on a JSON mode, but callers must still parse
    defensively because the text can contain anything.
    """

    async def complete(
        self,
        instructions: str,
        context: str = "",
        *,
        temperature: Optional[float] = None,
        expect_json: Optional[str] = None,
    ) -> str:
        ...


class OpenAICompletionService:
    """CompletionService backed by the OpenAI chat completions API."""

    def __init__(self, cfg: Optional[Config] = None, client=None):
        self.cfg = cfg or default_config
        if client is None:
            from openai import AsyncOpenAI

            api_key = self.cfg.require_api_key()
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=self.cfg.llm.base_url or None,
                timeout=self.cfg.llm.timeout,
                # Retries are ours (logged, with our backoff), not the SDK's.
                max_retries=0,
            )
        self.client = client
        self.model = self.cfg.llm.model

    async def complete(
        self,
        instructions: str,
        context: str = "",
        *,
        temperature: Optional[float] = None,
        expect_json: Optional[str] = None,
    ) -> str:
        llm_cfg = self.cfg.llm
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        user_content = instructions if not context else f"{instructions}\n\n{context}"
        messages.append({"role": "user", "content": user_content})

        request = {
            "model": self.model,
            "messages": messages,
            "temperature": llm_cfg.temperature if temperature is None else temperature,
            "max_tokens": llm_cfg.max_tokens,
        }
        # json_object mode only allows a top-level object, so arrays go
        # out in plain text mode and rely on the parser.
        if expect_json == "object":
            request["response_format"] = {"type": "json_object"}

        last_error: Optional[BaseException] = None
        for attempt in range(1, llm_cfg.max_retries + 1):
            try:
                response = await self.client.chat.completions.create(**request)
                text = (response.choices[0].message.content or "").strip()
                logger.info(
                    "Completion returned %d chars on attempt %d/%d",
                    len(text), attempt, llm_cfg.max_retries,
                )
                return text
            except Exception as exc:
                last_error = exc
                if attempt == llm_cfg.max_retries:
                    break
                delay = llm_cfg.retry_base_delay * (2 ** (attempt - 1))
                logger.warning(
                    "Completion attempt %d/%d failed: %s. Retrying in %.1fs.",
                    attempt, llm_cfg.max_retries, exc, delay,
                )
                await asyncio.sleep(delay)

        raise CompletionError(
            f"Completion failed after {llm_cfg.max_retries} attempts: {last_error}",
            user_message=_user_message_for(last_error),
        ) from last_error


def _user_message_for(exc: Optional[BaseException]) -> str:
    if exc is None:
        return "The evaluation service did not respond."
    return describe_error(exc)


def build_completion_service(cfg: Optional[Config] = None) -> CompletionService:
    """
    Build the production service. Fails with ConfigurationError when the
    credential is missing — at construction, never on the first call.
    """
    cfg = cfg or default_config
    cfg.require_api_key()
    return OpenAICompletionService(cfg)
