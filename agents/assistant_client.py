"""
Assistant Client - thin wrapper over the OpenAI Assistants v2 thread API.

One request maps to one thread: create thread, post a single user message
holding the instructions and the pretty-printed content JSON, start a run on
the configured assistant, then poll the run until it reaches a terminal state.
"""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import openai
from pydantic import BaseModel

from utils.errors import AssistantError, AssistantTimeoutError, TransportError
from .client_factory import ClientFactory
from .settings import ContentSettings

# Module logger
logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 2000
DEFAULT_MAX_ATTEMPTS = 30

FAILED_RUN_STATUSES = {"failed", "expired", "cancelled", "incomplete"}

SleepFn = Callable[[float], Awaitable[Any]]


class RunHandle(BaseModel):
    thread_id: str
    run_id: str
    status: str = "queued"


class AssistantClient:
    """Submits content to the brand voice assistant and waits for its reply."""

    def __init__(
        self,
        client: Any,
        assistant_id: str,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Optional[SleepFn] = None,
    ):
        """
        Args:
            client: An AsyncOpenAI instance (or anything exposing `.beta.threads`)
            assistant_id: Id of the pre-configured assistant
            poll_interval_ms: Default wait before each status check
            max_attempts: Default number of status checks before giving up
            sleep: Awaitable sleep taking seconds; defaults to asyncio.sleep
        """
        self.client = client
        self.assistant_id = assistant_id
        self.poll_interval_ms = poll_interval_ms
        self.max_attempts = max_attempts
        self.sleep = sleep or asyncio.sleep

    @classmethod
    def from_settings(cls, settings: ContentSettings, sleep: Optional[SleepFn] = None) -> "AssistantClient":
        client = ClientFactory.create_openai_client(settings)
        return cls(
            client,
            settings.assistant_id,
            poll_interval_ms=settings.poll_interval_ms,
            max_attempts=settings.max_attempts,
            sleep=sleep,
        )

    @property
    def _threads(self):
        return self.client.beta.threads

    async def _call(self, operation: str, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await one SDK call, converting SDK failures into TransportError."""
        try:
            return await fn(*args, **kwargs)
        except openai.APIStatusError as e:
            logger.error("Assistants API %s returned HTTP %s: %s", operation, e.status_code, e.message)
            raise TransportError(operation, e.message, status_code=e.status_code) from e
        except openai.APIConnectionError as e:
            logger.error("Assistants API %s could not connect: %s", operation, e)
            raise TransportError(operation, str(e)) from e
        except openai.APIError as e:
            logger.error("Assistants API %s failed: %s", operation, e)
            raise TransportError(operation, str(e)) from e

    @staticmethod
    def build_message(content_payload: Any, instructions: str) -> str:
        content_json = json.dumps(content_payload, indent=2, ensure_ascii=False)
        if not instructions:
            return content_json
        return f"{instructions.rstrip()}\n\n{content_json}"

    async def submit(
        self,
        content_payload: Any,
        instructions: str,
        additional_instructions: Optional[str] = None,
    ) -> RunHandle:
        """
        Create a thread, post the content message and start a run.

        Raises:
            TransportError: on connection failure or non-2xx from any call
        """
        message = self.build_message(content_payload, instructions)
        logger.debug("Submitting %d characters to assistant %s", len(message), self.assistant_id)

        thread = await self._call("create_thread", self._threads.create)
        await self._call(
            "create_message",
            self._threads.messages.create,
            thread_id=thread.id,
            role="user",
            content=message,
        )

        run_kwargs = {"thread_id": thread.id, "assistant_id": self.assistant_id}
        if additional_instructions:
            run_kwargs["additional_instructions"] = additional_instructions
        run = await self._call("create_run", self._threads.runs.create, **run_kwargs)

        handle = RunHandle(thread_id=thread.id, run_id=run.id, status=getattr(run, "status", None) or "queued")
        logger.info("Assistant run started (thread=%s, run=%s)", handle.thread_id, handle.run_id)
        return handle

    async def await_completion(
        self,
        handle: RunHandle,
        poll_interval_ms: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ) -> str:
        """
        Poll the run until it finishes and return the assistant's reply text.

        Each attempt waits one interval and then checks the run status, so the
        number of status checks never exceeds `max_attempts`.

        Raises:
            AssistantError: run ended failed/expired/cancelled/incomplete, or no reply text
            AssistantTimeoutError: still running after `max_attempts` checks
            TransportError: a status or message call failed
        """
        interval_ms = self.poll_interval_ms if poll_interval_ms is None else poll_interval_ms
        attempts = self.max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        for attempt in range(1, attempts + 1):
            await self.sleep(interval_ms / 1000.0)
            run = await self._call(
                "retrieve_run",
                self._threads.runs.retrieve,
                handle.run_id,
                thread_id=handle.thread_id,
            )
            handle.status = run.status
            logger.debug("Run %s status=%s (check %d/%d)", handle.run_id, run.status, attempt, attempts)

            if run.status == "completed":
                return await self._fetch_reply(handle)
            if run.status in FAILED_RUN_STATUSES:
                detail = _describe_last_error(getattr(run, "last_error", None))
                logger.error("Assistant run %s ended with status %s: %s", handle.run_id, run.status, detail)
                raise AssistantError(run.status, detail)
            if run.status == "requires_action":
                logger.warning("Run %s requires action; the content assistant should not call tools", handle.run_id)

        logger.error("Assistant run %s still %s after %d checks", handle.run_id, handle.status, attempts)
        raise AssistantTimeoutError(attempts, run_id=handle.run_id)

    async def _fetch_reply(self, handle: RunHandle) -> str:
        page = await self._call(
            "list_messages",
            self._threads.messages.list,
            thread_id=handle.thread_id,
            order="desc",
            limit=20,
        )
        for message in getattr(page, "data", []) or []:
            if getattr(message, "role", None) != "assistant":
                continue
            run_id = getattr(message, "run_id", None)
            if run_id and run_id != handle.run_id:
                continue
            text = _message_text(message)
            if text:
                return text
        raise AssistantError("completed", "run completed without an assistant text reply")

    async def ask(
        self,
        content_payload: Any,
        instructions: str,
        additional_instructions: Optional[str] = None,
        poll_interval_ms: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ) -> str:
        """Submit and wait: returns the raw reply text."""
        handle = await self.submit(content_payload, instructions, additional_instructions)
        return await self.await_completion(handle, poll_interval_ms, max_attempts)


def _message_text(message: Any) -> str:
    parts = []
    for block in getattr(message, "content", None) or []:
        if getattr(block, "type", None) != "text":
            continue
        text = getattr(block, "text", None)
        value = getattr(text, "value", None)
        if value:
            parts.append(value)
    return "\n".join(parts)


def _describe_last_error(last_error: Any) -> str:
    if not last_error:
        return ""
    code = getattr(last_error, "code", None)
    message = getattr(last_error, "message", None) or str(last_error)
    return f"{code}: {message}" if code else message
