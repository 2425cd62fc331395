"""The agent facade: one object that wires providers, tools, memory and the loop.

Example:
    settings = load_settings()
    async with Agent.from_settings(settings) as agent:
        agent.start_conversation()
        response = await agent.send_message("How do I create a customer?")
        print(response.content)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from castor import prompts
from castor.memory.manager import MemoryManager
from castor.orchestrator import OrchestrationPolicy, RoundOptions, ToolCallOrchestrator
from castor.providers.factory import create_provider_set
from castor.providers.lazy import LazyProvider
from castor.providers.models import CompletionRequest, CompletionResponse, Message
from castor.tools.base import ToolExecution
from castor.tools.registry import ToolRegistry
from castor.tools.search import DirectorySearchEngine, KnowledgeBaseTool

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from types import TracebackType

    from castor.config import Settings
    from castor.memory.session import ConversationMemory
    from castor.providers.base import Provider
    from castor.tools.base import Tool, ToolResult
    from castor.tools.search import SearchEngine

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New conversation"
_TITLE_MAX_CHARS = 50
_SUMMARY_MIN_MESSAGES = 2
_SUMMARY_TRANSCRIPT_MESSAGES = 20


@dataclass(frozen=True)
class MessageOptions:
    max_tokens: int = 2500
    temperature: float = 0.7
    #: Token budget for history pulled from memory.
    context_limit: int = 4000
    #: Appended to the system prompt for this message only.
    custom_prompt: str | None = None


class Agent:
    """Conversational documentation agent.

    The agent owns its provider set; ``aclose()`` (or leaving the async
    context) cancels background probing and closes provider clients.
    """

    def __init__(
        self,
        provider: Provider,
        registry: ToolRegistry,
        memory: MemoryManager,
        *,
        policy: OrchestrationPolicy | None = None,
        name: str = "castor",
        system_prompt: str | None = None,
        user_context: prompts.UserContext | None = None,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.memory = memory
        self.policy = policy or OrchestrationPolicy()
        self.name = name
        self.system_prompt = system_prompt
        self.user_context = user_context
        self.orchestrator = ToolCallOrchestrator(provider, registry, self.policy)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        tools: Iterable[Tool] | None = None,
        search_engine: SearchEngine | None = None,
        user_context: prompts.UserContext | None = None,
    ) -> Agent:
        """Build an agent from resolved settings.

        Unless *tools* is given, the registry holds the knowledge-base search
        tool over *search_engine* (default: a directory engine on
        ``kbase.path``).

        Raises:
            NoProvidersConfiguredError: no provider is enabled.
        """
        provider = create_provider_set(settings)
        registry = ToolRegistry()
        if tools is None:
            engine = search_engine or DirectorySearchEngine(
                settings.kbase.path, extensions=settings.kbase.extensions
            )
            tools = [
                KnowledgeBaseTool(
                    engine,
                    name=settings.orchestration.search_tool,
                    max_results=settings.kbase.max_results,
                )
            ]
        for tool in tools:
            registry.register_tool(tool)

        return cls(
            provider,
            registry,
            MemoryManager.from_settings(settings.memory),
            policy=OrchestrationPolicy.from_settings(settings.orchestration),
            name=settings.agent.name,
            system_prompt=settings.agent.system_prompt,
            user_context=user_context,
        )

    # --- lifecycle ---

    def start(self) -> None:
        """Begin background provider probing, if the provider set does any."""
        if isinstance(self.provider, LazyProvider):
            self.provider.start()

    async def wait_until_ready(self, timeout: float | None = None) -> bool:
        """Wait until a provider answers; False if none does within *timeout*."""
        self.start()
        try:
            async with asyncio.timeout(timeout):
                return await self.provider.is_available()
        except TimeoutError:
            return False

    async def aclose(self) -> None:
        if self.memory.current_session is not None:
            self.memory.save()
        await self.provider.aclose()

    async def __aenter__(self) -> Agent:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # --- conversations ---

    def start_conversation(self, title: str | None = None) -> ConversationMemory:
        return self.memory.start_new_session(title=title or "")

    def load_conversation(self, session_id: str) -> ConversationMemory:
        return self.memory.load_session(session_id)

    def delete_conversation(self, session_id: str) -> bool:
        return self.memory.delete_session(session_id)

    @property
    def current_session(self) -> ConversationMemory | None:
        return self.memory.current_session

    async def send_message(
        self,
        text: str,
        options: MessageOptions | None = None,
        *,
        status: Callable[[str], None] | None = None,
    ) -> CompletionResponse:
        """Answer *text* within the current conversation.

        Provider failures become an apologetic response rather than an
        exception.

        Raises:
            SessionError: no conversation is active.
        """
        options = options or MessageOptions()
        notify = status or (lambda _msg: None)
        notify("Processing request...")

        self.memory.add_message(Message(role="user", content=text))
        session_id = self.memory.require_session().session_id

        notify("Preparing tools...")
        available = await self.registry.list_available_tools()
        tools = [t.function_definition() for t in available]

        notify("Building context...")
        context = self.memory.get_context_for_query(text, options.context_limit)
        custom = "\n\n".join(p for p in (self.system_prompt, options.custom_prompt) if p)
        system = prompts.system_prompt(
            name=self.name,
            tools=available,
            search_tool=self.policy.search_tool,
            user_context=self.user_context,
            custom_prompt=custom or None,
        )
        messages = [Message(role="system", content=system), *context]

        notify("Thinking...")
        request = CompletionRequest(
            messages=messages,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            tools=tools or None,
            tool_choice="auto" if tools else None,
        )
        try:
            response = await self.provider.complete(request)
        except Exception as e:
            logger.warning("Completion failed for session %s: %s", session_id, e)
            response = CompletionResponse(content=prompts.TECHNICAL_DIFFICULTIES)
        else:
            if response.tool_calls:
                response = await self.orchestrator.run(
                    response,
                    messages,
                    tools=tools,
                    options=RoundOptions(
                        max_tokens=options.max_tokens, temperature=options.temperature
                    ),
                    status=notify,
                    session_id=session_id,
                )

        self.memory.add_message(Message(role="assistant", content=response.content))
        return response

    async def generate_title(self, session_id: str | None = None) -> str:
        """A short title for a conversation, based on its first user message."""
        session = self._session(session_id)
        first = next((m.content for m in session.messages if m.role == "user"), "")
        if not first:
            return DEFAULT_TITLE

        request = CompletionRequest(
            messages=[Message(role="user", content=prompts.title_prompt(first))],
            max_tokens=20,
            temperature=0.3,
        )
        try:
            response = await self.provider.complete(request)
        except Exception as e:
            logger.debug("Title generation failed: %s", e)
            return " ".join(first.split()[:4]) + "..."

        title = response.content.strip().strip("\"'")
        if len(title) > _TITLE_MAX_CHARS:
            title = title[: _TITLE_MAX_CHARS - 3] + "..."
        return title or DEFAULT_TITLE

    async def summarize_conversation(self, session_id: str | None = None) -> str:
        """Ask the model for a short summary and store it on the session.

        Keeps the existing summary if the model fails or answers with almost
        nothing.
        """
        session = self._session(session_id)
        turns = [
            f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}"
            for m in session.messages
            if m.role in ("user", "assistant")
        ]
        if len(turns) < _SUMMARY_MIN_MESSAGES:
            return session.summary

        request = CompletionRequest(
            messages=[
                Message(
                    role="user",
                    content=prompts.summary_prompt(
                        "\n\n".join(turns[-_SUMMARY_TRANSCRIPT_MESSAGES:])
                    ),
                )
            ],
            max_tokens=150,
            temperature=0.3,
        )
        try:
            response = await self.provider.complete(request)
        except Exception as e:
            logger.debug("Summary generation failed: %s", e)
            return session.summary

        summary = response.content.strip()
        if len(summary) > 10:
            session.summary = summary
            self.memory.store.save(session)
        return session.summary

    def _session(self, session_id: str | None) -> ConversationMemory:
        current = self.memory.current_session
        if session_id is None:
            return self.memory.require_session()
        if current is not None and current.session_id == session_id:
            return current
        return self.memory.store.load(session_id)

    # --- tools and diagnostics ---

    def register_tool(self, tool: Tool) -> None:
        self.registry.register_tool(tool)

    async def execute_tool(
        self, name: str, params: dict[str, Any], *, confirmed: bool = False
    ) -> ToolResult:
        """Run a tool directly, outside the model loop.

        Unlike the loop, direct calls are not pre-confirmed.
        """
        session = self.memory.current_session
        return await self.registry.execute_tool(
            ToolExecution(
                tool_name=name,
                parameters=params,
                session_id=session.session_id if session else "",
                confirmed=confirmed,
            )
        )

    def provider_status(self) -> list[dict[str, Any]]:
        if isinstance(self.provider, LazyProvider):
            return [vars(s) for s in self.provider.provider_status()]
        return [{"name": self.provider.name, "active": True, "available": None}]

    async def stats(self) -> dict[str, Any]:
        session = self.memory.current_session
        registry = await self.registry.stats()
        return {
            "provider": self.provider.name,
            "model": self.provider.default_model,
            "session_id": session.session_id if session else None,
            "session_messages": len(session.messages) if session else 0,
            "tools": vars(registry),
            "tool_usage": {k: vars(v) for k, v in self.registry.usage_stats().items()},
        }
