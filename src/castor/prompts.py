"""Prompt texts: the system prompt and the orchestration loop's instructions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from castor.tools.base import Tool


@dataclass(frozen=True)
class UserContext:
    """Optional facts about the person asking, folded into the system prompt."""

    user_name: str = ""
    organization: str = ""
    role: str = ""
    api_host: str = ""
    preferences: dict[str, str] = field(default_factory=dict)

    def render(self) -> str:
        lines = []
        if self.user_name:
            lines.append(f"- User: {self.user_name}")
        if self.organization:
            lines.append(f"- Organization: {self.organization}")
        if self.role:
            lines.append(f"- Role: {self.role}")
        if self.api_host:
            lines.append(f"- API host for examples: {self.api_host}")
        lines.extend(f"- {k}: {v}" for k, v in sorted(self.preferences.items()))
        return "\n".join(lines)


_BASE = """\
You are {name}, an assistant that answers questions about an API using its \
documentation. You have {tool_count} tool(s) available.

Rules:
- Ground every answer in documentation returned by your tools. Do not invent \
endpoints, parameters or response fields.
- Search with the {search_tool} tool before answering. If a search finds \
nothing useful, search again with different terms: synonyms, singular or \
plural forms, the resource name plus "endpoint" or "API".
- Quote HTTP methods and paths exactly as documented (for example \
"POST /api/customers").
- When the documentation does not cover the question, say so plainly."""


def system_prompt(
    *,
    name: str,
    tools: Sequence[Tool],
    search_tool: str,
    user_context: UserContext | None = None,
    custom_prompt: str | None = None,
) -> str:
    parts = [_BASE.format(name=name, tool_count=len(tools), search_tool=search_tool)]
    if tools:
        parts.append(
            "Tools:\n" + "\n".join(f"- {t.name}: {t.description}" for t in tools)
        )
    if user_context is not None:
        rendered = user_context.render()
        if rendered:
            parts.append("User context:\n" + rendered)
    if custom_prompt:
        parts.append(custom_prompt)
    return "\n\n".join(parts)


def search_requirement(search_count: int, min_searches: int, search_tool: str) -> str:
    return (
        f"SEARCH REQUIREMENT: you have made {search_count}/{min_searches} searches. "
        f"Continue searching until you find useful information or reach "
        f"{min_searches} searches.\n\n"
        "Search strategies:\n"
        "- Try business-domain alternatives (bonus -> voucher, reservation -> booking)\n"
        "- Use singular and plural variations\n"
        "- Combine the resource with API terms (endpoint, list, get, create)\n"
        "- Think about which business function the user wants\n"
        "- Try abbreviated forms and technical variations\n\n"
        "If recent searches returned useful information you may answer now. "
        f"Otherwise call {search_tool} again with completely different search terms."
    )


FINAL_ANSWER_INSTRUCTION = (
    "IMPORTANT: You've reached the maximum search depth. Provide a complete "
    "final answer based on the information you've already gathered. Do not "
    "promise further searches."
)


def exhaustive_search_message(search_count: int) -> str:
    return (
        f"After exhaustive search ({search_count} attempts), I could not find the "
        "specific information you requested in the available documentation. "
        "This may mean:\n\n"
        "1. The information is in a different location or format\n"
        "2. The documentation is incomplete for this query\n"
        "3. The feature is not documented yet\n\n"
        "Suggestions:\n"
        "- Rephrase the question with different keywords\n"
        "- Name the exact API operation you need\n"
        "- Check whether other documentation sources exist\n\n"
        f"Search attempts made: {search_count}"
    )


def provider_failure_message(search_count: int, excerpt: str = "") -> str:
    if not excerpt:
        return (
            f"After {search_count} search attempts, I'm experiencing technical "
            "difficulties. Please try rephrasing your question."
        )
    return (
        f"After {search_count} searches, I found some information but had trouble "
        "composing a full answer. This is what the documentation returned:\n\n"
        f"{excerpt}\n\n"
        "The excerpt may be incomplete; rephrasing the question may help."
    )


TECHNICAL_DIFFICULTIES = (
    "I'm experiencing technical difficulties reaching the language model. "
    "Please try again shortly or rephrase your question."
)


def continuing_search_message(search_count: int, min_searches: int) -> str:
    return f"Continuing search... ({search_count}/{min_searches} attempts made)"


def title_prompt(first_user_message: str) -> str:
    return (
        "Write a short title (at most six words, no quotes or trailing "
        "punctuation) for a conversation that starts with this message:\n\n"
        f"{first_user_message}"
    )


def summary_prompt(transcript: str) -> str:
    return (
        "Summarize this conversation in two or three sentences. Name the API "
        "resources and operations discussed and any open questions.\n\n"
        f"{transcript}"
    )
