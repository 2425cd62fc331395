"""Documentation search: the engine contract, a directory engine and the
``kbase`` tool the orchestration loop counts as a search attempt.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from pathlib import Path
import re
from typing import TYPE_CHECKING, Any, Protocol

from castor.tools.base import (
    ParameterSchema,
    PropertySchema,
    Tool,
    ToolCategory,
    ToolResult,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)

SEARCH_TOOL_NAME = "kbase"
DEFAULT_MAX_RESULTS = 10
MAX_RESULTS_LIMIT = 50

_WORD_RE = re.compile(r"[a-z0-9_/{}.-]+")
_STOPWORDS = frozenset(
    {"the", "and", "for", "how", "can", "what", "does", "with", "from", "into", "you"}
)


@dataclass(frozen=True)
class SearchHit:
    #: Path relative to the engine root.
    path: str
    #: Relevance in [0, 1].
    score: float
    reason: str = ""
    filename: str = ""


class SearchEngine(Protocol):
    """Keyword search over a document collection."""

    def find_relevant_files(self, query: str, max_results: int) -> list[SearchHit]: ...

    def extract_relevant_content(self, path: str, query: str, max_chars: int) -> str: ...


def query_terms(query: str) -> list[str]:
    """Lowercased search terms with short words and stopwords removed."""
    terms = []
    for word in _WORD_RE.findall(query.lower()):
        word = word.strip(".-")
        if len(word) > 2 and word not in _STOPWORDS and word not in terms:
            terms.append(word)
    return terms


class DirectorySearchEngine:
    """Score text files under *root* by query-term overlap.

    A file's score is the fraction of query terms it contains, with a bonus
    for terms in the filename, capped at 1.0. Reads never leave *root*.
    """

    def __init__(
        self,
        root: str | Path,
        *,
        extensions: Iterable[str] = (".md", ".txt", ".rst"),
        max_file_bytes: int = 1_000_000,
    ) -> None:
        self.root = Path(root).resolve()
        self.extensions = {e.lower() for e in extensions}
        self.max_file_bytes = max_file_bytes

    def _iter_files(self) -> Iterator[Path]:
        if not self.root.is_dir():
            return
        for path in sorted(self.root.rglob("*")):
            if (
                path.is_file()
                and path.suffix.lower() in self.extensions
                and path.stat().st_size <= self.max_file_bytes
            ):
                yield path

    def _resolve(self, relative: str) -> Path:
        path = (self.root / relative).resolve()
        if not path.is_relative_to(self.root):
            raise PermissionError(f"path escapes knowledge base root: {relative}")
        return path

    def read_file(self, relative: str) -> str:
        return self._resolve(relative).read_text(encoding="utf-8", errors="replace")

    def find_relevant_files(self, query: str, max_results: int) -> list[SearchHit]:
        terms = query_terms(query)
        if not terms:
            return []

        hits: list[SearchHit] = []
        for path in self._iter_files():
            text = path.read_text(encoding="utf-8", errors="replace").lower()
            stem = path.stem.lower()
            matched = [t for t in terms if t in text]
            in_name = [t for t in terms if t in stem]
            if not matched and not in_name:
                continue
            score = min(1.0, (len(matched) + 0.5 * len(in_name)) / len(terms))
            reason = f"matched {', '.join(matched or in_name)}"
            if in_name:
                reason += " (filename)"
            hits.append(
                SearchHit(
                    path=path.relative_to(self.root).as_posix(),
                    score=round(score, 3),
                    reason=reason,
                    filename=path.name,
                )
            )

        hits.sort(key=lambda h: (-h.score, h.path))
        return hits[:max_results]

    def extract_relevant_content(self, path: str, query: str, max_chars: int) -> str:
        """Return the paragraphs that mention the most query terms, in file order."""
        text = self.read_file(path)
        terms = query_terms(query)
        paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]
        if not terms or not paragraphs:
            return text[:max_chars]

        ranked = sorted(
            range(len(paragraphs)),
            key=lambda i: -sum(paragraphs[i].lower().count(t) for t in terms),
        )
        chosen: list[int] = []
        used = 0
        for i in ranked:
            if sum(paragraphs[i].lower().count(t) for t in terms) == 0:
                break
            if used + len(paragraphs[i]) > max_chars and chosen:
                continue
            chosen.append(i)
            used += len(paragraphs[i]) + 2
            if used >= max_chars:
                break
        if not chosen:
            return text[:max_chars]
        return "\n\n".join(paragraphs[i] for i in sorted(chosen))[:max_chars]


_TOPIC_SUGGESTIONS: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (("pay", "payment"), ("payment method", "billing payment", "sale payment")),
    (("customer", "client"), ("customer endpoint", "get customers", "customer API")),
    (("invoice",), ("invoice endpoint", "create invoice", "invoice API")),
    (("sale",), ("sale endpoint", "sales API", "billing sale")),
    (("booking", "reservation"), ("booking endpoint", "cancel booking", "booking API")),
)


def search_suggestions(query: str, *, limit: int = 6) -> list[str]:
    """Alternative phrasings to try when a search scores poorly."""
    q = query.lower().strip()
    suggestions: list[str] = []
    for keywords, topic in _TOPIC_SUGGESTIONS:
        if any(k in q for k in keywords):
            suggestions.extend(topic)
    for word in q.split():
        suggestions.extend([f"{word} endpoint", f"{word} API"])
        if not word.startswith(("get", "create")):
            suggestions.extend(
                [f"get {word}", f"create {word}", f"update {word}", f"delete {word}"]
            )

    unique: list[str] = []
    for s in suggestions:
        if s != q and s not in unique:
            unique.append(s)
    return unique[:limit]


class KnowledgeBaseTool(Tool):
    """Search the documentation knowledge base."""

    category = ToolCategory.DATA
    estimated_cost = 1

    def __init__(
        self,
        engine: SearchEngine,
        *,
        name: str = SEARCH_TOOL_NAME,
        max_results: int = DEFAULT_MAX_RESULTS,
        top_n: int = 3,
        content_chars: int = 1000,
        max_content_chars: int = 5000,
        poor_score: float = 0.3,
    ) -> None:
        self.engine = engine
        self.name = name
        self.max_results = max_results
        self.parameter_schema = ParameterSchema(
            properties={
                "query": PropertySchema(
                    type="string",
                    description="Search terms: endpoint names, resources or operations.",
                ),
                "max_results": PropertySchema(
                    type="number",
                    description="Maximum number of files to return.",
                    default=max_results,
                    minimum=1,
                    maximum=MAX_RESULTS_LIMIT,
                ),
            },
            required=("query",),
        )
        self.description = (
            "Search the API documentation knowledge base for endpoints, "
            "request formats and usage examples. Returns the most relevant "
            "files with extracted content."
        )
        self.top_n = top_n
        self.content_chars = content_chars
        self.max_content_chars = max_content_chars
        self.poor_score = poor_score

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        params = self.apply_defaults(params)
        query = str(params.get("query") or "").strip()
        if not query:
            return ToolResult.failure("query parameter is required")
        max_results = int(params.get("max_results", self.max_results))

        try:
            hits = await asyncio.to_thread(
                self.engine.find_relevant_files, query, max_results
            )
            message = await asyncio.to_thread(self._format_results, query, hits)
        except OSError as e:
            return ToolResult.failure(f"search failed: {e}")

        if not hits or hits[0].score < self.poor_score:
            suggestions = search_suggestions(query)
            if suggestions:
                message += (
                    "\n\nSUGGESTED ALTERNATIVE SEARCHES:\n"
                    f"Try these terms: {', '.join(suggestions)}"
                )

        return ToolResult.ok(
            data={"query": query, "total_results": len(hits), "results": hits},
            message=message,
        )

    def _format_results(self, query: str, hits: list[SearchHit]) -> str:
        if not hits:
            return f"No relevant files found for '{query}' in knowledge base."

        lines = [f"Found {len(hits)} relevant files for '{query}':", ""]
        for i, hit in enumerate(hits[: self.top_n], start=1):
            lines.append(f"{i}. {hit.filename or hit.path} (Score: {hit.score:.2f})")
            if hit.reason:
                lines.append(f"   Reason: {hit.reason}")
            try:
                content = self.engine.extract_relevant_content(
                    hit.path, query, self.content_chars
                )
            except OSError:
                logger.debug("Could not extract content from %s", hit.path, exc_info=True)
                content = ""
            if content:
                if len(content) > self.max_content_chars:
                    content = content[: self.max_content_chars] + "..."
                lines.append(f"   Content: {content}")
            lines.append("")

        if len(hits) > self.top_n:
            lines.append(f"... and {len(hits) - self.top_n} more files available")
        return "\n".join(lines)
