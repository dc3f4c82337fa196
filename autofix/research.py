"""
Research clients for Autofix.

The correction strategist may consult a research backend before it gives
up on a line. Backends sit behind the ``ResearchClient`` interface and are
treated as optional and possibly unavailable: every call is bounded by a
timeout and failures surface as ``ResearchError``.

Backends:
---------
- OfflineResearchClient: a small built-in knowledge base, no network
- HttpResearchClient: a Tavily-compatible search API over ``requests``
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import requests

from .config import ResearchConfig


logger = logging.getLogger(__name__)

# Results returned per depth level
RESULTS_PER_DEPTH = {1: 1, 2: 3, 3: 5}


class ResearchError(Exception):
    """Error from a research backend."""


@dataclass
class ResearchResult:
    """A single research hit."""
    title: str
    url: str
    snippet: str
    relevance: int = 0  # 0-100


@dataclass
class ResearchResponse:
    """Answer to a research query."""
    query: str
    summary: str
    results: List[ResearchResult] = field(default_factory=list)
    depth: int = 2

    @property
    def sources(self) -> List[str]:
        return [r.url for r in self.results if r.url]


def _check_depth(depth: int) -> int:
    if depth not in RESULTS_PER_DEPTH:
        raise ResearchError(f"Research depth must be 1, 2 or 3 (got {depth})")
    return depth


class ResearchClient(ABC):
    """Abstract interface for research backends."""

    @abstractmethod
    def research(self, query: str, depth: int = 2) -> ResearchResponse:
        """
        Look up guidance for a query.

        Args:
            query: Free-text query, usually an error message
            depth: 1 (quick) to 3 (thorough)

        Returns:
            ResearchResponse with results ordered by relevance

        Raises:
            ResearchError: On invalid input, API or network errors
        """


# (keywords, title, url, snippet)
KNOWLEDGE_BASE: Tuple[Tuple[Tuple[str, ...], str, str, str], ...] = (
    (
        ("npm", "install", "cannot find module", "package"),
        "Installing npm packages",
        "https://docs.npmjs.com/cli/commands/npm-install",
        "Run `npm install <package>` to add a missing dependency, or `npm install` "
        "to restore everything listed in package.json.",
    ),
    (
        ("pip", "no module named", "modulenotfounderror"),
        "Installing Python packages with pip",
        "https://pip.pypa.io/en/stable/cli/pip_install/",
        "Run `pip install <package>` inside the active virtual environment; check "
        "that the import name matches the distribution name.",
    ),
    (
        ("syntaxerror", "invalid syntax", "was never closed", "expected ':'"),
        "Python SyntaxError reference",
        "https://docs.python.org/3/tutorial/errors.html#syntax-errors",
        "The parser reports the earliest point where the input stopped making "
        "sense; the real mistake is often on the line before the caret.",
    ),
    (
        ("ts", "typescript", "expression expected", "cannot find name"),
        "Understanding TypeScript compiler errors",
        "https://www.typescriptlang.org/docs/handbook/2/basic-types.html",
        "Compiler diagnostics include file:line:column; fix the first reported "
        "error first, later ones are often cascades.",
    ),
    (
        ("unexpected token", "is not defined", "referenceerror", "node"),
        "Node.js errors",
        "https://nodejs.org/api/errors.html",
        "ReferenceError means an identifier is used before it is declared; "
        "SyntaxError with 'Unexpected token' usually points at an incomplete statement.",
    ),
    (
        ("git", "merge", "conflict", "detached"),
        "Git troubleshooting",
        "https://git-scm.com/docs",
        "Use `git status` to inspect the working tree before changing history.",
    ),
    (
        ("ls", "list files", "no such file or directory", "enoent"),
        "Missing files and directories",
        "https://man7.org/linux/man-pages/man1/ls.1.html",
        "Confirm the working directory with `pwd` and list it with `ls -la`; "
        "relative paths resolve against the directory the command runs in.",
    ),
)


class OfflineResearchClient(ResearchClient):
    """Answers from the built-in knowledge base without network access."""

    def research(self, query: str, depth: int = 2) -> ResearchResponse:
        depth = _check_depth(depth)
        if not query or not query.strip():
            raise ResearchError("Research query must not be empty")

        lowered = query.lower()
        scored = []
        for keywords, title, url, snippet in KNOWLEDGE_BASE:
            hits = sum(1 for keyword in keywords if keyword in lowered)
            if hits:
                relevance = min(100, int(hits / len(keywords) * 100) + 25)
                scored.append(ResearchResult(title=title, url=url, snippet=snippet, relevance=relevance))

        scored.sort(key=lambda r: r.relevance, reverse=True)
        results = scored[:RESULTS_PER_DEPTH[depth]]
        if results:
            summary = results[0].snippet
        else:
            summary = f"No offline guidance found for: {query.strip()[:100]}"
        return ResearchResponse(query=query, summary=summary, results=results, depth=depth)


class HttpResearchClient(ResearchClient):
    """
    Tavily-compatible search API client.

    Depth 1 runs a basic search with one result; depth 2 and 3 run an
    advanced search with three and five results.
    """

    def __init__(self, api_key: str, endpoint: str = "https://api.tavily.com/search", timeout: float = 10.0):
        if not api_key:
            raise ResearchError("An API key is required for the HTTP research client")
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout = timeout

    def research(self, query: str, depth: int = 2) -> ResearchResponse:
        depth = _check_depth(depth)
        payload = {
            "api_key": self.api_key,
            "query": query,
            "max_results": RESULTS_PER_DEPTH[depth],
            "search_depth": "basic" if depth == 1 else "advanced",
            "include_answer": True,
        }

        try:
            response = requests.post(self.endpoint, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.Timeout as e:
            raise ResearchError("Research request timed out") from e
        except requests.HTTPError as e:
            raise ResearchError(f"Research API error: {e}") from e
        except requests.RequestException as e:
            raise ResearchError(f"Research network error: {e}") from e
        except ValueError as e:
            raise ResearchError(f"Research API returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ResearchError(f"Research API returned an unexpected payload: {type(data).__name__}")
        items = data.get("results") or []
        if not isinstance(items, list):
            raise ResearchError("Research API returned results in an unexpected shape")

        results = []
        for item in items:
            if not isinstance(item, dict):
                logger.debug(f"Skipping malformed research result: {item!r}")
                continue
            results.append(_to_result(item))
            if len(results) == RESULTS_PER_DEPTH[depth]:
                break

        summary = data.get("answer") or (results[0].snippet if results else "")
        if not isinstance(summary, str):
            summary = str(summary)
        return ResearchResponse(query=query, summary=summary, results=results, depth=depth)


def _to_result(item: dict) -> ResearchResult:
    """Convert one API result, tolerating missing or non-numeric fields."""
    try:
        score = float(item.get("score") or 0.0)
    except (TypeError, ValueError):
        score = 0.0
    if not math.isfinite(score):
        score = 0.0
    return ResearchResult(
        title=str(item.get("title") or ""),
        url=str(item.get("url") or ""),
        snippet=str(item.get("content") or "")[:500],
        relevance=max(0, min(100, int(round(score * 100)))),
    )


def get_research_client(config: ResearchConfig) -> Optional[ResearchClient]:
    """
    Build the research client selected by configuration.

    Returns:
        HttpResearchClient when enabled with an API key, OfflineResearchClient
        when enabled without one, None when research is disabled
    """
    if not config.enabled:
        return None
    if config.api_key:
        return HttpResearchClient(
            api_key=config.api_key,
            endpoint=config.endpoint,
            timeout=config.timeout_seconds
        )
    logger.debug("No research API key configured; using offline knowledge base")
    return OfflineResearchClient()
