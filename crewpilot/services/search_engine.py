"""Relevance-scored full-text search over the project's memory files.

Documents are the core .team-config markdown files plus the user-research/
and evaluations/ directories. Lines are scored individually, clustered per
document, and documents are ranked by the sum of their best three matches.
"""

import json
import logging
import re
from collections import Counter
from pathlib import Path

from crewpilot.exceptions import SearchIndexError
from crewpilot.models.config import SearchConfig
from crewpilot.models.search import (
    MemoryIndex,
    QueryValidation,
    SearchIndexEntry,
    SearchMatch,
    SearchResponse,
    SearchResult,
)
from crewpilot.workspace import get_team_config_dir, utc_now, write_atomic

logger = logging.getLogger(__name__)

INDEX_FILE = "memory-index.json"

CORE_FILES = (
    "target-user-profile.md",
    "USER-CONTEXT.md",
    "project-context.md",
    "communication-log.md",
    "human-inbox.md",
    "state-snapshot.md",
    "session-recovery.md",
    "team-lead-persona.md",
    "human-directives.md",
    "needs-human-decision.md",
)
DOCUMENT_DIRS = ("user-research", "evaluations")

BINARY_SNIFF_BYTES = 1024
TOP_MATCHES_SCORED = 3
MIN_QUERY_LENGTH = 2
MIN_WORD_LENGTH = 2
MIN_FUZZY_WORD_LENGTH = 4
MIN_KEYWORD_LENGTH = 4
MAX_FREQUENT_KEYWORDS = 15
MAX_DISTINCTIVE_KEYWORDS = 5
MIN_DISTINCTIVE_LENGTH = 7

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_EDGE_PUNCTUATION = ".,;:!?\"'()[]{}<>`*_"


def validate_query(query: str, max_length: int = 200) -> QueryValidation:
    """Validate a raw query before any file is touched.

    Args:
        query: User input.
        max_length: Longest accepted query after trimming.

    Returns:
        QueryValidation; ``normalized`` is the trimmed query when valid.
    """
    if not isinstance(query, str) or not query:
        return QueryValidation(valid=False, error="Query must be a non-empty string.")

    trimmed = query.strip()
    if not trimmed:
        return QueryValidation(valid=False, error="Query cannot be empty.")
    if len(trimmed) < MIN_QUERY_LENGTH:
        return QueryValidation(
            valid=False,
            error="Please provide a search query (at least 2 characters).",
        )
    if len(trimmed) > max_length:
        return QueryValidation(
            valid=False,
            error=f"Query is too long (maximum {max_length} characters).",
        )
    if _CONTROL_CHARS_RE.search(trimmed):
        return QueryValidation(valid=False, error="Query contains invalid characters.")

    return QueryValidation(valid=True, normalized=trimmed)


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings (insert, delete, substitute)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def is_fuzzy_match(word: str, query: str) -> bool:
    """Check whether word is within edit distance of query.

    The threshold is 1 for queries of three characters or fewer, else 2.
    """
    if word == query:
        return True
    max_distance = 1 if len(query) <= 3 else 2
    # Length difference is a lower bound on the distance
    if abs(len(word) - len(query)) > max_distance:
        return False
    return levenshtein_distance(word, query) <= max_distance


def tokenize_query(query: str, case_sensitive: bool = False) -> list[str]:
    """Split a query into words of at least two characters."""
    text = query if case_sensitive else query.lower()
    return [word for word in text.split() if len(word) >= MIN_WORD_LENGTH]


def _line_words(line: str) -> list[str]:
    words = (word.strip(_EDGE_PUNCTUATION) for word in line.split())
    return [word for word in words if word]


def _at_word_boundary(needle: str, haystack: str) -> bool:
    return re.search(rf"\b{re.escape(needle)}\b", haystack) is not None


def calculate_score(
    line: str,
    query: str,
    query_words: list[str],
    case_sensitive: bool = False,
    fuzzy: bool = False,
) -> int:
    """Score one line against a query.

    Args:
        line: The document line.
        query: The normalized query.
        query_words: Tokenized query (see tokenize_query).
        case_sensitive: Match case exactly.
        fuzzy: Enable edit-distance matching.

    Returns:
        Score; 0 means no match.
    """
    haystack = line if case_sensitive else line.lower()
    needle = query if case_sensitive else query.lower()
    score = 0

    if needle in haystack:
        score += 20
        if _at_word_boundary(needle, haystack):
            score += 10
        if haystack.lstrip().startswith(needle):
            score += 5

    words = _line_words(haystack) if fuzzy else []

    if fuzzy:
        for word in words:
            if len(word) >= MIN_FUZZY_WORD_LENGTH and is_fuzzy_match(word, needle):
                score += 3

    matched = 0
    for query_word in query_words:
        if query_word in haystack:
            score += 3
            matched += 1
            if _at_word_boundary(query_word, haystack):
                score += 2
        elif fuzzy and len(query_word) >= MIN_FUZZY_WORD_LENGTH:
            if any(is_fuzzy_match(word, query_word) for word in words):
                score += 1
                matched += 1

    if len(query_words) > 1 and matched == len(query_words):
        score += 5

    return score


def is_binary(data: bytes) -> bool:
    """Null byte in the first KB means binary."""
    return b"\x00" in data[:BINARY_SNIFF_BYTES]


def extract_keywords(content: str) -> list[str]:
    """Pick index keywords for a document.

    The most frequent repeated words come first, followed by a few long
    words that occur once.
    """
    words = re.sub(r"[^\w\s]", " ", content.lower()).split()
    frequency = Counter(word for word in words if len(word) >= MIN_KEYWORD_LENGTH)

    frequent = [word for word, count in frequency.most_common() if count > 1][:MAX_FREQUENT_KEYWORDS]
    distinctive = [
        word for word, count in frequency.items() if count == 1 and len(word) >= MIN_DISTINCTIVE_LENGTH
    ][:MAX_DISTINCTIVE_KEYWORDS]

    return list(dict.fromkeys(frequent + distinctive))


class SearchEngine:
    """Searches and indexes one project's memory files."""

    def __init__(self, project_dir: str | Path, config: SearchConfig | None = None):
        self.project_dir = Path(project_dir)
        self.config = config or SearchConfig()
        self.config_dir = get_team_config_dir(self.project_dir)
        self.index_path = self.config_dir / INDEX_FILE

    @property
    def max_file_bytes(self) -> float:
        return self.config.max_file_size_mb * 1024 * 1024

    def _eligible(self, path: Path) -> bool:
        try:
            return path.is_file() and path.stat().st_size <= self.max_file_bytes
        except OSError:
            return False

    def get_searchable_files(self) -> list[Path]:
        """List the documents to search, core files first."""
        if not self.config_dir.is_dir():
            return []

        files = [self.config_dir / name for name in CORE_FILES]
        files = [path for path in files if self._eligible(path)]

        for dirname in DOCUMENT_DIRS:
            directory = self.config_dir / dirname
            if not directory.is_dir():
                continue
            try:
                files.extend(path for path in sorted(directory.glob("*.md")) if self._eligible(path))
            except OSError as e:
                logger.debug(f"Could not list {directory}: {e}")

        return files

    def search_in_file(
        self,
        path: Path,
        query: str,
        case_sensitive: bool = False,
        fuzzy: bool = False,
    ) -> SearchResult | None:
        """Score every line of one document.

        Returns:
            SearchResult, or None for empty, binary, unreadable or
            non-matching documents.
        """
        try:
            data = path.read_bytes()
        except OSError as e:
            logger.debug(f"Could not search {path}: {e}")
            return None
        if not data or is_binary(data):
            return None

        query_words = tokenize_query(query, case_sensitive)
        if not query_words:
            return None

        lines = data.decode("utf-8", errors="replace").split("\n")
        context = self.config.context_lines
        matches = []
        for i, line in enumerate(lines):
            score = calculate_score(line, query, query_words, case_sensitive, fuzzy)
            if score > 0:
                start = max(0, i - context)
                end = min(len(lines), i + context + 1)
                matches.append(
                    SearchMatch(
                        line_number=i + 1,
                        context_text="\n".join(lines[start:end]),
                        score=score,
                    )
                )

        if not matches:
            return None

        matches.sort(key=lambda m: (-m.score, m.line_number))

        # Keep the best match of each cluster of nearby hits
        kept: list[SearchMatch] = []
        for match in matches:
            if all(abs(match.line_number - other.line_number) > 2 * context for other in kept):
                kept.append(match)

        return SearchResult(
            document=str(path),
            aggregate_score=sum(m.score for m in kept[:TOP_MATCHES_SCORED]),
            matches=kept[: self.config.max_matches_per_file],
        )

    def build_index(self) -> MemoryIndex:
        """Rebuild memory-index.json from scratch.

        Returns:
            The written index.

        Raises:
            SearchIndexError: If the index file could not be written.
        """
        entries = []
        for path in self.get_searchable_files():
            try:
                data = path.read_bytes()
            except OSError as e:
                logger.debug(f"Could not index {path}: {e}")
                continue
            if is_binary(data):
                continue
            content = data.decode("utf-8", errors="replace")
            entries.append(
                SearchIndexEntry(
                    relative_path=path.relative_to(self.config_dir).as_posix(),
                    keywords=extract_keywords(content),
                    line_count=len(content.split("\n")),
                )
            )

        index = MemoryIndex(last_updated=utc_now(), entries=entries)
        try:
            write_atomic(self.index_path, index.model_dump_json(by_alias=True, indent=2))
        except OSError as e:
            raise SearchIndexError(f"Failed to write search index: {e}") from e

        logger.info(f"Indexed {len(entries)} documents into {self.index_path}")
        return index

    def load_index(self) -> MemoryIndex | None:
        """Read memory-index.json; a missing or corrupt index is None."""
        try:
            return MemoryIndex.model_validate(json.loads(self.index_path.read_text(encoding="utf-8")))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.debug(f"Ignoring unreadable index: {e}")
            return None

    def prioritize(self, files: list[Path], query: str, index: MemoryIndex | None) -> list[Path]:
        """Order files so that index keyword hits are searched first.

        Never drops a file; documents without keyword overlap are only moved
        to the back.
        """
        if index is None:
            return files
        query_words = [word for word in query.lower().split() if len(word) >= MIN_KEYWORD_LENGTH]
        if not query_words:
            return files

        hits = {
            self.config_dir / entry.relative_path
            for entry in index.entries
            if any(qw in kw or kw in qw for qw in query_words for kw in entry.keywords)
        }
        if not hits:
            return files
        return [f for f in files if f in hits] + [f for f in files if f not in hits]

    def search(
        self,
        query: str,
        limit: int | None = None,
        case_sensitive: bool = False,
        fuzzy: bool = False,
    ) -> SearchResponse:
        """Search all memory documents.

        Args:
            query: Raw user query; rejected queries never touch the disk.
            limit: Maximum documents returned (defaults to config).
            case_sensitive: Match case exactly.
            fuzzy: Enable edit-distance matching.

        Returns:
            SearchResponse with documents ranked by aggregate score.
        """
        validation = validate_query(query, self.config.max_query_length)
        if not validation.valid:
            return SearchResponse(query=query, error=validation.error)

        normalized = validation.normalized
        limit = limit or self.config.limit

        files = self.get_searchable_files()
        if not fuzzy:
            files = self.prioritize(files, normalized, self.load_index())

        results = []
        for path in files:
            result = self.search_in_file(path, normalized, case_sensitive, fuzzy)
            if result is not None:
                results.append(result)

        results.sort(key=lambda r: r.aggregate_score, reverse=True)

        return SearchResponse(
            query=normalized,
            results=results[:limit],
            total_results=len(results),
            documents_searched=len(files),
        )
