"""Resolution of model line citations to canonical transcript line ids."""

from __future__ import annotations

from collections.abc import Iterable

from src.llm_notes.notes.schemas import CitedLine, PromptLine


def line_match_key(speaker: str, utterance: str) -> str:
    """Normalized speaker+utterance key used as the fallback lookup."""
    return f"{speaker.strip().lower()}::{utterance.strip().lower()}"


class LineResolver:
    """Two-tier lookup from cited lines to line ids.

    Built once per generation run from the lines sent to the model and
    read-only afterwards, so it is safe to share across concurrent
    assignment calls. Line numbers take precedence; the speaker+utterance
    key is consulted only when the cited number is unknown. For both maps
    the first occurrence of a key wins.
    """

    def __init__(self, lines: Iterable[PromptLine]) -> None:
        self._by_line_number: dict[int, str] = {}
        self._by_match_key: dict[str, str] = {}
        for line in lines:
            self._by_line_number.setdefault(line.line_number, line.line_id)
            self._by_match_key.setdefault(
                line_match_key(line.speaker, line.utterance), line.line_id
            )

    def resolve(self, citation: CitedLine) -> str | None:
        """Return the line id for a citation, or None when neither tier matches."""
        line_id = self._by_line_number.get(citation.line_number)
        if line_id is not None:
            return line_id
        return self._by_match_key.get(line_match_key(citation.speaker, citation.utterance))

    def resolve_all(self, citations: Iterable[CitedLine]) -> list[str]:
        """Resolve citations, dropping unresolvable ones and duplicates (order kept)."""
        resolved: dict[str, None] = {}
        for citation in citations:
            line_id = self.resolve(citation)
            if line_id is not None:
                resolved.setdefault(line_id, None)
        return list(resolved)
