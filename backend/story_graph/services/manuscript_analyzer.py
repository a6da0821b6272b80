"""Boundary to the external (LLM-backed) manuscript analyzer."""

from __future__ import annotations

from typing import Any, Protocol

from story_graph.models import ChapterAnalysis, NarrativeContext


class ManuscriptAnalyzer(Protocol):
    async def analyze(
        self,
        *,
        project_id: str,
        text: str,
        chapter_number: int,
        context: NarrativeContext,
    ) -> ChapterAnalysis | dict[str, Any]:
        """Turn raw chapter text into a structured analysis.

        ``context`` is the current narrative state so the analyzer can keep
        names and threads consistent with earlier chapters.
        """
        ...
