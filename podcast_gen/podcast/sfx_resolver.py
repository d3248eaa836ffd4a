"""Resolution of SFX script lines to searchable sound effects."""

from typing import Dict, List, Protocol

from loguru import logger

from podcast_gen.core.tools.errors import CollaboratorError
from podcast_gen.podcast_material import Project, ScriptLine, SoundEffect, UnresolvedSfx


class SoundEffectSearch(Protocol):
    def search(self, keywords: str) -> List[SoundEffect]: ...


def keyword_variants(keywords: str, min_words: int = 1) -> List[str]:
    """Progressively shorter queries: all words first, then dropping words from the end.

    >>> keyword_variants("heavy wooden door creak")
    ['heavy wooden door creak', 'heavy wooden door', 'heavy wooden', 'heavy']
    """
    words = keywords.split()
    return [" ".join(words[:n]) for n in range(len(words), max(min_words, 1) - 1, -1) if n > 0]


class SoundEffectResolver:
    """Match SFX lines to sound effects found by keyword search.

    Each line is searched with its keywords (or its text when it has none); when a query
    finds nothing, it is retried with fewer words. Search results are reused for repeated
    queries within one resolver.

    Args:
        search: Sound effect search, usually a ``FreesoundClient``
        min_words: Shortest query worth sending
    """

    def __init__(self, search: SoundEffectSearch, min_words: int = 1) -> None:
        self.search = search
        self.min_words = min_words
        self._results: Dict[str, List[SoundEffect]] = {}

    def _search(self, query: str) -> List[SoundEffect]:
        if query not in self._results:
            self._results[query] = self.search.search(query)
        return self._results[query]

    def find(self, keywords: str) -> SoundEffect | None:
        """Best sound effect for ``keywords``, or None if no query variant finds one.

        Raises:
            CollaboratorError: If the search service fails
        """
        for query in keyword_variants(keywords, self.min_words):
            effects = self._search(query)
            if effects:
                if query != keywords.strip():
                    logger.debug(f"Sound effect '{keywords}' matched with shortened query '{query}'")
                return effects[0]
        return None

    def resolve_line(self, line: ScriptLine) -> bool:
        """Resolve one SFX line in place. Returns True if a sound effect was attached."""
        if not line.is_sfx or line.effect is not None:
            return False
        keywords = line.text
        if isinstance(line.sound_effect, UnresolvedSfx) and line.sound_effect.search_keywords:
            keywords = line.sound_effect.search_keywords
        if not keywords.strip():
            return False
        effect = self.find(keywords)
        if effect is None:
            logger.warning(f"No sound effect found for '{keywords}'")
            return False
        line.resolve(effect)
        return True

    def resolve_project(self, project: Project) -> int:
        """Resolve every unresolved SFX line of ``project``.

        Search failures are logged and leave the line unresolved; the mixer skips it.

        Returns:
            int: Number of lines resolved
        """
        resolved = 0
        for chapter in project.chapters:
            for index, line in enumerate(chapter.script):
                try:
                    if self.resolve_line(line):
                        resolved += 1
                except CollaboratorError as e:
                    logger.warning(f"[chapter {chapter.id}] line {index}: {e}")
        logger.info(f"Resolved {resolved} sound effect line(s)")
        return resolved
