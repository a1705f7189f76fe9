"""Lexical similarity guard against near-duplicate context."""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from substrate.models import ContextItem
from substrate.utils import normalize_text

if TYPE_CHECKING:
    from substrate._context import ContextService

MIN_WORD_LENGTH = 3


def _words(text: str) -> set[str]:
    return {word for word in text.split(" ") if len(word) >= MIN_WORD_LENGTH}


def text_similarity(a: str, b: str) -> float:
    """Score how alike two texts are, from 0.0 to 1.0.

    Normalized equality scores 1.0. If one normalized text contains the
    other, the score is the length ratio of shorter to longer. Otherwise it
    is the Jaccard index of the word sets, ignoring words under three
    characters.
    """
    norm_a = normalize_text(a)
    norm_b = normalize_text(b)
    if norm_a == norm_b:
        return 1.0

    shorter, longer = sorted((norm_a, norm_b), key=len)
    if shorter in longer:
        return len(shorter) / len(longer)

    words_a = _words(norm_a)
    words_b = _words(norm_b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


@dataclass
class SimilarMatch:
    """An existing item similar to candidate text."""

    item: ContextItem
    similarity: int  # 0-100


class SimilarityGuard:
    """Finds existing items that resemble new content.

    Only the most recent items of a workspace are scanned, which keeps the
    check cheap but means older duplicates can slip through.
    """

    SCAN_LIMIT = 100
    DEFAULT_THRESHOLD = 0.6
    DUPLICATE_THRESHOLD = 0.7

    def __init__(self, context: "ContextService") -> None:
        self._context = context

    def find_similar(
        self,
        workspace_id: str,
        content: str,
        context_type: str | None = None,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> list[SimilarMatch]:
        """Find items in a workspace similar to ``content``.

        Args:
            workspace_id: Workspace to scan.
            content: Candidate text.
            context_type: Type of the candidate. Matches are reported across
                all types.
            threshold: Minimum similarity from 0.0 to 1.0.

        Returns:
            Matches sorted by descending similarity.
        """
        matches = []
        for item in self._context.recent(workspace_id, self.SCAN_LIMIT):
            score = text_similarity(content, item.content)
            if score >= threshold:
                matches.append(SimilarMatch(item=item, similarity=int(score * 100 + 0.5)))
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches

    def check_duplicate(
        self,
        workspace_id: str,
        content: str,
        context_type: str | None = None,
    ) -> SimilarMatch | None:
        """Return the best match if it is close enough to count as a duplicate."""
        matches = self.find_similar(
            workspace_id,
            content,
            context_type=context_type,
            threshold=self.DUPLICATE_THRESHOLD,
        )
        if matches and matches[0].similarity >= self.DUPLICATE_THRESHOLD * 100:
            return matches[0]
        return None
