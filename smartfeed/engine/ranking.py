"""
Aggregation and diversity filtering.

aggregate() flattens every lane into one list ordered by
`score × lane weight`; it keeps duplicates. diversify() then walks that list
once, dropping duplicate ids and anything that would extend an author or
content-type streak past the policy caps.
"""
from typing import Iterable, Mapping, Sequence

from smartfeed.engine.policy import FeedPolicy
from smartfeed.engine.types import Lane, ScoredItem


def aggregate(
    sources: Mapping[Lane, Sequence[ScoredItem]],
    weights: Mapping[str, float],
) -> list[ScoredItem]:
    candidates: list[ScoredItem] = []
    for lane, items in sources.items():
        weight = weights.get(lane.value, 0.0)
        for scored in items:
            scored.final_score = scored.score * weight
            candidates.append(scored)

    # Stable: ties keep lane order, then in-lane order
    candidates.sort(key=lambda s: s.final_score, reverse=True)
    return candidates


def diversify(candidates: Iterable[ScoredItem], policy: FeedPolicy) -> list[ScoredItem]:
    accepted: list[ScoredItem] = []
    seen_ids: set[str] = set()
    authors: set[str] = set()
    types: set[str] = set()

    last_author = None
    last_type = None
    author_streak = 0
    type_streak = 0

    for candidate in candidates:
        item = candidate.item
        if item.id in seen_ids:
            continue

        next_author_streak = author_streak + 1 if item.author_id == last_author else 0
        next_type_streak = type_streak + 1 if item.content_type == last_type else 0

        if next_author_streak >= policy.max_same_author:
            continue
        if next_type_streak >= policy.max_same_type:
            continue

        accepted.append(candidate)
        seen_ids.add(item.id)
        authors.add(item.author_id)
        types.add(item.content_type.value)
        last_author, author_streak = item.author_id, next_author_streak
        last_type, type_streak = item.content_type, next_type_streak

        if (
            len(authors) >= policy.min_distinct_authors
            and len(types) >= policy.min_distinct_types
            and len(accepted) >= policy.diversity_min_items
        ):
            break

    return accepted
