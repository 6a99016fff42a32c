"""Hybrid retrieval: blends vector similarity with keyword relevance.

Semantic matches come from the Pinecone index, keyword matches from a
Postgres full-text query over ``chunks``. Each side is weighted, chunks found
by both are merged, and the final list is capped per document so one long
file cannot crowd out the rest.
"""

import asyncio
import re
from dataclasses import dataclass, field, replace
from typing import Literal

from app.core.cache import CacheNamespace, CacheTTL, cache, generate_cache_key
from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.vector_store import search_chunks
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

SearchType = Literal["semantic", "keyword", "hybrid"]
IntentType = Literal["factual", "conceptual", "comparative", "general"]


class SearchError(Exception):
    """Raised when hybrid search cannot produce results."""


# =============================================================================
# Types
# =============================================================================


@dataclass
class SearchResult:
    id: str
    score: float
    document_id: str
    document_title: str
    document_author: str
    chunk_index: int
    content: str
    token_count: int
    search_type: SearchType
    relevance_score: float


@dataclass
class HybridSearchOptions:
    semantic_weight: float = 0.7
    keyword_weight: float = 0.3
    min_semantic_score: float = 0.3
    min_keyword_score: float = 0.1
    max_results: int = 15
    enable_cache: bool = True
    user_id: str | None = None


@dataclass
class QueryIntent:
    type: IntentType
    confidence: float
    suggestions: list[str] = field(default_factory=list)


@dataclass
class IntelligentSearchResult:
    results: list[SearchResult]
    search_strategy: str
    confidence: float
    suggestions: list[str] = field(default_factory=list)


# =============================================================================
# Keyword relevance
# =============================================================================

_NON_WORD_RE = re.compile(r"[^\w\s]")


def _query_terms(query: str) -> list[str]:
    cleaned = _NON_WORD_RE.sub(" ", query.lower())
    return [t for t in cleaned.split() if len(t) > 2]


def calculate_keyword_relevance(query: str, content: str) -> float:
    """
    Score how well ``content`` matches the terms of ``query``, in [0, 1].

    Each matched term contributes term frequency (whole-word hits count
    double), a bonus for appearing early, a bonus for any whole-word hit and
    a capped frequency bonus. The sum is scaled by the share of query terms
    that matched at all.
    """
    terms = _query_terms(query)
    if not terms:
        return 0.0

    content_lower = content.lower()
    word_count = max(len(content_lower.split()), 1)
    total = 0.0
    matched = 0

    for term in terms:
        escaped = re.escape(term)
        exact = len(re.findall(rf"\b{escaped}\b", content_lower))
        partial = len(re.findall(escaped, content_lower)) - exact

        if exact == 0 and partial <= 0:
            continue

        matched += 1
        tf = (exact * 2 + partial) / word_count
        first_index = content_lower.find(term)
        position_bonus = (1 - first_index / len(content_lower)) * 0.2
        exact_bonus = 0.3 if exact > 0 else 0.0
        frequency_bonus = min((exact + partial) * 0.1, 0.5)
        total += tf + position_bonus + exact_bonus + frequency_bonus

    coverage = matched / len(terms)
    return min((total + coverage * 0.4) * coverage, 1.0)


# =============================================================================
# Search legs
# =============================================================================


def keyword_search(query: str, max_results: int = 10, min_score: float = 0.1) -> list[SearchResult]:
    """Full-text search over chunk content, re-scored with keyword relevance.

    Errors are logged and produce an empty list so the semantic leg can
    still answer.
    """
    try:
        client = get_supabase()
        response = (
            client.table("chunks")
            .select("id, document_id, chunk_index, content, token_count, documents!inner(title, author)")
            .text_search("content", query, options={"type": "websearch", "config": "english"})
            .limit(max_results * 2)
            .execute()
        )
    except Exception as e:
        logger.error(f"Keyword search failed: {e}")
        return []

    results = []
    for row in response.data or []:
        score = calculate_keyword_relevance(query, row.get("content") or "")
        if score < min_score:
            continue
        document = row.get("documents") or {}
        results.append(
            SearchResult(
                id=str(row["id"]),
                score=score,
                document_id=str(row["document_id"]),
                document_title=document.get("title") or "",
                document_author=document.get("author") or "",
                chunk_index=row.get("chunk_index") or 0,
                content=row.get("content") or "",
                token_count=row.get("token_count") or 0,
                search_type="keyword",
                relevance_score=score,
            )
        )

    results.sort(key=lambda r: r.score, reverse=True)
    return results[:max_results]


def _semantic_search(query_embedding: list[float], max_results: int, min_score: float) -> list[SearchResult]:
    return [
        SearchResult(
            id=m.id,
            score=m.score,
            document_id=m.document_id,
            document_title=m.document_title,
            document_author=m.document_author,
            chunk_index=m.chunk_index,
            content=m.content,
            token_count=m.token_count,
            search_type="semantic",
            relevance_score=m.score,
        )
        for m in search_chunks(query_embedding, top_k=max_results, min_score=min_score)
    ]


def diversify_results(results: list[SearchResult], max_per_document: int = 3) -> list[SearchResult]:
    """Keep result order but allow at most ``max_per_document`` hits per document."""
    per_document: dict[str, int] = {}
    diversified = []
    for result in results:
        count = per_document.get(result.document_id, 0)
        if count < max_per_document:
            diversified.append(result)
            per_document[result.document_id] = count + 1
    return diversified


def merge_results(
    semantic: list[SearchResult],
    keyword: list[SearchResult],
    semantic_weight: float,
    keyword_weight: float,
) -> list[SearchResult]:
    """Blend both legs into a single list sorted by descending score."""
    combined: dict[str, SearchResult] = {}

    for result in semantic:
        combined[result.id] = replace(
            result,
            score=result.score * semantic_weight,
            search_type="semantic",
            relevance_score=result.score,
        )

    for result in keyword:
        existing = combined.get(result.id)
        if existing is not None:
            combined[result.id] = replace(
                existing,
                score=existing.score + result.score * keyword_weight,
                search_type="hybrid",
                relevance_score=max(existing.relevance_score, result.score),
            )
        else:
            combined[result.id] = replace(
                result,
                score=result.score * keyword_weight,
                search_type="keyword",
                relevance_score=result.score,
            )

    return sorted(combined.values(), key=lambda r: r.score, reverse=True)


async def hybrid_search(
    query: str,
    query_embedding: list[float],
    options: HybridSearchOptions | None = None,
) -> list[SearchResult]:
    """
    Run semantic and keyword search concurrently and blend the results.

    Args:
        query: The user's question
        query_embedding: Embedding of ``query``
        options: Weights, score floors, result cap and cache settings

    Returns:
        Results sorted by blended score, capped at ``max_results`` and
        diversified across documents

    Raises:
        SearchError: If the vector search fails
    """
    opts = options or HybridSearchOptions()
    settings = get_settings()
    cache_key = generate_cache_key(
        query,
        semantic_weight=opts.semantic_weight,
        keyword_weight=opts.keyword_weight,
        min_semantic_score=opts.min_semantic_score,
        min_keyword_score=opts.min_keyword_score,
        max_results=opts.max_results,
        user_id=opts.user_id,
        model=settings.CHAT_MODEL,
        embedding_model=settings.EMBEDDING_MODEL,
    )

    if opts.enable_cache:
        cached = cache.get(CacheNamespace.SEARCH_RESULTS, cache_key)
        if cached is not None:
            logger.debug("Search cache hit", extra={"extra_data": {"key": cache_key}})
            return cached

    try:
        semantic, keyword = await asyncio.gather(
            asyncio.to_thread(_semantic_search, query_embedding, opts.max_results, opts.min_semantic_score),
            asyncio.to_thread(keyword_search, query, opts.max_results, opts.min_keyword_score),
        )
    except Exception as e:
        logger.error(f"Hybrid search failed: {e}")
        raise SearchError(f"Hybrid search failed: {e}") from e

    merged = merge_results(semantic, keyword, opts.semantic_weight, opts.keyword_weight)
    results = diversify_results(merged[: opts.max_results])

    logger.info(
        f"Hybrid search returned {len(results)} results",
        extra={
            "extra_data": {
                "semantic": len(semantic),
                "keyword": len(keyword),
                "hybrid": sum(1 for r in results if r.search_type == "hybrid"),
            }
        },
    )

    if opts.enable_cache:
        cache.set(CacheNamespace.SEARCH_RESULTS, cache_key, results, ttl=CacheTTL.SHORT)

    return results


# =============================================================================
# Query intent
# =============================================================================

_INTENT_PATTERNS: dict[str, list[re.Pattern]] = {
    "factual": [
        re.compile(r"^(what|when|where|who|which|how much|how many)"),
        re.compile(r"\b(define|definition|meaning|date|number|name|list)\b"),
        re.compile(r"\b(is|are|was|were|will be|has|have|had)\s"),
    ],
    "conceptual": [
        re.compile(r"^(how|why|explain|describe)"),
        re.compile(r"\b(understand|concept|theory|principle|process|mechanism)\b"),
        re.compile(r"\b(significance|importance|impact|effect|influence)\b"),
    ],
    "comparative": [
        re.compile(r"\b(compare|comparison|versus|vs|difference|similar|different)\b"),
        re.compile(r"\b(better|worse|best|worst|more|less|advantage|disadvantage)\b"),
        re.compile(r"\b(between|among|against)\b.*\b(and|or)\b"),
    ],
}

# Blend weights (semantic, keyword) per intent
INTENT_WEIGHTS: dict[str, tuple[float, float]] = {
    "factual": (0.4, 0.6),
    "conceptual": (0.8, 0.2),
    "comparative": (0.6, 0.4),
}


def analyze_query_intent(query: str) -> QueryIntent:
    """Classify a question as factual, conceptual, comparative or general."""
    lowered = query.lower().strip()
    scores = {
        intent: sum(1 for pattern in patterns if pattern.search(lowered))
        for intent, patterns in _INTENT_PATTERNS.items()
    }

    suggestions = []
    if len(query) < 10:
        suggestions.append("Try adding more specific terms to your question")
    if "?" not in query and ("what" in lowered or "how" in lowered):
        suggestions.append("Consider rephrasing as a complete question")

    best = max(scores.values())
    if best == 0:
        return QueryIntent(type="general", confidence=0.5, suggestions=suggestions)

    # dict order breaks ties: factual, conceptual, comparative
    intent = next(name for name, score in scores.items() if score == best)
    return QueryIntent(type=intent, confidence=min(best / 3, 1.0), suggestions=suggestions)


def calculate_search_confidence(results: list[SearchResult]) -> float:
    """Confidence in a result set from the top score, score spread and hybrid share."""
    if not results:
        return 0.0

    top = results[0].score
    confidence = min(top * 0.7, 0.7)

    if len(results) > 1 and top > 0 and results[1].score / top > 0.8:
        confidence += 0.15

    hybrid_count = sum(1 for r in results if r.search_type == "hybrid")
    confidence += hybrid_count / len(results) * 0.15

    return min(confidence, 1.0)


async def intelligent_search(
    query: str,
    query_embedding: list[float],
    options: HybridSearchOptions | None = None,
) -> IntelligentSearchResult:
    """Hybrid search with blend weights chosen from the query's intent."""
    opts = options or HybridSearchOptions()
    intent = analyze_query_intent(query)

    if intent.type in INTENT_WEIGHTS:
        semantic_weight, keyword_weight = INTENT_WEIGHTS[intent.type]
        opts = replace(opts, semantic_weight=semantic_weight, keyword_weight=keyword_weight)

    results = await hybrid_search(query, query_embedding, opts)

    return IntelligentSearchResult(
        results=results,
        search_strategy=f"{intent.type} ({opts.semantic_weight}/{opts.keyword_weight})",
        confidence=calculate_search_confidence(results),
        suggestions=intent.suggestions,
    )
