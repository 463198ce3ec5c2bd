"""Safe WHERE-clause compilation for similarity and listing queries.

Every value is passed as a query parameter; only fixed property names are
interpolated into the Cypher text.
"""

from __future__ import annotations

from typing import Any

from semantic_memory.domain.models import SearchFilters


def epoch(value: Any) -> float | None:
    return value.timestamp() if value is not None else None


def compile_search_filters(
    filters: SearchFilters,
    conversation_id: str | None = None,
    alias: str = "m",
) -> tuple[str, dict[str, Any]]:
    """Compile search filters into a WHERE clause and parameters.

    Returns:
        Tuple of (clause without the WHERE keyword, parameters dict). The
        clause is ``"true"`` when nothing restricts the search.
    """
    clauses: list[str] = []
    params: dict[str, Any] = {}

    def add(clause: str, name: str, value: Any) -> None:
        clauses.append(clause.format(alias=alias, param=f"${name}"))
        params[name] = value

    if conversation_id is not None:
        add("{alias}.conversation_id = {param}", "conversation_id", conversation_id)
    if not filters.include_archived:
        clauses.append(f"coalesce({alias}.archived, false) = false")
    if filters.embedding_model is not None:
        add("{alias}.embedding_model = {param}", "embedding_model", filters.embedding_model)
    if filters.tags:
        # Match-any over the tag list
        add("ANY(t IN {param} WHERE t IN {alias}.tags)", "tags", list(filters.tags))
    if filters.source_types:
        add("{alias}.source_type IN {param}", "source_types", [t.value for t in filters.source_types])
    if filters.created_after is not None:
        add("{alias}.created_at >= {param}", "created_after", epoch(filters.created_after))
    if filters.created_before is not None:
        add("{alias}.created_at <= {param}", "created_before", epoch(filters.created_before))
    if filters.source_id is not None:
        add("{alias}.source_id = {param}", "source_id", filters.source_id)
    if filters.source_version is not None:
        add("{alias}.source_version = {param}", "source_version", filters.source_version)

    return (" AND ".join(clauses) if clauses else "true"), params
