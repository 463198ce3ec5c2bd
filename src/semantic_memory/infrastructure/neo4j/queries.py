"""Centralized Cypher query definitions.

Dynamic parts are limited to WHERE clauses produced by
``compile_search_filters``; every value travels as a parameter.
"""

from typing import Any, LiteralString, cast

MEMORY_LABEL = "Memory"
SOURCE_LABEL = "KnowledgeSource"
CONVERSATION_LABEL = "Conversation"
VECTOR_INDEX_NAME = "memory_embeddings"


class MemoryQueries:
    """All memory-related queries in one place."""

    @staticmethod
    def insert_batch() -> LiteralString:
        # One statement per batch; the transaction makes it all-or-nothing
        return """
            UNWIND $rows AS row
            CREATE (m:Memory)
            SET m = row
            RETURN count(m) AS created
            """

    @staticmethod
    def get_by_id() -> LiteralString:
        return "MATCH (m:Memory {id: $id}) RETURN m {.*} AS m"

    @staticmethod
    def similarity_search(where: str) -> tuple[LiteralString, dict[str, Any]]:
        """Exact cosine scan with every filter applied before the LIMIT.

        ``vector.similarity.cosine`` returns ``(1 + cos) / 2``; the distance
        is converted back to ``1 - cos``.

        Args:
            where: Filter clause from ``compile_search_filters``

        Returns:
            Tuple of (query, params)
        """
        query = f"""
            MATCH (m:Memory)
            WHERE size(m.embedding) = $dimensions AND {where}
            WITH m, 1.0 - (2.0 * coalesce(vector.similarity.cosine(m.embedding, $embedding), 0.5) - 1.0) AS distance
            ORDER BY distance ASC, m.id ASC
            LIMIT $k
            RETURN m {{.*}} AS m, distance
            """
        return cast(LiteralString, query), {}

    @staticmethod
    def update_properties() -> LiteralString:
        return """
            MATCH (m:Memory {id: $id})
            SET m += $props
            RETURN m {.*} AS m
            """

    @staticmethod
    def increment_access() -> LiteralString:
        return """
            MATCH (m:Memory {id: $id})
            SET m.access_count = coalesce(m.access_count, 0) + 1,
                m.last_accessed_at = $accessed_at
            RETURN m {.*} AS m
            """

    @staticmethod
    def delete_by_ids() -> LiteralString:
        return """
            MATCH (m:Memory) WHERE m.id IN $ids
            WITH collect(m) AS nodes
            FOREACH (n IN nodes | DETACH DELETE n)
            RETURN size(nodes) AS deleted
            """

    @staticmethod
    def list_page() -> LiteralString:
        return """
            MATCH (m:Memory)
            WHERE ($conversation_id IS NULL OR m.conversation_id = $conversation_id)
              AND ($after_id IS NULL OR m.id > $after_id)
            WITH m ORDER BY m.id ASC LIMIT $limit
            RETURN m {.*} AS m
            """

    @staticmethod
    def count_for_conversation() -> LiteralString:
        return "MATCH (m:Memory {conversation_id: $conversation_id}) RETURN count(m) AS total"

    @staticmethod
    def count_chunks() -> LiteralString:
        return """
            MATCH (m:Memory {source_id: $source_id, source_version: $source_version})
            WHERE coalesce(m.archived, false) = false
            RETURN count(m) AS total
            """

    @staticmethod
    def archive_superseded() -> LiteralString:
        return """
            MATCH (m:Memory {source_id: $source_id})
            WHERE m.source_version <> $current_version AND m.superseded_by IS NULL
            SET m.archived = true, m.superseded_by = $current_version
            RETURN count(m) AS total
            """

    @staticmethod
    def delete_superseded() -> LiteralString:
        return """
            MATCH (m:Memory {source_id: $source_id})
            WHERE m.source_version <> $current_version AND m.superseded_by IS NULL
            WITH collect(m) AS nodes
            FOREACH (n IN nodes | DETACH DELETE n)
            RETURN size(nodes) AS total
            """


class SourceQueries:
    """Knowledge source persistence."""

    @staticmethod
    def upsert() -> LiteralString:
        return "MERGE (s:KnowledgeSource {id: $id}) SET s = $props"

    @staticmethod
    def get_by_id() -> LiteralString:
        return "MATCH (s:KnowledgeSource {id: $id}) RETURN s {.*} AS s"

    @staticmethod
    def get_by_locator() -> LiteralString:
        return "MATCH (s:KnowledgeSource {locator: $locator}) RETURN s {.*} AS s LIMIT 1"

    @staticmethod
    def list_all() -> LiteralString:
        return """
            MATCH (s:KnowledgeSource)
            WHERE $status IS NULL OR s.status = $status
            WITH s ORDER BY s.created_at ASC
            RETURN s {.*} AS s
            """


class ConversationQueries:
    """Conversation persistence."""

    @staticmethod
    def upsert() -> LiteralString:
        return "MERGE (c:Conversation {id: $id}) SET c = $props"

    @staticmethod
    def get_by_id() -> LiteralString:
        return "MATCH (c:Conversation {id: $id}) RETURN c {.*} AS c"

    @staticmethod
    def list_all() -> LiteralString:
        return "MATCH (c:Conversation) WITH c ORDER BY c.created_at ASC RETURN c {.*} AS c"

    @staticmethod
    def increment_count() -> LiteralString:
        return """
            MATCH (c:Conversation {id: $id})
            SET c.memory_count = CASE
                WHEN coalesce(c.memory_count, 0) + $delta < 0 THEN 0
                ELSE coalesce(c.memory_count, 0) + $delta
            END
            RETURN c.memory_count AS total
            """

    @staticmethod
    def set_count() -> LiteralString:
        return "MATCH (c:Conversation {id: $id}) SET c.memory_count = $count"


class SchemaQueries:
    """Constraints and indexes created by ``ensure_schema``."""

    @staticmethod
    def constraints() -> list[LiteralString]:
        return [
            "CREATE CONSTRAINT memory_id IF NOT EXISTS FOR (m:Memory) REQUIRE m.id IS UNIQUE",
            "CREATE CONSTRAINT knowledge_source_id IF NOT EXISTS FOR (s:KnowledgeSource) REQUIRE s.id IS UNIQUE",
            "CREATE CONSTRAINT conversation_id IF NOT EXISTS FOR (c:Conversation) REQUIRE c.id IS UNIQUE",
            "CREATE INDEX memory_conversation IF NOT EXISTS FOR (m:Memory) ON (m.conversation_id)",
            "CREATE INDEX memory_source IF NOT EXISTS FOR (m:Memory) ON (m.source_id, m.source_version)",
            "CREATE INDEX knowledge_source_locator IF NOT EXISTS FOR (s:KnowledgeSource) ON (s.locator)",
        ]

    @staticmethod
    def create_vector_index(dimensions: int) -> LiteralString:
        """Create vector index with specified dimensions."""
        query = f"""
            CREATE VECTOR INDEX {VECTOR_INDEX_NAME} IF NOT EXISTS
            FOR (m:Memory) ON m.embedding
            OPTIONS {{indexConfig: {{
              `vector.dimensions`: {int(dimensions)},
              `vector.similarity_function`: 'cosine'
            }}}}
            """
        return cast(LiteralString, query)
