"""
Optional conversation persistence.

Stores conversation identities, their user/assistant turns and the memories
archived from them, so a session can be resumed with its long-term memory.
Lookups of unknown conversations raise ConversationNotFound; nothing here
creates an identity implicitly.
"""

import logging
from typing import Optional, Protocol

from .errors import ConversationNotFound
from .memory.turns import ArchivedMemory, Role, parse_role

logger = logging.getLogger(__name__)


class PersistenceStore(Protocol):
    def create_conversation(self, name: str) -> int:
        ...

    def find_conversation(self, name: str) -> int:
        ...

    def load_turns(self, conversation_id: int) -> list[tuple[Role, str]]:
        ...

    def append_turn(self, conversation_id: int, role: Role, content: str):
        ...

    def save_memory(self, conversation_id: int, memory: ArchivedMemory):
        ...

    def load_memories(self, conversation_id: int) -> list[ArchivedMemory]:
        ...


class InMemoryPersistenceStore:
    """Process-local store, mostly useful for tests and throwaway sessions."""

    def __init__(self):
        self._names: dict[str, int] = {}
        self._turns: dict[int, list[tuple[Role, str]]] = {}
        self._memories: dict[int, list[ArchivedMemory]] = {}

    def create_conversation(self, name: str) -> int:
        if name in self._names:
            return self._names[name]
        conversation_id = len(self._names) + 1
        self._names[name] = conversation_id
        self._turns[conversation_id] = []
        self._memories[conversation_id] = []
        return conversation_id

    def find_conversation(self, name: str) -> int:
        try:
            return self._names[name]
        except KeyError:
            raise ConversationNotFound(name) from None

    def load_turns(self, conversation_id: int) -> list[tuple[Role, str]]:
        if conversation_id not in self._turns:
            raise ConversationNotFound(conversation_id)
        return list(self._turns[conversation_id])

    def append_turn(self, conversation_id: int, role: Role, content: str):
        if conversation_id not in self._turns:
            raise ConversationNotFound(conversation_id)
        self._turns[conversation_id].append((role, content))

    def save_memory(self, conversation_id: int, memory: ArchivedMemory):
        if conversation_id not in self._memories:
            raise ConversationNotFound(conversation_id)
        self._memories[conversation_id].append(memory)

    def load_memories(self, conversation_id: int) -> list[ArchivedMemory]:
        if conversation_id not in self._memories:
            raise ConversationNotFound(conversation_id)
        return list(self._memories[conversation_id])


def _row_value(row, key: str, position: int):
    return row[key] if isinstance(row, dict) else row[position]


class PostgresPersistenceStore:
    """
    PostgreSQL-backed store using a psycopg connection.

    The connection should be opened with ``autocommit=True``; rows may use
    either tuple or ``dict_row`` factories.
    """

    def __init__(self, pg_conn):
        self._pg_conn = pg_conn
        self._setup_tables()

    @classmethod
    def connect(cls, db_url: str) -> "PostgresPersistenceStore":
        from psycopg import Connection
        from psycopg.rows import dict_row

        conn = Connection.connect(
            db_url,
            autocommit=True,
            prepare_threshold=0,
            row_factory=dict_row,
        )
        return cls(conn)

    def _setup_tables(self):
        """Create conversations, messages and memories tables if missing."""
        with self._pg_conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS conversations (
                    id BIGSERIAL PRIMARY KEY,
                    session_name TEXT NOT NULL UNIQUE,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id BIGSERIAL PRIMARY KEY,
                    conversation_id BIGINT NOT NULL REFERENCES conversations(id)
                        ON DELETE CASCADE,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """)
            cur.execute("""
                CREATE INDEX IF NOT EXISTS idx_messages_conversation
                ON messages (conversation_id, id)
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS memories (
                    conversation_id BIGINT NOT NULL REFERENCES conversations(id)
                        ON DELETE CASCADE,
                    memory_id BIGINT NOT NULL,
                    content TEXT NOT NULL,
                    embedding DOUBLE PRECISION[] NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    PRIMARY KEY (conversation_id, memory_id)
                )
            """)

    def create_conversation(self, name: str) -> int:
        with self._pg_conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO conversations (session_name) VALUES (%s)
                ON CONFLICT (session_name) DO UPDATE SET session_name = EXCLUDED.session_name
                RETURNING id
                """,
                (name,),
            )
            return int(_row_value(cur.fetchone(), "id", 0))

    def find_conversation(self, name: str) -> int:
        with self._pg_conn.cursor() as cur:
            cur.execute("SELECT id FROM conversations WHERE session_name = %s", (name,))
            row = cur.fetchone()
        if not row:
            raise ConversationNotFound(name)
        return int(_row_value(row, "id", 0))

    def _exists(self, conversation_id: int) -> bool:
        with self._pg_conn.cursor() as cur:
            cur.execute("SELECT 1 FROM conversations WHERE id = %s", (conversation_id,))
            return cur.fetchone() is not None

    def load_turns(self, conversation_id: int) -> list[tuple[Role, str]]:
        if not self._exists(conversation_id):
            raise ConversationNotFound(conversation_id)
        with self._pg_conn.cursor() as cur:
            cur.execute(
                """
                SELECT role, content FROM messages
                WHERE conversation_id = %s
                ORDER BY id
                """,
                (conversation_id,),
            )
            rows = cur.fetchall()
        return [
            (parse_role(_row_value(r, "role", 0)), _row_value(r, "content", 1))
            for r in rows
        ]

    def append_turn(self, conversation_id: int, role: Role, content: str):
        with self._pg_conn.cursor() as cur:
            cur.execute(
                "INSERT INTO messages (conversation_id, role, content) VALUES (%s, %s, %s)",
                (conversation_id, role.value, content),
            )

    def save_memory(self, conversation_id: int, memory: ArchivedMemory):
        with self._pg_conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO memories (conversation_id, memory_id, content, embedding)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (conversation_id, memory_id) DO NOTHING
                """,
                (conversation_id, memory.id, memory.content, list(memory.embedding)),
            )

    def load_memories(self, conversation_id: int) -> list[ArchivedMemory]:
        if not self._exists(conversation_id):
            raise ConversationNotFound(conversation_id)
        with self._pg_conn.cursor() as cur:
            cur.execute(
                """
                SELECT memory_id, content, embedding FROM memories
                WHERE conversation_id = %s
                ORDER BY memory_id
                """,
                (conversation_id,),
            )
            rows = cur.fetchall()
        return [
            ArchivedMemory(
                id=int(_row_value(r, "memory_id", 0)),
                content=_row_value(r, "content", 1),
                embedding=tuple(float(x) for x in _row_value(r, "embedding", 2)),
            )
            for r in rows
        ]


def open_persistence(db_url: Optional[str]) -> Optional[PostgresPersistenceStore]:
    """Connect to PostgreSQL when a URL is given; None means no persistence."""
    if not db_url:
        return None
    try:
        return PostgresPersistenceStore.connect(db_url)
    except Exception as e:
        logger.warning("Failed to initialize PostgreSQL persistence: %s", e)
        return None
