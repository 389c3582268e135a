"""
Session orchestration: context window + long-term memory + completion.

Per user turn, SessionManager:

1. appends the user turn to the context window
2. embeds the user text and searches the archive index
3. pushes the archived text of each neighbour into the memory buffer, then
   drops the oldest memories until the rendered hint fits its token cap
4. evicts the oldest user/assistant pairs until the window plus the memory
   hint fits the budget
5. embeds and archives every evicted turn (index + content store)
6. rebuilds the index whenever vectors are waiting for a build

Only then is the completion request built, so it always reflects the
post-eviction window. The assistant's reply is appended when the stream
ends, including when the stream is cancelled part-way.

Long-term memory is best-effort: embedding, dimension and index-build
failures skip the dependent memory feature and are reported on the
TurnReport, but the conversation itself continues.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional, Union

from dotenv import load_dotenv

from .completion import CompletionService, LangChainCompletionService
from .errors import DimensionMismatch, EmbeddingUnavailable, IndexBuildFailure, NotFound
from .memory.brain import MemoryBuffer, build_memory_hint
from .memory.config import MemoryConfig
from .memory.content_store import ContentStore
from .memory.context_window import ContextWindow
from .memory.embedding import EmbeddingProvider, create_embedding_provider
from .memory.token_budget import TokenCounter
from .memory.turns import ArchivedMemory, ConversationTurn, Role, parse_role
from .memory.vector_index import VectorIndex
from .persistence import PersistenceStore, open_persistence

logger = logging.getLogger(__name__)


# Load environment variables (override=True lets .env win over the shell)
load_dotenv(override=True)


DEFAULT_MODEL = "claude-sonnet-4-5-20250929"


def get_credentials() -> tuple[Optional[str], Optional[str]]:
    """
    Resolve API credentials.

    Generic variables take priority over Anthropic-specific ones:
    - API key: API_KEY > ANTHROPIC_API_KEY > ANTHROPIC_AUTH_TOKEN
    - Base URL: API_BASE_URL > ANTHROPIC_BASE_URL
    """
    api_key = (
        os.getenv("API_KEY")
        or os.getenv("ANTHROPIC_API_KEY")
        or os.getenv("ANTHROPIC_AUTH_TOKEN")
    )
    base_url = os.getenv("API_BASE_URL") or os.getenv("ANTHROPIC_BASE_URL")
    return api_key, base_url


@dataclass
class TurnReport:
    """What happened to context and memory while preparing one user turn."""

    user_turn: ConversationTurn
    retrieved: list[str] = field(default_factory=list)
    trimmed_memories: list[str] = field(default_factory=list)
    evicted: list[ConversationTurn] = field(default_factory=list)
    archived: list[ArchivedMemory] = field(default_factory=list)
    dropped: list[ConversationTurn] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    index_built: Optional[bool] = None
    over_budget: bool = False


class ResponseStream:
    """
    Iterator over the assistant's reply deltas.

    The text received so far is committed exactly once: when the deltas run
    out, when the service raises, or on ``close()``. Closing a stream that
    never produced a delta commits an empty reply, so the conversation can
    always continue with a new user turn.
    """

    def __init__(self, deltas: Iterator[str], on_done: Callable[[str], object]):
        self._deltas = iter(deltas)
        self._on_done = on_done
        self._received: list[str] = []
        self.closed = False

    def __iter__(self) -> "ResponseStream":
        return self

    def __next__(self) -> str:
        if self.closed:
            raise StopIteration
        try:
            delta = next(self._deltas)
        except Exception:
            # Exhausted or failed: keep what arrived
            self.close()
            raise
        self._received.append(delta)
        return delta

    def __enter__(self) -> "ResponseStream":
        return self

    def __exit__(self, *exc_info):
        self.close()

    @property
    def text(self) -> str:
        return "".join(self._received)

    def close(self):
        if self.closed:
            return
        self.closed = True
        close = getattr(self._deltas, "close", None)
        if close is not None:
            close()
        self._on_done(self.text)


class SessionManager:
    """
    Owns one conversation's context window and long-term memory.

    Usage:
        session = SessionManager(config, TokenCounter(), "You are helpful.",
                                 embedding_provider=provider,
                                 completion_service=service,
                                 model_name="gpt-4o")
        report = session.begin_turn("What did we decide about the schema?")
        with session.stream_response() as stream:
            for delta in stream:
                print(delta, end="")

    Not safe for concurrent use; run one instance per conversation.
    """

    def __init__(
        self,
        config: MemoryConfig,
        token_counter: TokenCounter,
        system_prompt: Union[str, list[str]],
        embedding_provider: Optional[EmbeddingProvider] = None,
        completion_service: Optional[CompletionService] = None,
        model_name: str = "",
        persistence: Optional[PersistenceStore] = None,
        conversation_id: Optional[int] = None,
        on_archive: Optional[Callable[[ArchivedMemory], None]] = None,
    ):
        self.config = config
        self.model_name = model_name
        self.context_max_tokens = config.get_context_max_tokens(model_name)
        self.assistant_min_tokens = config.assistant_minimum_context_tokens
        self.memory_max_tokens = config.get_memory_max_tokens(self.context_max_tokens)
        self.token_counter = token_counter
        self.embedding_provider = embedding_provider
        self.completion_service = completion_service
        self.persistence = persistence
        self.conversation_id = conversation_id
        self.on_archive = on_archive
        self.last_report: Optional[TurnReport] = None

        self.window = ContextWindow(token_counter)
        self.index = self._new_index()
        self.content_store = ContentStore()
        self.memory_buffer = MemoryBuffer(config.memory_buffer_capacity)
        self._next_memory_id = 0

        prompts = [system_prompt] if isinstance(system_prompt, str) else list(system_prompt)
        if not prompts:
            raise ValueError("at least one system prompt is required")
        for prompt in prompts:
            self.window.add(Role.SYSTEM, prompt)

        if persistence is not None and conversation_id is not None:
            self._load_history()

    @classmethod
    def from_env(
        cls,
        system_prompt: Union[str, list[str]],
        model: Optional[str] = None,
        conversation_name: Optional[str] = None,
        create_conversation: bool = False,
        **kwargs,
    ) -> "SessionManager":
        """
        Build a session from environment variables.

        With DATABASE_URL and a conversation_name, the stored conversation is
        resumed together with its archived memories; it is only created when
        create_conversation is True.
        """
        config = MemoryConfig.from_env()
        model_name = model or os.getenv("CLAUDE_MODEL", DEFAULT_MODEL)
        api_key, base_url = get_credentials()
        model_provider = os.getenv("MODEL_PROVIDER")

        temperature = os.getenv("MODEL_TEMPERATURE")
        stop_words = [w for w in os.getenv("STOP_WORDS", "").split(",") if w]

        persistence = open_persistence(os.getenv("DATABASE_URL"))
        conversation_id = None
        if conversation_name:
            if persistence is None:
                logger.warning(
                    "No persistence configured, conversation '%s' will not be saved",
                    conversation_name,
                )
            elif create_conversation:
                conversation_id = persistence.create_conversation(conversation_name)
            else:
                conversation_id = persistence.find_conversation(conversation_name)

        return cls(
            config=config,
            token_counter=TokenCounter.from_config(config),
            system_prompt=system_prompt,
            embedding_provider=create_embedding_provider(
                config, api_key, base_url, model_provider
            ),
            completion_service=LangChainCompletionService(
                model_name,
                api_key=api_key,
                base_url=base_url,
                model_provider=model_provider,
                temperature=float(temperature) if temperature else None,
                stop_words=stop_words,
            ),
            model_name=model_name,
            persistence=persistence,
            conversation_id=conversation_id,
            **kwargs,
        )

    def _new_index(self) -> VectorIndex:
        return VectorIndex(
            self.config.vector_dimension,
            m=self.config.hnsw_m,
            ef_search=self.config.hnsw_ef_search,
        )

    def _hint_tokens(self) -> int:
        return self.memory_buffer.hint_tokens(self.token_counter.count)

    # ── Persistence ──

    def _load_history(self):
        """Resume the stored conversation into the tail, and its archive."""
        stored = self.persistence.load_turns(self.conversation_id)
        history = []
        expected = Role.USER
        for role, content in stored:
            if role is Role.SYSTEM:
                continue  # the preamble comes from system_prompt
            if role is not expected:
                logger.warning(
                    "Skipping stored %s turn out of order in conversation %s",
                    role.value,
                    self.conversation_id,
                )
                continue
            history.append((role, content))
            expected = Role.ASSISTANT if role is Role.USER else Role.USER
        if history and history[-1][0] is Role.USER:
            # The last question was never answered
            history.pop()
        for role, content in history:
            self.window.add(role, content)

        self._load_archive(self.persistence.load_memories(self.conversation_id))

        # Turns that no longer fit were archived when they were first evicted
        trimmed = self.window.evict_if_needed(
            self.context_max_tokens, self.assistant_min_tokens
        )
        logger.info(
            "Loaded %d turns (%d outside the context) and %d memories for conversation %s",
            len(history),
            len(trimmed),
            len(self.content_store),
            self.conversation_id,
        )

    def _load_archive(self, memories: list[ArchivedMemory]):
        for memory in memories:
            try:
                self.index.insert(memory.embedding, memory.id)
            except DimensionMismatch as e:
                logger.warning("Skipping stored memory %d: %s", memory.id, e)
                continue
            self.content_store.put(memory.id, memory.content)
            self._next_memory_id = max(self._next_memory_id, memory.id + 1)
        if self.index.pending_count:
            try:
                self.index.build()
            except IndexBuildFailure as e:
                # Retried on the next turn
                logger.warning("Failed to build index for stored memories: %s", e)

    def _persist(self, turn: ConversationTurn):
        if self.persistence is None or self.conversation_id is None:
            return
        try:
            self.persistence.append_turn(self.conversation_id, turn.role, turn.content)
        except Exception as e:
            logger.warning(
                "Failed to persist %s turn for conversation %s: %s",
                turn.role.value,
                self.conversation_id,
                e,
            )

    def _persist_memory(self, memory: ArchivedMemory):
        if self.persistence is None or self.conversation_id is None:
            return
        try:
            self.persistence.save_memory(self.conversation_id, memory)
        except Exception as e:
            logger.warning(
                "Failed to persist memory %d for conversation %s: %s",
                memory.id,
                self.conversation_id,
                e,
            )

    # ── Turn processing ──

    def _warn(self, report: TurnReport, message: str, *args):
        logger.warning(message, *args)
        report.warnings.append(message % args)

    def begin_turn(self, user_text: str) -> TurnReport:
        """Add the user's message and bring context and memory up to date."""
        report = TurnReport(user_turn=self.window.add(Role.USER, user_text))
        self._persist(report.user_turn)

        self._retrieve(user_text, report)
        report.trimmed_memories = self.memory_buffer.enforce_token_limit(
            self.token_counter.count, self.memory_max_tokens
        )

        hint_tokens = self._hint_tokens()
        report.evicted = self.window.evict_if_needed(
            self.context_max_tokens, self.assistant_min_tokens, hint_tokens
        )
        if report.evicted:
            self._archive(report.evicted, report)
        if self.index.pending_count:
            self._build_index(report)

        report.over_budget = self.window.is_over_budget(
            self.context_max_tokens, self.assistant_min_tokens, hint_tokens
        )
        if report.over_budget:
            self._warn(
                report,
                "Context still exceeds budget after eviction (%d/%d tokens)",
                self.window.total_tokens(),
                self.window.budget(
                    self.context_max_tokens, self.assistant_min_tokens, hint_tokens
                ),
            )

        for memory in report.archived:
            self._persist_memory(memory)
            if self.on_archive is not None:
                self.on_archive(memory)

        self.last_report = report
        return report

    def _retrieve(self, user_text: str, report: TurnReport):
        """Inject archived memories related to the user's message."""
        if self.embedding_provider is None:
            return
        try:
            vector = self.embedding_provider.encode(user_text)
            neighbours = self.index.search_with_distances(vector, self.config.retrieval_k)
        except EmbeddingUnavailable as e:
            self._warn(report, "Skipping memory retrieval: %s", e)
            return
        except DimensionMismatch as e:
            self._warn(report, "Skipping memory retrieval: %s", e)
            return

        max_distance = self.config.memory_max_distance
        for memory_id, distance in neighbours:
            if max_distance is not None and distance > max_distance:
                continue
            try:
                content = self.content_store.get(memory_id)
            except NotFound:
                continue
            self.memory_buffer.add(content)
            report.retrieved.append(content)

        if report.retrieved:
            logger.info("Retrieved %d memories for user turn", len(report.retrieved))

    def _archive(self, evicted: list[ConversationTurn], report: TurnReport):
        """Embed evicted turns into long-term memory."""
        if self.embedding_provider is None:
            logger.info(
                "No embedding provider, %d evicted turns not archived", len(evicted)
            )
            report.dropped.extend(evicted)
            return

        for turn in evicted:
            try:
                vector = self.embedding_provider.encode(turn.content)
                memory_id = self._next_memory_id
                self.index.insert(vector, memory_id)
            except (EmbeddingUnavailable, DimensionMismatch) as e:
                self._warn(
                    report,
                    "Dropped evicted %s turn #%d from long-term memory: %s",
                    turn.role.value,
                    turn.sequence_index,
                    e,
                )
                report.dropped.append(turn)
                continue
            self.content_store.put(memory_id, turn.content)
            self._next_memory_id += 1
            report.archived.append(
                ArchivedMemory(id=memory_id, content=turn.content, embedding=tuple(vector))
            )
        if report.archived:
            logger.info("Archived %d evicted turns", len(report.archived))

    def _build_index(self, report: TurnReport):
        """Build pending vectors, including any left over by an earlier failure."""
        try:
            self.index.build()
            report.index_built = True
        except IndexBuildFailure as e:
            report.index_built = False
            self._warn(report, "Vector index build failed, searching stale index: %s", e)

    # ── Completion ──

    def build_request(self) -> list[dict]:
        """Preamble, then the memory hint exchange, then the conversation tail."""
        messages = self.window.snapshot()
        split = len(self.window.preamble)
        return messages[:split] + build_memory_hint(self.memory_buffer) + messages[split:]

    def response_token_allowance(self, messages: Optional[list[dict]] = None) -> int:
        """Tokens left for the reply, never below the reserved assistant minimum."""
        if messages is None:
            messages = self.build_request()
        request_tokens = sum(self.token_counter.count(m["content"]) for m in messages)
        reserve = min(self.assistant_min_tokens, self.context_max_tokens)
        return max(self.context_max_tokens - request_tokens, reserve, 1)

    def commit_response(self, text: str) -> ConversationTurn:
        """Append the assistant's reply to the window."""
        turn = self.window.add(Role.ASSISTANT, text)
        self._persist(turn)
        return turn

    def stream_response(self, max_response_tokens: Optional[int] = None) -> ResponseStream:
        """
        Stream the assistant's reply for the pending user turn.

        Whatever text has arrived is committed as the assistant turn when the
        stream ends, is closed early, or fails.
        """
        if self.completion_service is None:
            raise RuntimeError("No completion service configured")
        messages = self.build_request()
        if max_response_tokens is None:
            max_response_tokens = self.response_token_allowance(messages)
        return ResponseStream(
            self.completion_service.complete(messages, max_response_tokens),
            self.commit_response,
        )

    def ask(self, user_text: str) -> str:
        """Run one full turn and return the assistant's reply."""
        self.begin_turn(user_text)
        with self.stream_response() as stream:
            return "".join(stream)

    # ── Checkpointing ──

    def checkpoint(self) -> dict:
        """Serializable state of the tail, memory buffer and archive."""
        archive = [
            ArchivedMemory(
                id=memory_id,
                content=self.content_store.get(memory_id),
                embedding=tuple(vector),
            ).to_dict()
            for memory_id, vector in self.index.entries()
            if memory_id in self.content_store
        ]
        return {
            "tail": [turn.to_dict() for turn in self.window.tail],
            "memory_buffer": self.memory_buffer.snapshot(),
            "archive": archive,
            "next_memory_id": self._next_memory_id,
        }

    def restore(self, state: dict):
        """
        Replace tail, memory buffer and archive with a checkpoint's contents.

        The checkpoint is fully validated before anything is replaced, so a
        TurnOrderError, UnknownRole or DimensionMismatch leaves the session
        as it was. A failed index build is retried on the next turn.
        """
        tail = [
            self.window.make_turn(parse_role(t["role"]), t["content"])
            for t in state.get("tail", [])
        ]

        index = self._new_index()
        content_store = ContentStore()
        next_id = int(state.get("next_memory_id", 0))
        for record in state.get("archive", []):
            memory_id = int(record["id"])
            index.insert(record["embedding"], memory_id)
            content_store.put(memory_id, record["content"])
            next_id = max(next_id, memory_id + 1)

        self.window.replace_tail(tail)
        self.memory_buffer.restore(state.get("memory_buffer", []))
        self.memory_buffer.enforce_token_limit(
            self.token_counter.count, self.memory_max_tokens
        )
        self.index = index
        self.content_store = content_store
        self._next_memory_id = next_id

        if index.pending_count:
            try:
                index.build()
            except IndexBuildFailure as e:
                logger.warning("Failed to build restored index, retrying next turn: %s", e)
        logger.info(
            "Restored checkpoint: %d tail turns, %d archived memories",
            len(self.window.tail),
            len(self.content_store),
        )
