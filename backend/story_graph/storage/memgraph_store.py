"""Memgraph storage adapter built on GQLAlchemy."""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Any, Iterator, Sequence

from gqlalchemy import Memgraph
from gqlalchemy.connection import Connection

from story_graph import config, errors
from story_graph.constants import EDGE_TYPES, GRAPH_LABELS, STATE_CHANGE
from story_graph.storage.ports import Deadline
from story_graph.storage.schema import constraint_statement, index_statement

logger = logging.getLogger(__name__)

_KNOWN_LABELS = frozenset((*GRAPH_LABELS, STATE_CHANGE))
_KNOWN_EDGE_TYPES = frozenset(EDGE_TYPES)


def _label(label: str) -> str:
    # Labels and edge types are interpolated into Cypher, so only known names pass.
    if label not in _KNOWN_LABELS:
        raise errors.SyncError(f"unknown node label: {label}")
    return label


def _edge_type(edge_type: str) -> str:
    if edge_type not in _KNOWN_EDGE_TYPES:
        raise errors.SyncError(f"unknown edge type: {edge_type}")
    return edge_type


def _writable(properties: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in properties.items() if key != "label"}


def _node_record(record: dict[str, Any]) -> dict[str, Any]:
    return {**record["props"], "label": record["label"]}


class _MemgraphConnectionPool:
    """Bounded pool shared by worker threads.

    ``max_size`` caps pooled plus checked-out connections. Bookkeeping happens
    under ``_lock``, as does the warm-up to ``min_size``. Later connects, closes and
    waits happen outside it.
    """

    def __init__(
        self,
        db: Memgraph,
        *,
        min_size: int,
        max_size: int,
        acquire_timeout: float,
        idle_timeout: float,
    ) -> None:
        if max_size < min_size:
            raise ValueError("memgraph pool max_size must be >= min_size")
        self._db = db
        self._min_size = min_size
        self._max_size = max_size
        self._acquire_timeout = acquire_timeout
        self._idle_timeout = idle_timeout
        self._pool: list[tuple[Connection, float]] = []
        self._in_use = 0
        self._initialized = False
        self._lock = threading.Lock()

    @property
    def in_use(self) -> int:
        with self._lock:
            return self._in_use

    @property
    def idle(self) -> int:
        with self._lock:
            return len(self._pool)

    def _connect(self) -> Connection:
        try:
            return self._db.new_connection()
        except Exception as exc:
            raise errors.ConnectivityError(f"memgraph is unreachable: {exc}") from exc

    def _initialize(self) -> None:
        with self._lock:
            if self._initialized:
                return
            for _ in range(self._min_size):
                self._pool.append((self._connect(), time.monotonic()))
            self._initialized = True

    @staticmethod
    def _close_connection(conn: Connection) -> None:
        conn._connection.close()

    def _checkout(self) -> tuple[Connection | None, bool, list[Connection]]:
        """Under the lock: take an idle connection, or reserve a slot for a new one."""
        now = time.monotonic()
        expired: list[Connection] = []
        with self._lock:
            while self._pool:
                conn, last_used = self._pool.pop()
                if now - last_used > self._idle_timeout:
                    expired.append(conn)
                    continue
                self._in_use += 1
                return conn, False, expired
            if self._in_use + len(self._pool) < self._max_size:
                self._in_use += 1
                return None, True, expired
        return None, False, expired

    def acquire(self) -> Connection:
        self._initialize()
        deadline = time.monotonic() + self._acquire_timeout
        while True:
            conn, reserved, expired = self._checkout()
            for stale in expired:
                self._close_connection(stale)
            if conn is not None:
                return conn
            if reserved:
                try:
                    return self._connect()
                except errors.ConnectivityError:
                    with self._lock:
                        self._in_use -= 1
                    raise
            if time.monotonic() >= deadline:
                raise errors.ConnectivityError("memgraph connection pool exhausted")
            time.sleep(0.05)

    def release(self, conn: Connection) -> None:
        with self._lock:
            if self._in_use <= 0:
                raise RuntimeError("memgraph connection pool release underflow")
            self._in_use -= 1
            self._pool.append((conn, time.monotonic()))

    def close(self) -> None:
        with self._lock:
            if self._in_use != 0:
                raise RuntimeError("memgraph connection pool closed with active sessions")
            pooled, self._pool = self._pool, []
        for conn, _ in pooled:
            self._close_connection(conn)


class _MemgraphTransaction:  # pragma: no cover
    def __init__(self, conn: Connection, deadline: Deadline | None) -> None:
        self._conn = conn
        self._deadline = deadline

    def _fetch(self, query: str, parameters: dict[str, Any]) -> list[dict[str, Any]]:
        if self._deadline is not None:
            self._deadline.check()
        return list(self._conn.execute_and_fetch(query, parameters))

    def find_node(self, *, project_id: str, label: str, key: str) -> dict[str, Any] | None:
        records = self._fetch(
            f"MATCH (n:{_label(label)} {{project_id: $project_id, key: $key}}) "
            "RETURN properties(n) AS props, labels(n)[0] AS label;",
            {"project_id": project_id, "key": key},
        )
        return _node_record(records[0]) if records else None

    def find_nodes(
        self, *, project_id: str, label: str, normalized_name: str
    ) -> list[dict[str, Any]]:
        records = self._fetch(
            f"MATCH (n:{_label(label)} {{project_id: $project_id, normalized_name: $name}}) "
            "RETURN properties(n) AS props, labels(n)[0] AS label;",
            {"project_id": project_id, "name": normalized_name},
        )
        return [_node_record(record) for record in records]

    def create_node(self, *, label: str, properties: dict[str, Any]) -> dict[str, Any]:
        records = self._fetch(
            f"CREATE (n:{_label(label)}) SET n += $props "
            "RETURN properties(n) AS props, labels(n)[0] AS label;",
            {"props": _writable(properties)},
        )
        return _node_record(records[0])

    def update_node(self, *, node_id: str, properties: dict[str, Any]) -> dict[str, Any]:
        records = self._fetch(
            "MATCH (n {id: $id}) SET n += $props "
            "RETURN properties(n) AS props, labels(n)[0] AS label;",
            {"id": node_id, "props": _writable(properties)},
        )
        if not records:
            raise errors.SyncError(f"node not found in transaction: {node_id}")
        return _node_record(records[0])

    def find_edge(
        self,
        *,
        project_id: str,
        edge_type: str,
        source_id: str,
        target_id: str,
        key: str = "",
    ) -> dict[str, Any] | None:
        records = self._fetch(
            f"MATCH ()-[r:{_edge_type(edge_type)}]->() "
            "WHERE r.project_id = $project_id AND r.source_id = $source_id "
            "AND r.target_id = $target_id AND r.key = $key "
            "RETURN properties(r) AS props;",
            {
                "project_id": project_id,
                "source_id": source_id,
                "target_id": target_id,
                "key": key,
            },
        )
        if not records:
            return None
        return {**records[0]["props"], "type": edge_type}

    def create_edge(
        self,
        *,
        edge_type: str,
        source_id: str,
        target_id: str,
        properties: dict[str, Any],
    ) -> dict[str, Any]:
        props = {
            **_writable(properties),
            "key": properties.get("key", ""),
            "source_id": source_id,
            "target_id": target_id,
        }
        records = self._fetch(
            "MATCH (a {id: $source_id}), (b {id: $target_id}) "
            f"CREATE (a)-[r:{_edge_type(edge_type)}]->(b) SET r += $props "
            "RETURN properties(r) AS props;",
            {"source_id": source_id, "target_id": target_id, "props": props},
        )
        if not records:
            raise errors.SyncError(
                f"{edge_type} endpoints must exist in project {properties['project_id']}"
            )
        return {**records[0]["props"], "type": edge_type}

    def update_edge(self, *, edge_id: str, properties: dict[str, Any]) -> dict[str, Any]:
        records = self._fetch(
            "MATCH ()-[r]->() WHERE r.id = $id SET r += $props "
            "RETURN properties(r) AS props, type(r) AS type;",
            {"id": edge_id, "props": _writable(properties)},
        )
        if not records:
            raise errors.SyncError(f"edge not found in transaction: {edge_id}")
        return {**records[0]["props"], "type": records[0]["type"]}

    def append_state_change(self, *, properties: dict[str, Any]) -> dict[str, Any]:
        counted = self._fetch(
            f"MATCH (s:{STATE_CHANGE} {{project_id: $project_id}}) RETURN count(s) AS total;",
            {"project_id": properties["project_id"]},
        )
        seq = int(counted[0]["total"]) + 1
        records = self._fetch(
            f"CREATE (s:{STATE_CHANGE}) SET s += $props "
            "RETURN properties(s) AS props, labels(s)[0] AS label;",
            {"props": {**_writable(properties), "seq": seq}},
        )
        return _node_record(records[0])

    def clear_project(self, *, project_id: str) -> None:
        self._fetch(
            "MATCH (n {project_id: $project_id}) DETACH DELETE n;",
            {"project_id": project_id},
        )


class MemgraphGraphStore:  # pragma: no cover
    """Graph store backed by a Memgraph server through a bounded connection pool."""

    def __init__(self, *, host: str | None = None, port: int | None = None) -> None:
        resolved_host = host or config.require_memgraph_host()
        resolved_port = port or config.require_memgraph_port()
        self.db = Memgraph(host=resolved_host, port=resolved_port)
        self._pool = _MemgraphConnectionPool(
            self.db,
            min_size=config.MEMGRAPH_POOL_MIN,
            max_size=config.MEMGRAPH_POOL_MAX,
            acquire_timeout=config.MEMGRAPH_POOL_ACQUIRE_TIMEOUT,
            idle_timeout=config.MEMGRAPH_POOL_IDLE_TIMEOUT,
        )

    def close(self) -> None:
        self._pool.close()
        cached = self.db._cached_connection
        if cached is None:
            return
        cached._connection.close()

    @contextmanager
    def session(self) -> Iterator[Connection]:
        conn = self._pool.acquire()
        try:
            yield conn
        finally:
            self._pool.release(conn)

    @contextmanager
    def transaction(self, *, deadline: Deadline | None = None) -> Iterator[_MemgraphTransaction]:
        with self.session() as conn:
            conn.execute("BEGIN")
            try:
                yield _MemgraphTransaction(conn, deadline)
                if deadline is not None:
                    deadline.check()
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _fetch(self, query: str, parameters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        with self.session() as conn:
            return list(conn.execute_and_fetch(query, parameters or {}))

    def _run_ddl(self, statement: str) -> None:
        with self.session() as conn:
            try:
                conn.execute(statement)
            except Exception as exc:
                if "already exists" not in str(exc).lower():
                    raise
                logger.debug("schema element already present: %s", statement)

    def ensure_unique_constraint(self, *, label: str, properties: Sequence[str]) -> None:
        self._run_ddl(constraint_statement(_label(label), list(properties)))

    def ensure_index(self, *, label: str, property: str) -> None:
        self._run_ddl(index_statement(_label(label), property))

    def fetch_nodes(
        self, *, project_id: str, labels: Sequence[str] | None = None
    ) -> list[dict[str, Any]]:
        wanted = list(labels) if labels is not None else list(GRAPH_LABELS)
        records = self._fetch(
            "MATCH (n {project_id: $project_id}) WHERE labels(n)[0] IN $labels "
            "RETURN properties(n) AS props, labels(n)[0] AS label;",
            {"project_id": project_id, "labels": wanted},
        )
        return [_node_record(record) for record in records]

    def fetch_edges(self, *, project_id: str) -> list[dict[str, Any]]:
        records = self._fetch(
            "MATCH ()-[r]->() WHERE r.project_id = $project_id "
            "RETURN properties(r) AS props, type(r) AS type;",
            {"project_id": project_id},
        )
        return [{**record["props"], "type": record["type"]} for record in records]

    def fetch_state_changes(self, *, project_id: str) -> list[dict[str, Any]]:
        records = self._fetch(
            f"MATCH (s:{STATE_CHANGE} {{project_id: $project_id}}) "
            "RETURN properties(s) AS props, labels(s)[0] AS label ORDER BY s.seq;",
            {"project_id": project_id},
        )
        return [_node_record(record) for record in records]

    def delete_project(self, *, project_id: str | None) -> int:
        if project_id is None:
            match, parameters = "MATCH (n)", {}
        else:
            match, parameters = "MATCH (n {project_id: $project_id})", {"project_id": project_id}
        counted = self._fetch(
            f"{match} OPTIONAL MATCH (n)-[r]->() "
            "RETURN count(DISTINCT n) AS nodes, count(r) AS edges;",
            parameters,
        )
        removed = int(counted[0]["nodes"]) + int(counted[0]["edges"]) if counted else 0
        with self.session() as conn:
            conn.execute(f"{match} DETACH DELETE n;", parameters)
        return removed
