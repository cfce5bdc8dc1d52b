"""
Pytest configuration and fixtures for scylla_column tests.

Provides:
- Recording fake session and deferred fake ResponseFuture
- An in-memory session that understands the builder's CQL shapes
- A callback executor
- Live-cluster fixtures for integration tests
"""

import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest
from dotenv import load_dotenv

from scylla_column import ColumnEntity, ColumnFamilyManager

load_dotenv()


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (require a Cassandra/ScyllaDB node)"
    )


# ============================================================================
# Fakes
# ============================================================================

def query_of(statement) -> str:
    """CQL text of whatever was handed to the session."""
    return statement if isinstance(statement, str) else statement.query_string


class FakeResponseFuture:
    """
    Stand-in for the driver's ResponseFuture.

    Completes on a timer thread ``delay`` seconds after ``start()``. Like the
    real future, callbacks added after completion run inline.
    """

    def __init__(self, pages=None, error=None, delay=0.05):
        self._pages = list(pages) if pages is not None else [None]
        self._page_index = 0
        self._error = error
        self._delay = delay
        self._lock = threading.Lock()
        self._callbacks = []
        self._errbacks = []
        self._final = None
        self._done = threading.Event()
        self.has_more_pages = False
        self.completed_at = None
        self.page_requests = 0

    def start(self):
        threading.Timer(self._delay, self._deliver).start()

    def _deliver(self):
        with self._lock:
            if self._error is not None:
                self._final = ("error", self._error)
            else:
                self.has_more_pages = self._page_index < len(self._pages) - 1
                self._final = ("ok", self._pages[self._page_index])
            callbacks = list(self._callbacks)
            errbacks = list(self._errbacks)
            self.completed_at = time.monotonic()

        self._fire(callbacks, errbacks)
        if self._error is not None or not self.has_more_pages:
            self._done.set()

    def _fire(self, callbacks, errbacks):
        kind, value = self._final
        targets = callbacks if kind == "ok" else errbacks
        for fn, args, kwargs in targets:
            fn(value, *args, **kwargs)

    def _register(self, callbacks, errbacks):
        with self._lock:
            self._callbacks.extend(callbacks)
            self._errbacks.extend(errbacks)
            final = self._final
        if final is not None:
            self._fire(callbacks, errbacks)

    def add_callbacks(self, callback, errback, callback_args=(), callback_kwargs=None,
                      errback_args=(), errback_kwargs=None):
        self._register(
            [(callback, callback_args, callback_kwargs or {})],
            [(errback, errback_args, errback_kwargs or {})],
        )

    def add_callback(self, fn, *args, **kwargs):
        self._register([(fn, args, kwargs)], [])

    def add_errback(self, fn, *args, **kwargs):
        self._register([], [(fn, args, kwargs)])

    def start_fetching_next_page(self):
        with self._lock:
            self._page_index += 1
            self._final = None
            self.page_requests += 1
        self.start()

    def result(self, timeout=5.0):
        if not self._done.wait(timeout):
            raise TimeoutError("fake future did not complete")
        kind, value = self._final
        if kind == "error":
            raise value
        return value


class FakePreparedStatement:
    """Minimal PreparedStatement: counts '?' markers and binds tuples."""

    def __init__(self, query_string):
        self.query_string = query_string
        self.column_metadata = ["?"] * query_string.count("?")

    def bind(self, values):
        if len(values) > len(self.column_metadata):
            raise ValueError(
                f"Too many arguments provided to bind() (got {len(values)}, expected {len(self.column_metadata)})"
            )
        return FakeBoundStatement(self, tuple(values))


class FakeBoundStatement:
    def __init__(self, prepared, values):
        self.prepared_statement = prepared
        self.values = values
        self.query_string = prepared.query_string


class FakeSession:
    """
    Session that records every statement and answers from canned data.

    Args:
        rows: Rows returned by execute() and by single-page async results
        pages: Row pages for async results (overrides ``rows``)
        error: Raised by execute()
        async_error: Delivered to errbacks of async results
        delay: Seconds before an async result completes
    """

    def __init__(self, rows=None, pages=None, error=None, async_error=None, delay=0.05):
        self.rows = rows if rows is not None else []
        self.pages = pages
        self.error = error
        self.async_error = async_error
        self.delay = delay
        self.executed = []
        self.async_executed = []
        self.futures = []
        self.prepared = []
        self.shutdown_calls = 0

    @property
    def dispatched(self):
        return self.executed + self.async_executed

    def _respond(self, statement, parameters):
        return list(self.rows)

    def execute(self, statement, parameters=None):
        self.executed.append((statement, parameters))
        if self.error is not None:
            raise self.error
        return self._respond(statement, parameters)

    def execute_async(self, statement, parameters=None):
        self.async_executed.append((statement, parameters))
        pages = self.pages if self.pages is not None else [self._respond(statement, parameters)]
        future = FakeResponseFuture(pages=pages, error=self.async_error, delay=self.delay)
        self.futures.append(future)
        future.start()
        return future

    def prepare(self, query):
        prepared = FakePreparedStatement(query)
        self.prepared.append(prepared)
        return prepared

    def shutdown(self):
        self.shutdown_calls += 1


_INSERT = re.compile(r"^INSERT INTO (\w+)\.(\w+) \(([^)]*)\) VALUES")
_SELECT = re.compile(r"^SELECT .* FROM (\w+)\.(\w+)(?: WHERE (\w+) = %s)?")
_DELETE = re.compile(r"^DELETE .*FROM (\w+)\.(\w+) WHERE (\w+) = %s")


class InMemorySession(FakeSession):
    """
    FakeSession backed by dictionaries, keyed on each table's first column.

    Understands only the shapes the builder emits for single-equality queries.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.tables: dict[str, dict] = {}

    def _respond(self, statement, parameters):
        cql = query_of(statement)
        parameters = parameters or ()

        match = _INSERT.match(cql)
        if match:
            names = [name.strip() for name in match.group(3).split(",")]
            row = dict(zip(names, parameters))
            self.tables.setdefault(match.group(2), {})[row[names[0]]] = row
            return None

        match = _DELETE.match(cql)
        if match:
            table = self.tables.get(match.group(2), {})
            table.pop(parameters[0], None)
            return None

        match = _SELECT.match(cql)
        if match:
            rows = list(self.tables.get(match.group(2), {}).values())
            if match.group(3):
                rows = [row for row in rows if row.get(match.group(3)) == parameters[0]]
            return [dict(row) for row in rows]

        return []


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def executor():
    """Callback executor with recognisable thread names."""
    pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="test-callback")
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def manager(fake_session, executor):
    """Manager over a recording session, keyspace ``users``."""
    return ColumnFamilyManager(fake_session, executor, "users")


@pytest.fixture
def memory_session():
    return InMemorySession()


@pytest.fixture
def memory_manager(memory_session, executor):
    return ColumnFamilyManager(memory_session, executor, "users")


@pytest.fixture
def sample_entity():
    return ColumnEntity.of("person", {"id": "u1", "name": "Ann", "age": 30})


class CallbackRecorder:
    """Collects callback invocations and the thread each ran on."""

    def __init__(self):
        self.calls = []
        self.threads = []
        self.times = []
        self.event = threading.Event()

    def __call__(self, *args):
        self.calls.append(args)
        self.threads.append(threading.current_thread().name)
        self.times.append(time.monotonic())
        self.event.set()

    def wait(self, timeout=2.0) -> bool:
        return self.event.wait(timeout)


@pytest.fixture
def recorder():
    return CallbackRecorder()


@pytest.fixture
def error_recorder():
    return CallbackRecorder()


# ============================================================================
# Live cluster (integration)
# ============================================================================

@pytest.fixture(scope="session")
def live_session():
    """
    Session against a local node.

    Assumes Cassandra or ScyllaDB is running on localhost:9042.
    """
    from cassandra.cluster import Cluster

    cluster = Cluster(["127.0.0.1"])
    try:
        session = cluster.connect()
    except Exception as e:
        cluster.shutdown()
        pytest.skip(f"No live cluster available: {e}")

    session.execute(
        "CREATE KEYSPACE IF NOT EXISTS scylla_column_test "
        "WITH replication = {'class': 'SimpleStrategy', 'replication_factor': 1}"
    )
    session.execute(
        "CREATE TABLE IF NOT EXISTS scylla_column_test.person "
        "(id text PRIMARY KEY, name text, age int)"
    )

    yield session

    session.execute("DROP KEYSPACE IF EXISTS scylla_column_test")
    cluster.shutdown()
