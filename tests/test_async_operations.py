"""
Tests for asynchronous ColumnFamilyManager operations and CompletionListener.

Tests:
- callbacks fire exactly once, after the call returns, on the executor
- payloads: original entity, no payload for deletes, converted rows for reads
- multi-page results are gathered before the callback
- failure delivery through errback, and logging without one
- fire-and-forget dispatch
"""

import logging
import threading
import time

import pytest
from cassandra import ConsistencyLevel, WriteTimeout

from scylla_column import (
    ColumnCondition,
    ColumnEntity,
    ColumnFamilyManager,
    ColumnQuery,
    CompletionListener,
    StoreResultError,
    StoreTimeoutError,
)

from conftest import FakeResponseFuture, FakeSession, query_of


def settle(seconds=0.2):
    """Give any stray duplicate callback time to show up."""
    time.sleep(seconds)


@pytest.mark.unit
class TestSaveAsync:
    """Test save_async/update_async."""

    def test_callback_receives_original_entity_once(self, manager, fake_session, sample_entity, recorder):
        manager.save_async(sample_entity, callback=recorder)
        returned_at = time.monotonic()

        assert recorder.wait()
        settle()
        assert recorder.calls == [(sample_entity,)]
        assert recorder.calls[0][0] is sample_entity
        assert recorder.times[0] >= returned_at
        assert len(fake_session.async_executed) == 1

    def test_callback_runs_on_executor_not_caller(self, manager, sample_entity, recorder):
        manager.save_async(sample_entity, callback=recorder)

        assert recorder.wait()
        assert recorder.threads[0].startswith("test-callback")
        assert recorder.threads[0] != threading.current_thread().name

    def test_callback_after_store_completion(self, manager, fake_session, sample_entity, recorder):
        manager.save_async(sample_entity, callback=recorder)

        assert recorder.wait()
        assert recorder.times[0] >= fake_session.futures[0].completed_at

    def test_returns_before_completion(self, executor, sample_entity, recorder):
        session = FakeSession(delay=0.3)
        manager = ColumnFamilyManager(session, executor, "users")

        future = manager.save_async(sample_entity, callback=recorder)

        assert recorder.calls == []
        assert future is session.futures[0]
        assert recorder.wait()

    def test_ttl_and_consistency_applied(self, manager, fake_session, sample_entity, recorder):
        manager.save_async(sample_entity, recorder, ttl=45, consistency_level=ConsistencyLevel.TWO)

        statement, parameters = fake_session.async_executed[0]
        assert query_of(statement).endswith("USING TTL 45")
        assert statement.consistency_level == ConsistencyLevel.TWO
        assert parameters == ("u1", "Ann", 30)
        assert recorder.wait()

    def test_fire_and_forget(self, manager, fake_session, sample_entity):
        future = manager.save_async(sample_entity)

        future.result()
        assert len(fake_session.async_executed) == 1

    def test_callback_as_second_positional_argument(self, manager, fake_session, sample_entity, recorder):
        manager.update_async(sample_entity, recorder)

        assert recorder.wait()
        assert recorder.calls == [(sample_entity,)]
        assert not query_of(fake_session.async_executed[0][0]).endswith("USING TTL")

    def test_update_async_matches_save_async(self, manager, fake_session, sample_entity, recorder):
        manager.save_async(sample_entity)
        manager.update_async(sample_entity, callback=recorder)

        (saved, saved_params), (updated, updated_params) = fake_session.async_executed
        assert query_of(saved) == query_of(updated)
        assert saved_params == updated_params
        assert recorder.wait()
        assert recorder.calls == [(sample_entity,)]


@pytest.mark.unit
class TestDeleteAsync:
    """Test delete_async."""

    def test_callback_without_payload(self, executor, recorder):
        session = FakeSession(delay=0.1)
        manager = ColumnFamilyManager(session, executor, "users")
        started = time.monotonic()

        manager.delete_async(
            ColumnQuery.delete("person", where=ColumnCondition.eq("id", "u1")),
            recorder,
        )

        assert recorder.wait()
        settle()
        assert recorder.calls == [()]
        assert recorder.times[0] - started >= 0.1
        assert query_of(session.async_executed[0][0]) == "DELETE FROM users.person WHERE id = %s"

    def test_with_consistency(self, manager, fake_session, recorder):
        manager.delete_async(
            ColumnQuery.delete("person", where=ColumnCondition.eq("id", "u1")),
            recorder,
            consistency_level="LOCAL_QUORUM",
        )

        assert fake_session.async_executed[0][0].consistency_level == ConsistencyLevel.LOCAL_QUORUM
        assert recorder.wait()


@pytest.mark.unit
class TestFindAsync:
    """Test find_async and native_query_async."""

    def test_converted_rows_delivered_once(self, executor, recorder):
        session = FakeSession(rows=[{"id": "u1", "name": "Ann"}, {"id": "u2", "name": "Bo"}])
        manager = ColumnFamilyManager(session, executor, "users")

        manager.find_async(ColumnQuery.select("person"), recorder)

        assert recorder.wait()
        settle()
        assert recorder.calls == [([
            ColumnEntity.of("person", {"id": "u1", "name": "Ann"}),
            ColumnEntity.of("person", {"id": "u2", "name": "Bo"}),
        ],)]

    def test_empty_result(self, manager, recorder):
        manager.find_async(ColumnQuery.select("person"), recorder)

        assert recorder.wait()
        assert recorder.calls == [([],)]

    def test_pages_are_gathered(self, executor, recorder):
        session = FakeSession(pages=[[{"id": "a"}], [{"id": "b"}], [{"id": "c"}]], delay=0.02)
        manager = ColumnFamilyManager(session, executor, "users")

        manager.find_async(ColumnQuery.select("person"), recorder)

        assert recorder.wait()
        settle()
        assert len(recorder.calls) == 1
        assert [e.find("id").value for e in recorder.calls[0][0]] == ["a", "b", "c"]
        assert session.futures[0].page_requests == 2

    def test_with_consistency(self, manager, fake_session, recorder):
        manager.find_async(
            ColumnQuery.select("person"),
            recorder,
            consistency_level=ConsistencyLevel.SERIAL,
        )

        assert fake_session.async_executed[0][0].consistency_level == ConsistencyLevel.SERIAL
        assert recorder.wait()

    def test_native_query_async(self, executor, recorder):
        session = FakeSession(rows=[{"id": "u1"}])
        manager = ColumnFamilyManager(session, executor, "users")
        cql = "SELECT id FROM users.person"

        manager.native_query_async(cql, recorder)

        assert recorder.wait()
        assert session.async_executed == [(cql, None)]
        assert recorder.calls == [([ColumnEntity.of("person", {"id": "u1"})],)]

    def test_prepared_execute_async(self, executor, recorder):
        session = FakeSession(rows=[{"id": "u1"}])
        manager = ColumnFamilyManager(session, executor, "users")

        manager.native_query_prepare("SELECT id FROM users.person WHERE id = ?").bind("u1").execute_async(recorder)

        assert recorder.wait()
        assert session.async_executed[0][0].values == ("u1",)
        assert recorder.calls == [([ColumnEntity.of("person", {"id": "u1"})],)]


@pytest.mark.unit
class TestAsyncFailures:
    """Test failure delivery for async operations."""

    def test_errback_receives_mapped_error(self, executor, sample_entity, recorder, error_recorder):
        session = FakeSession(async_error=WriteTimeout("slow write", write_type=0))
        manager = ColumnFamilyManager(session, executor, "users")

        manager.save_async(sample_entity, callback=recorder, errback=error_recorder)

        assert error_recorder.wait()
        settle()
        assert recorder.calls == []
        assert len(error_recorder.calls) == 1
        error = error_recorder.calls[0][0]
        assert isinstance(error, StoreTimeoutError)
        assert error.operation_type == "write"
        assert error_recorder.threads[0].startswith("test-callback")

    def test_failure_without_errback_is_logged(self, executor, sample_entity, recorder, caplog):
        session = FakeSession(async_error=WriteTimeout("slow write", write_type=0))
        manager = ColumnFamilyManager(session, executor, "users")

        with caplog.at_level(logging.ERROR, logger="scylla_column.async_adapter"):
            manager.save_async(sample_entity, callback=recorder)
            session.futures[0]._done.wait(2.0)
            settle()

        assert recorder.calls == []
        assert any("no errback was registered" in r.getMessage() for r in caplog.records)

    def test_fire_and_forget_failure_is_logged(self, executor, sample_entity, caplog):
        session = FakeSession(async_error=WriteTimeout("slow write", write_type=0))
        manager = ColumnFamilyManager(session, executor, "users")

        with caplog.at_level(logging.WARNING, logger="scylla_column.async_adapter"):
            manager.save_async(sample_entity)
            session.futures[0]._done.wait(2.0)
            settle(0.05)

        assert any("Fire-and-forget save failed" in r.getMessage() for r in caplog.records)

    def test_raising_callback_is_logged(self, manager, sample_entity, caplog):
        done = threading.Event()

        def bad_callback(entity):
            done.set()
            raise RuntimeError("callback bug")

        with caplog.at_level(logging.ERROR, logger="scylla_column.async_adapter"):
            manager.save_async(sample_entity, callback=bad_callback)
            assert done.wait(2.0)
            settle()

        assert any("Callback for async save raised" in r.getMessage() for r in caplog.records)


@pytest.mark.unit
class TestCompletionListener:
    """Test the adapter directly."""

    def test_already_completed_future_still_uses_executor(self, executor, recorder):
        future = FakeResponseFuture(pages=[[1, 2]], delay=0)
        future.start()
        assert future._done.wait(1.0)

        CompletionListener(future, executor, recorder, operation="test").register()

        assert recorder.wait()
        assert recorder.calls == [([1, 2],)]
        assert recorder.threads[0].startswith("test-callback")

    def test_fires_only_once(self, executor, recorder):
        future = FakeResponseFuture(pages=[[1]], delay=0.01)
        listener = CompletionListener(future, executor, recorder, operation="test").register()
        future.start()
        assert recorder.wait()

        # a misbehaving future reporting completion twice
        listener._on_page([2])
        listener._on_failure(RuntimeError("late"))
        settle()

        assert recorder.calls == [([1],)]


@pytest.mark.unit
class TestAsyncConversionFailures:
    """Test rows that cannot become entities are reported like store failures."""

    def test_find_async_unconvertible_rows_reach_errback(self, executor, recorder, error_recorder):
        session = FakeSession(rows=[("u1", "Ann")])
        manager = ColumnFamilyManager(session, executor, "users")

        manager.find_async(ColumnQuery.select("person"), recorder, errback=error_recorder)

        assert error_recorder.wait()
        settle()
        assert recorder.calls == []
        assert len(error_recorder.calls) == 1
        assert isinstance(error_recorder.calls[0][0], StoreResultError)
        assert error_recorder.threads[0].startswith("test-callback")

    def test_native_query_async_unconvertible_rows_reach_errback(self, executor, recorder, error_recorder):
        session = FakeSession(rows=[("u1",)])
        manager = ColumnFamilyManager(session, executor, "users")

        manager.native_query_async("SELECT id FROM users.person", recorder, errback=error_recorder)

        assert error_recorder.wait()
        assert recorder.calls == []
        assert isinstance(error_recorder.calls[0][0], StoreResultError)

    def test_prepared_unconvertible_rows_reach_errback(self, executor, recorder, error_recorder):
        session = FakeSession(rows=[("u1",)])
        manager = ColumnFamilyManager(session, executor, "users")
        prepared = manager.native_query_prepare("SELECT id FROM users.person WHERE id = ?")

        prepared.bind("u1").execute_async(recorder, errback=error_recorder)

        assert error_recorder.wait()
        assert recorder.calls == []
        assert isinstance(error_recorder.calls[0][0], StoreResultError)

    def test_unconvertible_rows_without_errback_are_logged(self, executor, recorder, caplog):
        session = FakeSession(rows=[("u1",)])
        manager = ColumnFamilyManager(session, executor, "users")

        with caplog.at_level(logging.ERROR, logger="scylla_column.async_adapter"):
            manager.find_async(ColumnQuery.select("person"), recorder)
            session.futures[0]._done.wait(2.0)
            settle()

        assert recorder.calls == []
        assert any("Async find failed" in r.getMessage() for r in caplog.records)
        assert not any("Callback for async find raised" in r.getMessage() for r in caplog.records)


@pytest.mark.unit
class TestAsyncFailureLogging:
    """Test each async failure is logged once, by whoever handles it."""

    def _elevated(self, caplog):
        return [r for r in caplog.records if r.levelno >= logging.WARNING]

    def test_errback_failure_not_logged_as_error(self, executor, sample_entity, recorder, error_recorder, caplog):
        session = FakeSession(async_error=WriteTimeout("slow write", write_type=0))
        manager = ColumnFamilyManager(session, executor, "users")

        with caplog.at_level(logging.DEBUG):
            manager.save_async(sample_entity, recorder, errback=error_recorder)
            assert error_recorder.wait()
            settle(0.05)

        assert self._elevated(caplog) == []

    def test_fire_and_forget_failure_logged_once(self, executor, sample_entity, caplog):
        session = FakeSession(async_error=WriteTimeout("slow write", write_type=0))
        manager = ColumnFamilyManager(session, executor, "users")

        with caplog.at_level(logging.DEBUG):
            manager.save_async(sample_entity)
            session.futures[0]._done.wait(2.0)
            settle(0.05)

        elevated = self._elevated(caplog)
        assert len(elevated) == 1
        assert "Fire-and-forget save failed" in elevated[0].getMessage()

    def test_unobserved_callback_failure_logged_once(self, executor, sample_entity, recorder, caplog):
        session = FakeSession(async_error=WriteTimeout("slow write", write_type=0))
        manager = ColumnFamilyManager(session, executor, "users")

        with caplog.at_level(logging.DEBUG):
            manager.save_async(sample_entity, recorder)
            session.futures[0]._done.wait(2.0)
            settle()

        elevated = self._elevated(caplog)
        assert len(elevated) == 1
        assert elevated[0].levelno == logging.ERROR
