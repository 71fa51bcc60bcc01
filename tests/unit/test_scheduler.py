"""Unit tests for the scheduler: retries, partial failure, resume and cancellation."""

import asyncio

import pytest
from unittest.mock import Mock, patch

from conftest import FakeProvider, StaticRegistry, make_step_set

from steptrans.core.exceptions import ValidationError
from steptrans.core.models import Node, NodeStatus, SessionStatus
from steptrans.core.pipeline import StepPipeline
from steptrans.core.scheduler import Scheduler
from steptrans.core.session import SessionStore
from steptrans.translation.backends import DeepLProvider
from steptrans.translation.base import ProviderConfig


def build_scheduler(provider, store, step_set=None, **kwargs):
    pipeline = StepPipeline(step_set or make_step_set(), StaticRegistry({"fake": provider}))
    kwargs.setdefault("retry_delay", 0)
    kwargs.setdefault("autosave_interval", 0)
    return Scheduler(pipeline, store, **kwargs)


def nodes_for(*contents):
    return [Node(id=i, content=text) for i, text in enumerate(contents, 1)]


def test_backoff_delay_is_capped(store):
    scheduler = build_scheduler(FakeProvider(), store, retry_delay=1.0, backoff_factor=2.0, max_retry_delay=3.0)

    assert [scheduler._backoff_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]
    assert scheduler.max_attempts == 4


def test_concurrency_must_be_positive(store):
    with pytest.raises(ValidationError):
        build_scheduler(FakeProvider(), store, concurrency=0)


@pytest.mark.asyncio
async def test_all_nodes_translated(store):
    provider = FakeProvider(transform=lambda text: text.upper())
    scheduler = build_scheduler(provider, store, concurrency=2)

    result = await scheduler.run(nodes_for("one", "two", "three"), "doc1", file_name="doc.md")

    assert result.success
    assert result.translations == {1: "ONE", 2: "TWO", 3: "THREE"}
    assert result.progress == 100.0
    assert store.get_session("doc1").status == SessionStatus.COMPLETED
    assert (store.base_path / "doc1.json").exists()


@pytest.mark.asyncio
async def test_partial_failure(store):
    """Node 2 always fails: 3 total, 2 completed, 1 failed, ~66.7%."""
    provider = FakeProvider(fail_when=lambda text: "Second" in text)
    scheduler = build_scheduler(provider, store, retry_attempts=2, concurrency=3)

    result = await scheduler.run(nodes_for("First", "Second", "Third"), "doc1")

    assert result.total_nodes == 3
    assert result.completed_nodes == 2
    assert result.failed_nodes == 1
    assert result.progress == pytest.approx(66.7, abs=0.05)
    assert 2 not in result.translations
    # One initial attempt plus two retries
    assert sum(1 for call in provider.calls if "Second" in call) == 3

    session = store.get_session("doc1")
    assert session.status == SessionStatus.COMPLETED
    assert session.node_progress[2].status == NodeStatus.FAILED
    assert session.node_progress[2].retry_count == 3


@pytest.mark.asyncio
async def test_transient_failure_recovers(store):
    failures = {"left": 1}

    def flaky(text):
        if failures["left"]:
            failures["left"] -= 1
            return True
        return False

    provider = FakeProvider(fail_when=flaky)
    scheduler = build_scheduler(provider, store, retry_attempts=2, step_set=make_step_set(steps=1))

    result = await scheduler.run(nodes_for("Only"), "doc1")

    assert result.completed_nodes == 1
    assert result.failed_nodes == 0
    assert len(provider.calls) == 2
    assert store.get_session("doc1").node_progress[1].retry_count == 1


@pytest.mark.asyncio
async def test_retry_waits_for_backoff(store):
    failures = {"left": 1}

    def flaky(text):
        if failures["left"]:
            failures["left"] -= 1
            return True
        return False

    provider = FakeProvider(fail_when=flaky)
    scheduler = build_scheduler(provider, store, retry_attempts=1, retry_delay=0.05,
                                step_set=make_step_set(steps=1))

    result = await scheduler.run(nodes_for("Only"), "doc1")

    assert result.completed_nodes == 1
    assert result.duration >= 0.05


@pytest.mark.asyncio
async def test_validation_error_is_not_retried(store):
    provider = FakeProvider()
    provider.config.max_input_tokens = 5
    scheduler = build_scheduler(provider, store, retry_attempts=3)

    result = await scheduler.run(nodes_for("short", "x" * 200), "doc1")

    assert result.completed_nodes == 1
    assert result.failed_nodes == 1
    assert provider.calls == ["short"] * 3
    assert store.get_session("doc1").node_progress[2].retry_count == 1


@pytest.mark.asyncio
async def test_rejected_request_is_not_retried(store):
    provider = FakeProvider(fail_when=lambda text: text == "two", status_code=403)
    scheduler = build_scheduler(provider, store, retry_attempts=3, step_set=make_step_set(steps=1))

    result = await scheduler.run(nodes_for("one", "two"), "doc1")

    assert result.completed_nodes == 1
    assert result.failed_nodes == 1
    assert provider.calls.count("two") == 1
    assert store.get_session("doc1").node_progress[2].retry_count == 1


@pytest.mark.asyncio
async def test_deepl_forbidden_fails_node_with_one_request(store):
    provider = DeepLProvider(ProviderConfig(api_key="bad-key", source_lang="English", target_lang="French"))
    pipeline = StepPipeline(make_step_set(provider="deepl", steps=1), StaticRegistry({"deepl": provider}))
    scheduler = Scheduler(pipeline, store, retry_attempts=3, retry_delay=0, autosave_interval=0)
    forbidden = Mock(status_code=403, text="Forbidden")

    with patch("steptrans.translation.backends.deepl_backend.requests.post", return_value=forbidden) as post:
        result = await scheduler.run(nodes_for("Hello"), "doc1")

    assert post.call_count == 1
    assert result.failed_nodes == 1
    assert "403" in store.get_session("doc1").node_progress[1].error


@pytest.mark.asyncio
async def test_node_stays_in_progress_during_backoff(store):
    failures = {"left": 1}

    def flaky(text):
        if failures["left"]:
            failures["left"] -= 1
            return True
        return False

    provider = FakeProvider(fail_when=flaky)
    scheduler = build_scheduler(provider, store, retry_attempts=2, retry_delay=0.3,
                                step_set=make_step_set(steps=1))

    task = asyncio.create_task(scheduler.run(nodes_for("Only"), "doc1"))
    await asyncio.sleep(0.1)

    session = store.get_session("doc1")
    progress = session.node_progress[1]
    assert progress.status == NodeStatus.IN_PROGRESS
    assert progress.error == "Provider 'fake' failed: scripted failure"
    assert session.failed_nodes == 0
    assert len(session.errors) == 1
    assert store.get_progress("doc1").failed_nodes == 0

    result = await task
    assert result.completed_nodes == 1
    assert result.failed_nodes == 0


@pytest.mark.asyncio
async def test_same_nodes_translated_into_second_language(tmp_path, test_logger):
    nodes = nodes_for("one", "two")
    first_store = SessionStore(str(tmp_path / "fr"), logger=test_logger)
    french = build_scheduler(FakeProvider(transform=lambda text: f"fr:{text}"), first_store)
    first = await french.run(nodes, "doc-fr")

    german_provider = FakeProvider(transform=lambda text: f"de:{text}")
    second_store = SessionStore(str(tmp_path / "de"), logger=test_logger)
    german = build_scheduler(german_provider, second_store, step_set=make_step_set(steps=1))
    second = await german.run(nodes, "doc-de")

    assert first.completed_nodes == 2
    assert second.completed_nodes == 2
    assert second.translations == {1: "de:one", 2: "de:two"}
    assert sorted(german_provider.calls) == ["one", "two"]
    assert [n.translated_content for n in nodes] == ["de:one", "de:two"]
    assert all(n.attempts == 1 for n in nodes)


@pytest.mark.asyncio
async def test_rerun_same_nodes_after_failure(store):
    provider = FakeProvider(fail_when=lambda text: text == "two")
    scheduler = build_scheduler(provider, store, retry_attempts=0, step_set=make_step_set(steps=1))
    nodes = nodes_for("one", "two")

    first = await scheduler.run(nodes, "doc1")
    assert first.failed_nodes == 1
    assert nodes[1].status == NodeStatus.FAILED

    provider.fail_when = lambda text: False
    provider.calls.clear()
    second = await scheduler.run(nodes, "doc1")

    assert provider.calls == ["two"]
    assert second.completed_nodes == 2
    assert second.failed_nodes == 0
    assert nodes[1].status == NodeStatus.SUCCESS
    assert nodes[1].attempts == 1


@pytest.mark.asyncio
async def test_duplicate_node_ids_rejected(store):
    scheduler = build_scheduler(FakeProvider(), store)
    with pytest.raises(ValidationError):
        await scheduler.run([Node(id=1, content="a"), Node(id=1, content="b")], "doc1")


@pytest.mark.asyncio
async def test_counters_never_exceed_total(tmp_path, test_logger):
    observed = []

    class CheckingStore(SessionStore):
        def update_node_progress(self, session_id, *args, **kwargs):
            progress = super().update_node_progress(session_id, *args, **kwargs)
            session = self.get_session(session_id)
            observed.append(session.completed_nodes + session.failed_nodes <= session.total_nodes)
            return progress

    store = CheckingStore(str(tmp_path / "sessions"), logger=test_logger)
    provider = FakeProvider(fail_when=lambda text: text.startswith("bad"))
    scheduler = build_scheduler(provider, store, retry_attempts=1, concurrency=4)

    await scheduler.run(nodes_for("ok1", "bad1", "ok2", "bad2", "ok3"), "doc1")

    assert observed and all(observed)


@pytest.mark.asyncio
async def test_resume_dispatches_only_unfinished_nodes(tmp_path, test_logger):
    """Persisted {1: success, 2: success, 3: pending} resumes with node 3 only."""
    base = str(tmp_path / "sessions")
    first = SessionStore(base, logger=test_logger)
    first.start_tracking("doc1", "doc.md", total_nodes=3)
    first.update_node_progress("doc1", 1, NodeStatus.SUCCESS, 5, translated_content="UN")
    first.update_node_progress("doc1", 2, NodeStatus.SUCCESS, 5, translated_content="DEUX")
    first.update_node_progress("doc1", 3, NodeStatus.PENDING, 5)
    first.flush("doc1")

    # Simulated restart
    store = SessionStore(base, logger=test_logger)
    provider = FakeProvider(transform=lambda text: text.upper())
    scheduler = build_scheduler(provider, store, step_set=make_step_set(steps=1))

    result = await scheduler.run(nodes_for("un", "deux", "trois"), "doc1", file_name="doc.md")

    assert provider.calls == ["trois"]
    assert result.skipped_nodes == 2
    assert result.translations == {1: "UN", 2: "DEUX", 3: "TROIS"}
    assert result.completed_nodes == 3
    assert result.progress == 100.0


@pytest.mark.asyncio
async def test_resume_retries_previously_failed_nodes(store):
    provider = FakeProvider(fail_when=lambda text: text == "two")
    scheduler = build_scheduler(provider, store, retry_attempts=0, step_set=make_step_set(steps=1))
    first = await scheduler.run(nodes_for("one", "two"), "doc1")
    assert first.failed_nodes == 1

    provider.fail_when = lambda text: False
    provider.calls.clear()
    second = await scheduler.run(nodes_for("one", "two"), "doc1")

    assert provider.calls == ["two"]
    assert second.completed_nodes == 2
    assert second.failed_nodes == 0


@pytest.mark.asyncio
async def test_cancel_before_dispatch_leaves_nodes_pending(store):
    provider = FakeProvider()
    scheduler = build_scheduler(provider, store)
    cancel = asyncio.Event()
    cancel.set()
    nodes = nodes_for("a", "b", "c")

    result = await scheduler.run(nodes, "doc1", cancel_event=cancel)

    assert result.cancelled
    assert result.completed_nodes == 0
    assert provider.calls == []
    assert all(node.status == NodeStatus.PENDING for node in nodes)
    assert store.get_session("doc1").status == SessionStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_mid_run_lets_in_flight_node_finish(store):
    scheduler = None

    def cancel_on_first(text):
        scheduler.cancel()
        return text

    provider = FakeProvider(transform=cancel_on_first)
    scheduler = build_scheduler(provider, store, concurrency=1, step_set=make_step_set(steps=1))
    nodes = nodes_for("a", "b", "c")

    result = await scheduler.run(nodes, "doc1")

    assert result.cancelled
    assert result.completed_nodes == 1
    assert len(provider.calls) == 1
    assert [n.status for n in nodes[1:]] == [NodeStatus.PENDING, NodeStatus.PENDING]
    assert store.load_session("doc1").status == SessionStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_drops_pending_retries(store):
    scheduler = None

    def fail_and_cancel(text):
        scheduler.cancel()
        return True

    provider = FakeProvider(fail_when=fail_and_cancel)
    scheduler = build_scheduler(provider, store, retry_attempts=5, retry_delay=10.0,
                                step_set=make_step_set(steps=1))

    result = await asyncio.wait_for(scheduler.run(nodes_for("a"), "doc1"), timeout=5)

    assert result.cancelled
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_autosave_flushes_periodically(store):
    class SlowProvider(FakeProvider):
        async def _complete(self, prompt, max_tokens, temperature):
            await asyncio.sleep(0.05)
            return self._complete_sync(prompt, max_tokens, temperature)

    scheduler = build_scheduler(SlowProvider(), store, concurrency=1, autosave_interval=0.01,
                                step_set=make_step_set(steps=1))
    store.flush = Mock(wraps=store.flush)

    await scheduler.run(nodes_for("a", "b"), "doc1")

    # Periodic saves plus the final one
    assert store.flush.call_count >= 2


def test_run_sync(store):
    scheduler = build_scheduler(FakeProvider(), store, step_set=make_step_set(steps=1))
    result = scheduler.run_sync(nodes_for("hello"), "doc1")

    assert result.translations == {1: "hello"}
