"""
Bounded-concurrency scheduler.

A fixed pool of asyncio workers pulls nodes from a queue, runs each one
through the StepPipeline and reports every status change to the
SessionStore. Transient provider failures are re-queued with exponential
backoff; a node that keeps failing is marked failed without affecting the
rest of the document.
"""

from __future__ import annotations
from typing import Dict, List, Optional
import asyncio
import logging
import time

from steptrans.core.exceptions import PersistenceError, ProviderError, ValidationError
from steptrans.core.models import Node, NodeStatus, RunResult, Session, validate_nodes
from steptrans.core.pipeline import PipelineResult, StepPipeline
from steptrans.core.session import SessionStore

logger = logging.getLogger(__name__)


class Scheduler:
    """Drives a list of nodes through a pipeline with retries, cancellation and resume."""

    def __init__(
        self,
        pipeline: StepPipeline,
        store: SessionStore,
        concurrency: int = 4,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        backoff_factor: float = 2.0,
        max_retry_delay: float = 30.0,
        autosave_interval: float = 30.0,
        logger=None
    ):
        if concurrency < 1:
            raise ValidationError("concurrency must be positive", field="concurrency", value=concurrency)
        self.pipeline = pipeline
        self.store = store
        self.concurrency = concurrency
        self.retry_attempts = max(0, retry_attempts)
        self.retry_delay = retry_delay
        self.backoff_factor = backoff_factor
        self.max_retry_delay = max_retry_delay
        self.autosave_interval = autosave_interval
        self.logger = logger or logging.getLogger(__name__)

        self._cancel_event: Optional[asyncio.Event] = None
        self.last_results: Dict[int, PipelineResult] = {}

    @property
    def max_attempts(self) -> int:
        return self.retry_attempts + 1

    def _backoff_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        delay = self.retry_delay * (self.backoff_factor ** (attempt - 1))
        return min(delay, self.max_retry_delay)

    def cancel(self) -> None:
        """Stop dispatching new nodes. In-flight nodes finish on their own."""
        if self._cancel_event is not None:
            self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def _resume_state(self, session_id: str, nodes: List[Node], file_name: str) -> Session:
        total_characters = sum(n.character_count for n in nodes)
        try:
            existing = self.store.find_session(session_id)
        except PersistenceError as e:
            self.logger.warning(f"Could not load session {session_id}, starting fresh: {e.message}")
            existing = None

        if existing is None:
            return self.store.start_tracking(session_id, file_name, len(nodes), total_characters)
        return self.store.resume_tracking(session_id, len(nodes), total_characters)

    async def run(
        self,
        nodes: List[Node],
        session_id: str,
        file_name: str = "",
        output_file: str = "",
        cancel_event: Optional[asyncio.Event] = None
    ) -> RunResult:
        """
        Translate every node and return the aggregate result.

        Args:
            nodes: Nodes with unique ids
            session_id: Session to create, or to resume if it already exists
            file_name: Input document name recorded in the session
            output_file: Output path reported in the result
            cancel_event: Optional external cancellation signal

        Returns:
            RunResult; node-level failures never raise
        """
        validate_nodes(nodes)
        start = time.time()
        self._cancel_event = cancel_event or asyncio.Event()
        self.last_results = {}

        session = self._resume_state(session_id, nodes, file_name)
        done_ids = set(session.successful_node_ids())

        translations: Dict[int, str] = {}
        pending: List[Node] = []
        for node in nodes:
            progress = session.node_progress.get(node.id)
            if node.id in done_ids and progress.translated_content is not None:
                node.status = NodeStatus.SUCCESS
                node.translated_content = progress.translated_content
                translations[node.id] = progress.translated_content
            else:
                node.reset()
                pending.append(node)

        skipped = len(nodes) - len(pending)
        if skipped:
            self.logger.info(f"Skipping {skipped} nodes already translated in session {session_id}")

        if pending:
            await self._dispatch(pending, session_id, translations)

        cancelled = self.cancelled
        try:
            if cancelled:
                self.store.cancel_tracking(session_id)
            else:
                self.store.stop_tracking(session_id)
        except PersistenceError as e:
            self.logger.error(f"Final save of session {session_id} failed: {e.message}")

        completed = session.completed_nodes
        failed = session.failed_nodes
        total = session.total_nodes
        result = RunResult(
            input_file=file_name,
            output_file=output_file,
            total_nodes=total,
            completed_nodes=completed,
            failed_nodes=failed,
            progress=(completed / total * 100) if total else 0.0,
            duration=time.time() - start,
            translations=translations,
            session_id=session_id,
            skipped_nodes=skipped,
            cancelled=cancelled,
        )
        self.logger.info(
            f"Session {session_id} finished: {completed}/{total} completed, {failed} failed "
            f"({result.progress:.1f}%) in {result.duration:.2f}s"
        )
        return result

    def run_sync(self, nodes: List[Node], session_id: str, file_name: str = "",
                 output_file: str = "") -> RunResult:
        """Synchronous wrapper around run()."""
        return asyncio.run(self.run(nodes, session_id, file_name, output_file))

    async def _dispatch(self, nodes: List[Node], session_id: str, translations: Dict[int, str]) -> None:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        all_done = asyncio.Event()
        outstanding = len(nodes)
        retry_timers: Dict[int, asyncio.TimerHandle] = {}

        def settle() -> None:
            nonlocal outstanding
            outstanding -= 1
            if outstanding <= 0:
                all_done.set()

        def requeue(node: Node) -> None:
            retry_timers.pop(node.id, None)
            queue.put_nowait(node)

        for node in nodes:
            queue.put_nowait(node)

        async def worker(worker_id: int) -> None:
            while True:
                node = await queue.get()
                if node is None:
                    return
                if self.cancelled:
                    # Undispatched nodes keep their current session status
                    settle()
                    continue

                delay = await self._process(node, session_id, translations)
                if delay is None or self.cancelled:
                    settle()
                elif delay > 0:
                    retry_timers[node.id] = loop.call_later(delay, requeue, node)
                else:
                    queue.put_nowait(node)

        async def watch_cancel() -> None:
            await self._cancel_event.wait()
            self.logger.info(f"Session {session_id}: cancellation requested, stopping dispatch")
            for handle in list(retry_timers.values()):
                handle.cancel()
                settle()
            retry_timers.clear()
            while not queue.empty():
                if queue.get_nowait() is not None:
                    settle()

        workers = [asyncio.create_task(worker(i)) for i in range(self.concurrency)]
        autosave = asyncio.create_task(self._autosave(session_id))
        canceller = asyncio.create_task(watch_cancel())

        try:
            await all_done.wait()
        finally:
            for handle in retry_timers.values():
                handle.cancel()
            for _ in workers:
                queue.put_nowait(None)
            await asyncio.gather(*workers, return_exceptions=True)
            autosave.cancel()
            canceller.cancel()
            await asyncio.gather(autosave, canceller, return_exceptions=True)

    async def _process(self, node: Node, session_id: str, translations: Dict[int, str]) -> Optional[float]:
        """
        Run one attempt for a node.

        Returns:
            Seconds to wait before re-queueing the node, or None when the
            node reached a terminal state
        """
        try:
            attempt = node.start_attempt(self.max_attempts)
        except ValidationError as e:
            self.store.update_node_progress(session_id, node.id, NodeStatus.FAILED, node.character_count,
                                            error=e.message)
            self.logger.error(f"Node {node.id}: {e.message}")
            return None

        self.store.update_node_progress(session_id, node.id, NodeStatus.IN_PROGRESS, node.character_count)

        try:
            result = await self.pipeline.run(node)
        except ProviderError as e:
            node.mark_failed(e.message)
            if e.retryable and attempt < self.max_attempts:
                # The session keeps the node in progress while it waits on backoff
                self.store.update_node_progress(session_id, node.id, NodeStatus.IN_PROGRESS,
                                                node.character_count, error=e.message)
                self.logger.warning(
                    f"Node {node.id} attempt {attempt}/{self.max_attempts} failed: {e.message}"
                )
                return self._backoff_delay(attempt)
            self.store.update_node_progress(session_id, node.id, NodeStatus.FAILED, node.character_count,
                                            error=e.message)
            if e.retryable:
                self.logger.error(f"Node {node.id} failed after {attempt} attempts: {e.message}")
            else:
                self.logger.error(f"Node {node.id} failed, not retrying: {e.message}")
            return None
        except ValidationError as e:
            node.mark_failed(e.message)
            self.store.update_node_progress(session_id, node.id, NodeStatus.FAILED, node.character_count,
                                            error=e.message)
            self.logger.error(f"Node {node.id} rejected: {e.message}")
            return None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            message = f"{type(e).__name__}: {e}"
            node.mark_failed(message)
            self.store.update_node_progress(session_id, node.id, NodeStatus.FAILED, node.character_count,
                                            error=message)
            self.logger.exception(f"Node {node.id} failed unexpectedly: {message}")
            return None

        node.mark_success(result.translation)
        translations[node.id] = result.translation
        self.last_results[node.id] = result
        self.store.update_node_progress(session_id, node.id, NodeStatus.SUCCESS, node.character_count,
                                        translated_content=result.translation)
        return None

    async def _autosave(self, session_id: str) -> None:
        if not self.autosave_interval or self.autosave_interval <= 0:
            return
        while True:
            await asyncio.sleep(self.autosave_interval)
            try:
                await asyncio.to_thread(self.store.flush, session_id)
            except PersistenceError as e:
                self.logger.warning(f"Autosave of session {session_id} failed: {e.message}")
