"""
Durable, resumable session store.

One JSON file per session (`<session_id>.json`) under a base directory,
always written to a temp file and renamed into place so a crash never
leaves a torn file behind.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional
import json
import logging
import os
import re
import tempfile
import threading

from steptrans.core.exceptions import PersistenceError, ValidationError
from steptrans.core.models import (
    ErrorInfo,
    NodeProgress,
    NodeStatus,
    ProgressInfo,
    Session,
    SessionStatus,
    SessionSummary,
)

logger = logging.getLogger(__name__)

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


class SessionStore:
    """In-memory sessions mirrored to JSON files under `base_path`."""

    def __init__(self, base_path: str = ".steptrans/sessions", logger=None):
        self.base_path = Path(base_path)
        self.logger = logger or logging.getLogger(__name__)
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def _path(self, session_id: str) -> Path:
        if not session_id or not SESSION_ID_PATTERN.match(session_id):
            raise ValidationError(
                f"Invalid session id '{session_id}'",
                field="session_id",
                value=session_id
            )
        return self.base_path / f"{session_id}.json"

    def _require(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise PersistenceError(f"Session '{session_id}' is not being tracked", session_id=session_id)
        return session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_tracking(self, session_id: str, file_name: str, total_nodes: int = 0,
                       total_characters: int = 0) -> Session:
        """Create a running session, replacing any in-memory one with the same id."""
        self._path(session_id)
        session = Session(
            id=session_id,
            file_name=file_name,
            total_nodes=total_nodes,
            total_characters=total_characters,
        )
        with self._lock:
            self._sessions[session_id] = session
        self.logger.info(f"Started tracking session {session_id} ({file_name}, {total_nodes} nodes)")
        return session

    def resume_tracking(self, session_id: str, total_nodes: int = 0, total_characters: int = 0) -> Session:
        """Put an existing session back into the running state."""
        session = self._require(session_id)
        with session.lock:
            session.status = SessionStatus.RUNNING
            session.total_nodes = max(session.total_nodes, total_nodes, len(session.node_progress))
            session.total_characters = max(session.total_characters, total_characters)
            session.touch()
        self.logger.info(
            f"Resumed session {session_id}: {session.completed_nodes}/{session.total_nodes} nodes already done"
        )
        return session

    def stop_tracking(self, session_id: str) -> Session:
        """Mark completed and flush. Raises PersistenceError if the flush fails."""
        return self._finish(session_id, SessionStatus.COMPLETED)

    def cancel_tracking(self, session_id: str) -> Session:
        return self._finish(session_id, SessionStatus.CANCELLED)

    def fail_tracking(self, session_id: str, error: Optional[str] = None) -> Session:
        session = self._require(session_id)
        if error:
            with session.lock:
                session.errors.append(ErrorInfo(time=datetime.now(), node_id=-1, error=error))
        return self._finish(session_id, SessionStatus.FAILED)

    def _finish(self, session_id: str, status: SessionStatus) -> Session:
        session = self._require(session_id)
        with session.lock:
            session.status = status
            session.touch()
        self.logger.info(
            f"Session {session_id} {status.value}: {session.completed_nodes} completed, "
            f"{session.failed_nodes} failed of {session.total_nodes}"
        )
        self.flush(session_id)
        return session

    # ------------------------------------------------------------------
    # Node updates
    # ------------------------------------------------------------------

    def update_node_progress(
        self,
        session_id: str,
        node_id: int,
        status: NodeStatus,
        char_count: int,
        error: Optional[str] = None,
        translated_content: Optional[str] = None
    ) -> NodeProgress:
        """
        Upsert a node's progress and recompute the session counters.

        Counters are derived from the per-node statuses, so repeated reports
        for the same node never double count.
        """
        session = self._require(session_id)
        now = datetime.now()

        with session.lock:
            progress = session.node_progress.get(node_id)
            if progress is None:
                progress = NodeProgress(node_id=node_id, start_time=now)
                session.node_progress[node_id] = progress

            progress.status = status
            progress.character_count = char_count

            if status == NodeStatus.IN_PROGRESS:
                progress.start_time = progress.start_time or now
                progress.complete_time = None
                if error is not None:
                    # Attempt failed with retries left
                    self._record_error(session, progress, error, now)
            elif status == NodeStatus.SUCCESS:
                progress.complete_time = now
                progress.error = None
                if translated_content is not None:
                    progress.translated_content = translated_content
            elif status == NodeStatus.FAILED:
                progress.complete_time = now
                self._record_error(session, progress, error or "unknown error", now)

            self._recount(session)
            session.touch()

        return progress

    @staticmethod
    def _record_error(session: Session, progress: NodeProgress, error: str, now: datetime) -> None:
        progress.error = error
        progress.retry_count += 1
        session.errors.append(ErrorInfo(
            time=now,
            node_id=progress.node_id,
            error=error,
            context={"attempt": progress.retry_count},
        ))

    @staticmethod
    def _recount(session: Session) -> None:
        statuses = session.node_progress.values()
        session.total_nodes = max(session.total_nodes, len(session.node_progress))
        session.completed_nodes = sum(1 for p in statuses if p.status == NodeStatus.SUCCESS)
        session.failed_nodes = sum(1 for p in statuses if p.status == NodeStatus.FAILED)
        session.processed_characters = sum(
            p.character_count for p in statuses if p.status == NodeStatus.SUCCESS
        )
        session.total_characters = max(
            session.total_characters,
            sum(p.character_count for p in statuses)
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def find_session(self, session_id: str) -> Optional[Session]:
        """In-memory session, else the persisted one, else None."""
        session = self.get_session(session_id)
        if session is not None:
            return session
        if self._path(session_id).exists():
            return self.load_session(session_id)
        return None

    def get_progress(self, session_id: str) -> Optional[ProgressInfo]:
        session = self.get_session(session_id)
        if session is None:
            return None

        with session.lock:
            estimated = None
            done = session.completed_nodes
            if 0 < done < session.total_nodes:
                elapsed = datetime.now() - session.start_time
                per_node = elapsed / done
                estimated = datetime.now() + per_node * (session.total_nodes - done)

            return ProgressInfo(
                session_id=session.id,
                file_name=session.file_name,
                total_nodes=session.total_nodes,
                completed_nodes=session.completed_nodes,
                failed_nodes=session.failed_nodes,
                total_characters=session.total_characters,
                processed_characters=session.processed_characters,
                start_time=session.start_time,
                estimated_completion=estimated,
                progress=session.progress,
                status=session.status,
                errors=len(session.errors),
            )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def flush(self, session_id: str) -> Path:
        """
        Write a session to disk atomically.

        Raises:
            PersistenceError: The file could not be written
        """
        session = self._require(session_id)
        with session.lock:
            data = session.to_dict()

        path = self._path(session_id)
        tmp_name = None
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.base_path, prefix=f".{session_id}-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(
                f"Failed to save session {session_id}: {e}",
                session_id=session_id,
                path=str(path),
                original_error=e
            )

        self.logger.debug(f"Saved session {session_id} to {path}")
        return path

    def load_session(self, session_id: str) -> Session:
        """
        Rehydrate a session from disk and track it in memory.

        Raises:
            PersistenceError: Missing or unreadable session file
        """
        path = self._path(session_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                session = Session.from_dict(json.load(f))
        except FileNotFoundError as e:
            raise PersistenceError(f"No saved session '{session_id}'", session_id=session_id,
                                   path=str(path), original_error=e)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise PersistenceError(f"Corrupt session file for '{session_id}': {e}", session_id=session_id,
                                   path=str(path), original_error=e)

        with self._lock:
            self._sessions[session_id] = session
        self.logger.info(f"Loaded session {session_id} ({session.completed_nodes}/{session.total_nodes} done)")
        return session

    def list_sessions(self) -> List[SessionSummary]:
        """Summaries of every session file, newest first. Unreadable files are skipped."""
        if not self.base_path.is_dir():
            return []

        summaries = []
        for path in self.base_path.glob("*.json"):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    session = Session.from_dict(json.load(f))
            except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
                self.logger.warning(f"Skipping unreadable session file {path.name}: {e}")
                continue
            summaries.append(SessionSummary(
                id=session.id,
                file_name=session.file_name,
                start_time=session.start_time,
                status=session.status,
                progress=session.progress,
            ))

        summaries.sort(key=lambda s: s.start_time, reverse=True)
        return summaries

    def delete_session(self, session_id: str) -> bool:
        """Forget a session in memory and on disk. Returns whether a file was removed."""
        path = self._path(session_id)
        with self._lock:
            self._sessions.pop(session_id, None)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(f"Failed to delete session {session_id}: {e}", session_id=session_id,
                                   path=str(path), original_error=e)
        return True

    def prune_sessions(self, max_age_days: float = 30) -> int:
        """Delete finished session files older than max_age_days."""
        cutoff = datetime.now() - timedelta(days=max_age_days)
        removed = 0
        for summary in self.list_sessions():
            if summary.status != SessionStatus.RUNNING and summary.start_time < cutoff:
                if self.delete_session(summary.id):
                    removed += 1
        return removed
