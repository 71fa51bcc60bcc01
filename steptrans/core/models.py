"""
Core data models for steptrans.

Nodes are the unit of translation work handed over by an external document
processor. StepConfig/StepSet describe the per-node pipeline, and
Session/NodeProgress are the durable mirror of a run that makes it resumable.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Optional, Any
from datetime import datetime
import hashlib
import json
import re
import threading

from steptrans.core.exceptions import ValidationError


PRESERVE_MARKER_PATTERN = re.compile(r"@@PRESERVE_(\d+)@@")


def find_preserve_markers(text: str) -> List[str]:
    """Return every protected-span marker in text, in order of appearance."""
    if not text:
        return []
    return [m.group(0) for m in PRESERVE_MARKER_PATTERN.finditer(text)]


def missing_preserve_markers(source: str, output: str) -> List[str]:
    """Markers present in source but absent from output."""
    present = set(find_preserve_markers(output))
    return [m for m in find_preserve_markers(source) if m not in present]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


class NodeStatus(Enum):
    """Lifecycle status of a node."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeStatus.SUCCESS, NodeStatus.FAILED)


class SessionStatus(Enum):
    """Status of a translation session."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepRole(Enum):
    """What a pipeline stage does with its input."""
    TRANSLATE = "translate"  # output replaces the working translation
    REFLECT = "reflect"      # output is a critique, not applied
    IMPROVE = "improve"      # output replaces the working translation using the critique


@dataclass
class Node:
    """
    Independently translatable unit extracted from a document.

    The engine treats `content` as opaque apart from its length; protected
    spans are marked with @@PRESERVE_n@@ placeholders by the splitter.
    """
    id: int
    content: str
    status: NodeStatus = NodeStatus.PENDING
    translated_content: Optional[str] = None
    character_count: int = 0
    error: Optional[str] = None
    start_time: Optional[datetime] = None
    complete_time: Optional[datetime] = None
    attempts: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.id, int) or isinstance(self.id, bool):
            raise ValidationError("Node id must be an integer", field="id", value=self.id)
        if self.content is None:
            raise ValidationError(f"Node {self.id} has no content", field="content")
        if not self.character_count:
            self.character_count = len(self.content)

    def reset(self) -> None:
        """Return to PENDING with a fresh attempt budget for a new run."""
        self.status = NodeStatus.PENDING
        self.translated_content = None
        self.error = None
        self.start_time = None
        self.complete_time = None
        self.attempts = 0

    def start_attempt(self, max_attempts: Optional[int] = None) -> int:
        """
        Enter IN_PROGRESS for a new attempt.

        Allowed from PENDING (first attempt) or FAILED (retry).

        Returns:
            The new attempt number (1-based)
        """
        if self.status not in (NodeStatus.PENDING, NodeStatus.FAILED):
            raise ValidationError(
                f"Node {self.id} cannot start an attempt from status {self.status.value}",
                field="status",
                value=self.status.value
            )
        if max_attempts is not None and self.attempts >= max_attempts:
            raise ValidationError(
                f"Node {self.id} exhausted its {max_attempts} attempts",
                field="attempts",
                value=self.attempts,
                limit=max_attempts
            )
        self.attempts += 1
        self.status = NodeStatus.IN_PROGRESS
        self.error = None
        if self.start_time is None:
            self.start_time = datetime.now()
        return self.attempts

    def mark_success(self, translated_content: str) -> None:
        self._require_in_progress()
        self.status = NodeStatus.SUCCESS
        self.translated_content = translated_content
        self.error = None
        self.complete_time = datetime.now()

    def mark_failed(self, error: str) -> None:
        self._require_in_progress()
        self.status = NodeStatus.FAILED
        self.error = error
        self.complete_time = datetime.now()

    def _require_in_progress(self) -> None:
        if self.status != NodeStatus.IN_PROGRESS:
            raise ValidationError(
                f"Node {self.id} is not in progress (status {self.status.value})",
                field="status",
                value=self.status.value
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "status": self.status.value,
            "translatedContent": self.translated_content,
            "characterCount": self.character_count,
            "error": self.error,
            "startTime": _iso(self.start_time),
            "completeTime": _iso(self.complete_time),
            "attempts": self.attempts,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Node:
        return cls(
            id=data["id"],
            content=data["content"],
            status=NodeStatus(data.get("status", "pending")),
            translated_content=data.get("translatedContent"),
            character_count=data.get("characterCount", 0),
            error=data.get("error"),
            start_time=_parse_time(data.get("startTime")),
            complete_time=_parse_time(data.get("completeTime")),
            attempts=data.get("attempts", 0),
            metadata=data.get("metadata") or {},
        )


def validate_nodes(nodes: List[Node]) -> None:
    """Check a splitter's output: node ids must be unique."""
    seen = set()
    for node in nodes:
        if node.id in seen:
            raise ValidationError(f"Duplicate node id {node.id}", field="id", value=node.id)
        seen.add(node.id)


@dataclass
class StepConfig:
    """One stage of the pipeline."""
    name: str
    provider: str
    model_name: str = ""
    temperature: float = 0.3
    max_tokens: int = 4096
    additional_notes: str = ""
    timeout: int = 0  # seconds, 0 = engine request_timeout
    role: Optional[StepRole] = None

    def signature(self) -> str:
        """Stable digest of everything that changes this stage's output."""
        payload = json.dumps({
            "name": self.name,
            "provider": self.provider,
            "model": self.model_name,
            "temperature": round(float(self.temperature), 4),
            "max_tokens": self.max_tokens,
            "notes": self.additional_notes,
            "role": self.role.value if self.role else None,
        }, sort_keys=True, ensure_ascii=False)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "provider": self.provider,
            "model_name": self.model_name,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "additional_notes": self.additional_notes,
        }
        if self.timeout:
            data["timeout"] = self.timeout
        if self.role:
            data["role"] = self.role.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> StepConfig:
        if not data.get("name") or not data.get("provider"):
            raise ValidationError("Step requires 'name' and 'provider'", field="steps", value=data)
        role = data.get("role")
        try:
            role = StepRole(role) if role else None
        except ValueError:
            raise ValidationError(
                f"Unknown step role '{role}'",
                field="role",
                value=role,
                limit=[r.value for r in StepRole]
            )
        return cls(
            name=data["name"],
            provider=str(data["provider"]).lower(),
            model_name=data.get("model_name") or data.get("model") or "",
            temperature=float(data.get("temperature", 0.3)),
            max_tokens=int(data.get("max_tokens") or 0),
            additional_notes=data.get("additional_notes") or "",
            timeout=int(data.get("timeout") or 0),
            role=role,
        )


# Legacy three-stage keys, converted to a length-3 step list.
LEGACY_STAGE_KEYS = ("initial_translation", "reflection", "improvement")


@dataclass
class StepSet:
    """Ordered sequence of stages applied to every node."""
    id: str
    name: str
    steps: List[StepConfig]
    fast_mode_threshold: int = 0
    description: str = ""

    def __post_init__(self):
        if not self.steps:
            raise ValidationError(f"Step set '{self.id}' has no steps", field="steps")

    def role_for(self, index: int) -> StepRole:
        """Explicit role, or by position: translate, then reflect/improve alternating."""
        step = self.steps[index]
        if step.role is not None:
            return step.role
        if index == 0:
            return StepRole.TRANSLATE
        return StepRole.REFLECT if index % 2 == 1 else StepRole.IMPROVE

    def prefix_signature(self, index: int) -> str:
        """Signature of steps 0..index; stage `index` depends on all of them."""
        digest = hashlib.sha256()
        for step in self.steps[:index + 1]:
            digest.update(step.signature().encode("ascii"))
        return digest.hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "steps": [s.to_dict() for s in self.steps],
            "fast_mode_threshold": self.fast_mode_threshold,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], set_id: Optional[str] = None) -> StepSet:
        set_id = data.get("id") or set_id
        if not set_id:
            raise ValidationError("Step set requires an 'id'", field="id")

        raw_steps = data.get("steps")
        if raw_steps is None and any(k in data for k in LEGACY_STAGE_KEYS):
            raw_steps = []
            for key in LEGACY_STAGE_KEYS:
                stage = data.get(key)
                if stage and stage.get("model_name"):
                    stage = dict(stage)
                    stage["name"] = key
                    stage.setdefault("provider", data.get("provider", "openai"))
                    raw_steps.append(stage)

        return cls(
            id=set_id,
            name=data.get("name", set_id),
            description=data.get("description", ""),
            steps=[StepConfig.from_dict(s) for s in (raw_steps or [])],
            fast_mode_threshold=int(data.get("fast_mode_threshold") or 0),
        )


@dataclass
class ErrorInfo:
    """Error recorded against a session."""
    time: datetime
    node_id: int
    error: str
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": _iso(self.time),
            "nodeId": self.node_id,
            "error": self.error,
            "context": self.context,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ErrorInfo:
        return cls(
            time=_parse_time(data.get("time")) or datetime.now(),
            node_id=data.get("nodeId", -1),
            error=data.get("error", ""),
            context=data.get("context") or {},
        )


@dataclass
class NodeProgress:
    """Per-node mirror of status used for persistence."""
    node_id: int
    status: NodeStatus = NodeStatus.PENDING
    start_time: Optional[datetime] = None
    complete_time: Optional[datetime] = None
    character_count: int = 0
    error: Optional[str] = None
    retry_count: int = 0
    translated_content: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "status": self.status.value,
            "startTime": _iso(self.start_time),
            "completeTime": _iso(self.complete_time),
            "characterCount": self.character_count,
            "error": self.error,
            "retryCount": self.retry_count,
            "translatedContent": self.translated_content,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> NodeProgress:
        return cls(
            node_id=int(data["nodeId"]),
            status=NodeStatus(data.get("status", "pending")),
            start_time=_parse_time(data.get("startTime")),
            complete_time=_parse_time(data.get("completeTime")),
            character_count=data.get("characterCount", 0),
            error=data.get("error"),
            retry_count=data.get("retryCount", 0),
            translated_content=data.get("translatedContent"),
        )


@dataclass
class Session:
    """
    Durable record of one document's translation run.

    Mutated only through SessionStore, under `lock`.
    """
    id: str
    file_name: str
    start_time: datetime = field(default_factory=datetime.now)
    last_update_time: datetime = field(default_factory=datetime.now)
    status: SessionStatus = SessionStatus.RUNNING
    total_nodes: int = 0
    completed_nodes: int = 0
    failed_nodes: int = 0
    total_characters: int = 0
    processed_characters: int = 0
    node_progress: Dict[int, NodeProgress] = field(default_factory=dict)
    errors: List[ErrorInfo] = field(default_factory=list)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def progress(self) -> float:
        if self.total_nodes == 0:
            return 0.0
        return self.completed_nodes / self.total_nodes * 100

    def touch(self) -> None:
        """Advance last_update_time, never backwards."""
        now = datetime.now()
        if now > self.last_update_time:
            self.last_update_time = now

    def successful_node_ids(self) -> List[int]:
        return [nid for nid, p in self.node_progress.items() if p.status == NodeStatus.SUCCESS]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "fileName": self.file_name,
            "startTime": _iso(self.start_time),
            "lastUpdateTime": _iso(self.last_update_time),
            "status": self.status.value,
            "totalNodes": self.total_nodes,
            "completedNodes": self.completed_nodes,
            "failedNodes": self.failed_nodes,
            "totalCharacters": self.total_characters,
            "processedCharacters": self.processed_characters,
            # JSON object keys are strings
            "nodeProgress": {str(k): v.to_dict() for k, v in sorted(self.node_progress.items())},
            "errors": [e.to_dict() for e in self.errors],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Session:
        progress = {
            int(k): NodeProgress.from_dict(v)
            for k, v in (data.get("nodeProgress") or {}).items()
        }
        return cls(
            id=data["id"],
            file_name=data.get("fileName", ""),
            start_time=_parse_time(data.get("startTime")) or datetime.now(),
            last_update_time=_parse_time(data.get("lastUpdateTime")) or datetime.now(),
            status=SessionStatus(data.get("status", "running")),
            total_nodes=data.get("totalNodes", 0),
            completed_nodes=data.get("completedNodes", 0),
            failed_nodes=data.get("failedNodes", 0),
            total_characters=data.get("totalCharacters", 0),
            processed_characters=data.get("processedCharacters", 0),
            node_progress=progress,
            errors=[ErrorInfo.from_dict(e) for e in data.get("errors") or []],
        )


@dataclass
class SessionSummary:
    """Lightweight listing entry for a persisted session."""
    id: str
    file_name: str
    start_time: datetime
    status: SessionStatus
    progress: float


@dataclass
class ProgressInfo:
    """Point-in-time progress snapshot for a running session."""
    session_id: str
    file_name: str
    total_nodes: int
    completed_nodes: int
    failed_nodes: int
    total_characters: int
    processed_characters: int
    start_time: datetime
    estimated_completion: Optional[datetime]
    progress: float
    status: SessionStatus
    errors: int


@dataclass
class RunResult:
    """Aggregate outcome of a run, returned even when some nodes failed."""
    input_file: str
    output_file: str
    total_nodes: int
    completed_nodes: int
    failed_nodes: int
    progress: float
    duration: float
    translations: Dict[int, str] = field(default_factory=dict)
    session_id: Optional[str] = None
    skipped_nodes: int = 0
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.failed_nodes == 0 and self.completed_nodes == self.total_nodes

    def get_summary(self) -> Dict[str, Any]:
        """Get summary statistics."""
        return {
            "input_file": self.input_file,
            "output_file": self.output_file,
            "total_nodes": self.total_nodes,
            "completed_nodes": self.completed_nodes,
            "failed_nodes": self.failed_nodes,
            "skipped_nodes": self.skipped_nodes,
            "progress": round(self.progress, 2),
            "duration": round(self.duration, 3),
            "cancelled": self.cancelled,
        }
