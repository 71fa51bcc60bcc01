"""
steptrans: multi-stage translation orchestration engine

Translates documents that an external processor has split into nodes,
driving each node through a configurable step set (translate, reflect,
improve) over pluggable providers, with a content-addressed cache and a
resumable session store.

Usage:
    from steptrans import TranslationEngine, EngineConfig, Node

    config = EngineConfig(source_lang="English", target_lang="French", active_step_set="basic")
    engine = TranslationEngine(config)
    result = engine.translate_nodes_sync(nodes, file_name="paper.md")
"""

__version__ = "1.0.0"
__license__ = "MIT"

from steptrans.core.exceptions import (
    SteptransError,
    ProviderError,
    ValidationError,
    CacheError,
    PersistenceError,
    DocumentError,
    ConfigurationError,
    DependencyError,
)
from steptrans.core.models import (
    Node,
    NodeStatus,
    StepConfig,
    StepRole,
    StepSet,
    Session,
    SessionStatus,
    RunResult,
)
from steptrans.core.pipeline import StepPipeline, plan_stages, is_fast_mode
from steptrans.core.scheduler import Scheduler
from steptrans.core.session import SessionStore
from steptrans.core.engine import TranslationEngine
from steptrans.utils.config_loader import EngineConfig, load_config

__all__ = [
    "__version__",
    "SteptransError", "ProviderError", "ValidationError", "CacheError",
    "PersistenceError", "DocumentError", "ConfigurationError", "DependencyError",
    "Node", "NodeStatus", "StepConfig", "StepRole", "StepSet", "Session",
    "SessionStatus", "RunResult",
    "StepPipeline", "plan_stages", "is_fast_mode",
    "Scheduler", "SessionStore", "TranslationEngine",
    "EngineConfig", "load_config",
]
