"""
Translation engine facade.

Builds the provider registry, cache, session store, pipeline and scheduler
from an EngineConfig. External document processors hand it a list of nodes
and get back a RunResult with the translated text per node id.
"""

from __future__ import annotations
from typing import List, Optional
import asyncio
import hashlib
import uuid

from steptrans.core.exceptions import CacheError, ConfigurationError, DocumentError
from steptrans.core.models import Node, ProgressInfo, RunResult, SessionSummary, StepSet
from steptrans.core.pipeline import PipelineResult, StepPipeline
from steptrans.core.scheduler import Scheduler
from steptrans.core.session import SessionStore
from steptrans.translation.factory import ProviderRegistry
from steptrans.utils.cache import Cache, create_cache
from steptrans.utils.config_loader import EngineConfig
from steptrans.utils.logger import get_logger, setup_logger


class TranslationEngine:
    """Entry point for translating node lists."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        logger=None,
        cache: Optional[Cache] = None,
        store: Optional[SessionStore] = None,
        registry: Optional[ProviderRegistry] = None
    ):
        self.config = config or EngineConfig()
        self.config.validate()
        self.logger = logger or get_logger("steptrans")

        self.cache = cache if cache is not None else self._build_cache()
        self.store = store or SessionStore(self.config.session_dir, logger=self.logger)
        self.registry = registry or ProviderRegistry(
            self.config.provider_configs(),
            source_lang=self.config.source_lang,
            target_lang=self.config.target_lang,
            timeout=self.config.request_timeout,
            logger=self.logger,
        )
        self._scheduler: Optional[Scheduler] = None

    @classmethod
    def from_config(cls, config_path: Optional[str] = None) -> TranslationEngine:
        """Load configuration, set up the loguru sinks and build an engine."""
        config = EngineConfig.load(config_path)
        logger = setup_logger(config.log_level, config.log_file)
        return cls(config, logger=logger)

    def _build_cache(self) -> Optional[Cache]:
        if not self.config.use_cache:
            return None
        try:
            return create_cache(
                self.config.cache_backend,
                cache_dir=self.config.cache_dir,
                ttl=self.config.cache_ttl,
                logger=self.logger,
            )
        except CacheError as e:
            self.logger.warning(f"{e.message}. Continuing without cache.")
            return None

    def step_set(self, step_set_id: Optional[str] = None) -> StepSet:
        set_id = step_set_id or self.config.active_step_set
        step_set = self.config.step_sets.get(set_id)
        if step_set is None:
            raise ConfigurationError(
                f"Unknown step set '{set_id}'",
                config_key="active_step_set",
                invalid_value=set_id,
                valid_values=sorted(self.config.step_sets)
            )
        return step_set

    def build_pipeline(self, step_set_id: Optional[str] = None) -> StepPipeline:
        return StepPipeline(
            self.step_set(step_set_id),
            self.registry,
            cache=self.cache,
            source_lang=self.config.source_lang,
            target_lang=self.config.target_lang,
            country=self.config.country,
            force_refresh=self.config.force_refresh,
            request_timeout=self.config.request_timeout,
            validate_preserve_markers=self.config.validate_preserve_markers,
            skip_improvement_when_clean=self.config.skip_improvement_when_clean,
            logger=self.logger,
        )

    def build_scheduler(self, step_set_id: Optional[str] = None) -> Scheduler:
        return Scheduler(
            self.build_pipeline(step_set_id),
            self.store,
            concurrency=self.config.concurrency,
            retry_attempts=self.config.retry_attempts,
            retry_delay=self.config.retry_delay,
            backoff_factor=self.config.backoff_factor,
            max_retry_delay=self.config.max_retry_delay,
            autosave_interval=self.config.autosave_interval,
            logger=self.logger,
        )

    def make_session_id(self, file_name: str, step_set_id: Optional[str] = None) -> str:
        """Stable id per (document, language pair, step set) so reruns resume."""
        if not file_name:
            return uuid.uuid4().hex
        key = "|".join([
            file_name,
            self.config.source_lang,
            self.config.target_lang,
            step_set_id or self.config.active_step_set,
        ])
        return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]

    async def translate_nodes(
        self,
        nodes: List[Node],
        file_name: str = "",
        output_file: str = "",
        session_id: Optional[str] = None,
        step_set_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> RunResult:
        """
        Translate a document's nodes.

        Raises:
            DocumentError: No nodes to translate
            ValidationError: Duplicate node ids
        """
        if not nodes:
            raise DocumentError("Document produced no nodes to translate", input_file=file_name or None)

        session_id = session_id or self.make_session_id(file_name, step_set_id)
        self._scheduler = self.build_scheduler(step_set_id)
        self.logger.info(
            f"Translating {len(nodes)} nodes from {file_name or '<memory>'} "
            f"({self.config.source_lang} -> {self.config.target_lang}, step set "
            f"'{step_set_id or self.config.active_step_set}', session {session_id})"
        )
        return await self._scheduler.run(
            nodes,
            session_id,
            file_name=file_name,
            output_file=output_file,
            cancel_event=cancel_event,
        )

    def translate_nodes_sync(self, nodes: List[Node], file_name: str = "", output_file: str = "",
                             session_id: Optional[str] = None, step_set_id: Optional[str] = None) -> RunResult:
        return asyncio.run(self.translate_nodes(nodes, file_name, output_file, session_id, step_set_id))

    async def translate_text(self, text: str, step_set_id: Optional[str] = None) -> PipelineResult:
        """Run the pipeline once on a standalone text, without session tracking or retries."""
        return await self.build_pipeline(step_set_id).run(Node(id=0, content=text))

    def cancel(self) -> None:
        """Stop dispatching nodes of the current run."""
        if self._scheduler is not None:
            self._scheduler.cancel()

    def get_progress(self, session_id: str) -> Optional[ProgressInfo]:
        return self.store.get_progress(session_id)

    def list_sessions(self) -> List[SessionSummary]:
        return self.store.list_sessions()

    def cache_stats(self) -> dict:
        if self.cache is None:
            return {"type": "disabled"}
        return self.cache.stats()
