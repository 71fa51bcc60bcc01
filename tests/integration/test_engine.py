"""
Integration tests for the translation engine.

Runs the real registry, cache, session store, pipeline and scheduler with
the offline passthrough provider, so no network is needed.
"""

import asyncio

import pytest
import yaml
from loguru import logger as loguru_logger

from steptrans.core.engine import TranslationEngine
from steptrans.core.exceptions import ConfigurationError, DocumentError
from steptrans.core.models import Node, SessionStatus
from steptrans.utils.config_loader import EngineConfig
from steptrans.utils.logger import LoguruWrapper


@pytest.fixture
def engine_config(tmp_path):
    return EngineConfig(
        source_lang="English",
        target_lang="French",
        active_step_set="raw",
        cache_backend="memory",
        session_dir=str(tmp_path / "sessions"),
        retry_delay=0,
        autosave_interval=0,
        validate_preserve_markers=True,
    )


@pytest.fixture
def engine(engine_config, test_logger):
    return TranslationEngine(engine_config, logger=test_logger)


class TestTranslateNodes:
    """Full runs through the engine."""

    @pytest.mark.asyncio
    async def test_translates_every_node(self, engine, sample_nodes):
        result = await engine.translate_nodes(sample_nodes, file_name="paper.md", output_file="paper.fr.md")

        assert result.success
        assert result.output_file == "paper.fr.md"
        assert result.translations == {n.id: n.content for n in sample_nodes}
        assert result.get_summary()["progress"] == 100.0
        # Three stages per distinct node
        assert engine.cache_stats()["size"] == 9

        sessions = engine.list_sessions()
        assert [s.id for s in sessions] == [result.session_id]
        assert sessions[0].status == SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_empty_document_is_rejected(self, engine):
        with pytest.raises(DocumentError):
            await engine.translate_nodes([], file_name="empty.md")

    @pytest.mark.asyncio
    async def test_rerun_resumes_finished_session(self, engine, sample_nodes):
        first = await engine.translate_nodes(sample_nodes, file_name="paper.md")

        fresh_nodes = [Node(id=n.id, content=n.content) for n in sample_nodes]
        second = await engine.translate_nodes(fresh_nodes, file_name="paper.md")

        assert second.session_id == first.session_id
        assert second.skipped_nodes == 3
        assert second.translations == first.translations

    @pytest.mark.asyncio
    async def test_resume_after_restart(self, engine_config, test_logger, sample_nodes):
        first_engine = TranslationEngine(engine_config, logger=test_logger)
        first = await first_engine.translate_nodes(sample_nodes[:2], file_name="paper.md")
        assert first.completed_nodes == 2

        restarted = TranslationEngine(engine_config, logger=test_logger)
        nodes = [Node(id=n.id, content=n.content) for n in sample_nodes]
        result = await restarted.translate_nodes(nodes, file_name="paper.md")

        assert result.skipped_nodes == 2
        assert result.completed_nodes == 3
        assert result.total_nodes == 3

    @pytest.mark.asyncio
    async def test_cancelled_run(self, engine, sample_nodes):
        cancel = asyncio.Event()
        cancel.set()

        result = await engine.translate_nodes(sample_nodes, file_name="paper.md", cancel_event=cancel)

        assert result.cancelled
        assert result.completed_nodes == 0
        assert engine.get_progress(result.session_id).status == SessionStatus.CANCELLED

    def test_sync_wrapper(self, engine):
        result = engine.translate_nodes_sync([Node(id=1, content="Hello")], file_name="hello.txt")
        assert result.translations == {1: "Hello"}

    @pytest.mark.asyncio
    async def test_unknown_step_set(self, engine, sample_nodes):
        with pytest.raises(ConfigurationError):
            await engine.translate_nodes(sample_nodes, file_name="paper.md", step_set_id="nope")


class TestEngineSetup:
    """Engine construction and helpers."""

    def test_session_id_is_stable_per_document_and_language_pair(self, engine_config, test_logger):
        engine = TranslationEngine(engine_config, logger=test_logger)
        same = engine.make_session_id("paper.md")

        assert engine.make_session_id("paper.md") == same
        assert engine.make_session_id("other.md") != same
        assert engine.make_session_id("paper.md", step_set_id="basic") != same
        assert engine.make_session_id("") != engine.make_session_id("")

        engine_config.target_lang = "German"
        assert TranslationEngine(engine_config, logger=test_logger).make_session_id("paper.md") != same

    def test_invalid_config_rejected(self, engine_config):
        engine_config.cache_backend = "redis"
        with pytest.raises(ConfigurationError):
            TranslationEngine(engine_config)

    def test_cache_can_be_disabled(self, engine_config, test_logger):
        engine_config.use_cache = False
        assert TranslationEngine(engine_config, logger=test_logger).cache_stats() == {"type": "disabled"}

    @pytest.mark.asyncio
    async def test_translate_text(self, engine):
        result = await engine.translate_text("Standalone sentence.")

        assert result.translation == "Standalone sentence."
        assert len(result.stages) == 3

    def test_from_config_file(self, tmp_path):
        config_path = tmp_path / "steptrans.yaml"
        config_path.write_text(yaml.safe_dump({
            "translation": {"target_lang": "Spanish", "active_step_set": "raw"},
            "scheduler": {"retry_delay": 0, "autosave_interval": 0},
            "cache": {"backend": "memory"},
            "session": {"dir": str(tmp_path / "sessions")},
            "logging": {"level": "DEBUG", "file": str(tmp_path / "logs" / "run.log")},
        }), encoding="utf-8")

        try:
            engine = TranslationEngine.from_config(str(config_path))
            result = engine.translate_nodes_sync([Node(id=1, content="Hola")], file_name="doc.txt")
        finally:
            loguru_logger.remove()

        assert isinstance(engine.logger, LoguruWrapper)
        assert engine.config.target_lang == "Spanish"
        assert result.success
        assert (tmp_path / "sessions" / f"{result.session_id}.json").exists()
