"""
Per-node step pipeline.

Drives one node through the active step set: translate, then optional
reflect/improve rounds. Each stage consults the cache before calling its
provider and writes the output back after a successful call.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import asyncio
import hashlib
import json
import logging
import time

from steptrans.core.exceptions import CacheError, ProviderError
from steptrans.core.models import Node, StepRole, StepSet, missing_preserve_markers
from steptrans.translation.factory import ProviderRegistry
from steptrans.translation.output_cleaner import (
    clean_translation_output,
    critique_reports_no_issues,
    remove_reasoning_markers,
)
from steptrans.translation.prompts import PromptBuilder
from steptrans.utils.cache import Cache

logger = logging.getLogger(__name__)


class AttemptState(Enum):
    """State of one pipeline attempt: pending, stage_n..., then success or failed."""
    PENDING = "pending"
    STAGE = "stage"
    SUCCESS = "success"
    FAILED = "failed"

    def label(self, stage: Optional[int] = None) -> str:
        if self is AttemptState.STAGE and stage is not None:
            return f"stage_{stage + 1}"
        return self.value


def is_fast_mode(character_count: int, threshold: int) -> bool:
    """Nodes shorter than a positive threshold skip reflect/improve."""
    return threshold > 0 and character_count < threshold


def plan_stages(step_set: StepSet, character_count: int) -> List[int]:
    """Indexes of the steps to run for a node of the given length."""
    if is_fast_mode(character_count, step_set.fast_mode_threshold):
        return [0]
    return list(range(len(step_set.steps)))


def build_cache_key(content: str, source_lang: str, target_lang: str,
                    step_set: StepSet, stage_index: int, country: str = "",
                    preserve_markers: bool = True, instructions: Optional[List[str]] = None) -> str:
    """
    SHA-256 over content, language pair, the configuration of steps
    0..stage_index and the settings that shape prompts.
    """
    payload = json.dumps({
        "content": content,
        "source": source_lang,
        "target": target_lang,
        "country": country,
        "preserve_markers": preserve_markers,
        "instructions": list(instructions or []),
        "steps": step_set.prefix_signature(stage_index),
        "stage": stage_index,
    }, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass
class StageResult:
    """Record of one executed (or cache-served) stage."""
    index: int
    name: str
    role: StepRole
    provider: str
    model: str
    output: str
    cached: bool = False
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    duration: float = 0.0


@dataclass
class PipelineResult:
    """Outcome of one successful pipeline attempt."""
    node_id: int
    translation: str
    stages: List[StageResult] = field(default_factory=list)
    fast_mode: bool = False
    states: List[str] = field(default_factory=list)

    @property
    def provider_calls(self) -> int:
        return sum(1 for s in self.stages if not s.cached)

    @property
    def cost(self) -> float:
        return sum(s.cost for s in self.stages)


class StepPipeline:
    """
    Runs the active StepSet over single nodes.

    One instance is shared by every worker; `run` keeps all per-node state
    in locals.
    """

    def __init__(
        self,
        step_set: StepSet,
        registry: ProviderRegistry,
        cache: Optional[Cache] = None,
        source_lang: str = "English",
        target_lang: str = "Chinese",
        country: str = "",
        force_refresh: bool = False,
        request_timeout: Optional[float] = None,
        validate_preserve_markers: bool = False,
        skip_improvement_when_clean: bool = False,
        logger=None
    ):
        self.step_set = step_set
        self.registry = registry
        self.cache = cache
        self.source_lang = source_lang
        self.target_lang = target_lang
        self.force_refresh = force_refresh
        self.request_timeout = request_timeout
        self.validate_preserve_markers = validate_preserve_markers
        self.skip_improvement_when_clean = skip_improvement_when_clean
        self.logger = logger or logging.getLogger(__name__)
        self.prompts = PromptBuilder(source_lang, target_lang, country)

    def _cache_key(self, node: Node, index: int) -> str:
        return build_cache_key(
            node.content, self.source_lang, self.target_lang, self.step_set, index,
            country=self.prompts.country,
            preserve_markers=self.prompts.preserve_markers,
            instructions=self.prompts.instructions,
        )

    # File-backed caches block, so cache I/O runs off the event loop
    async def _cache_get(self, key: str) -> Optional[str]:
        if self.cache is None or self.force_refresh:
            return None
        try:
            return await asyncio.to_thread(self.cache.get, key)
        except CacheError as e:
            self.logger.warning(f"Cache read failed, treating as miss: {e.message}")
            return None

    async def _cache_set(self, key: str, value: str) -> None:
        if self.cache is None:
            return
        try:
            await asyncio.to_thread(self.cache.set, key, value)
        except CacheError as e:
            self.logger.warning(f"Cache write failed: {e.message}")

    def _stage_input(self, client, role: StepRole, node: Node, working: str, critique: str, notes: str) -> str:
        if not client.supports_prompts:
            # Machine translation services only see text in the source language,
            # except a reflect stage which receives the working translation.
            return working if role == StepRole.REFLECT else node.content
        if role == StepRole.TRANSLATE and len(self.step_set.steps) == 1:
            return self.prompts.build_direct_translation(node.content, notes)
        return self.prompts.build(role, node.content, working, critique, notes)

    async def _call(self, client, text: str, max_tokens: int, temperature: float, timeout: Optional[float]):
        if not timeout:
            return await client.complete(text, max_tokens, temperature)
        try:
            return await asyncio.wait_for(client.complete(text, max_tokens, temperature), timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(client.provider_type, f"no response within {timeout}s", original_error=e)

    async def run(self, node: Node) -> PipelineResult:
        """
        Run every planned stage for a node.

        Raises:
            ProviderError: A stage call failed or produced unusable output
            ValidationError: A stage request exceeded its provider's limits
        """
        stages = plan_stages(self.step_set, node.character_count)
        result = PipelineResult(
            node_id=node.id,
            translation="",
            fast_mode=len(stages) < len(self.step_set.steps),
            states=[AttemptState.PENDING.label()],
        )
        working = ""
        critique = ""

        for index in stages:
            step = self.step_set.steps[index]
            role = self.step_set.role_for(index)
            result.states.append(AttemptState.STAGE.label(index))

            if (role == StepRole.IMPROVE and self.skip_improvement_when_clean
                    and critique_reports_no_issues(critique)):
                self.logger.debug(f"Node {node.id}: critique found no issues, skipping {step.name}")
                continue

            client = self.registry.get(step.provider, step.model_name, step.timeout or None)
            key = self._cache_key(node, index)
            start = time.time()

            output = await self._cache_get(key)
            stage = StageResult(
                index=index,
                name=step.name,
                role=role,
                provider=client.provider_type,
                model=client.name,
                output="",
                cached=output is not None,
            )

            if output is None:
                text = self._stage_input(client, role, node, working, critique, step.additional_notes)
                response = await self._call(
                    client, text, step.max_tokens, step.temperature,
                    step.timeout or self.request_timeout
                )
                output = self._postprocess(client, role, response.text)
                self._check_output(client, role, node, output)
                await self._cache_set(key, output)
                stage.input_tokens = response.input_tokens
                stage.output_tokens = response.output_tokens
                stage.cost = client.estimate_cost(response.input_tokens, response.output_tokens)

            stage.output = output
            stage.duration = time.time() - start
            result.stages.append(stage)
            self.logger.debug(
                f"Node {node.id}: {step.name} ({role.value}) via {client.provider_type}"
                f"{' [cached]' if stage.cached else ''}"
            )

            if role == StepRole.REFLECT:
                critique = output
            else:
                working = output

        result.translation = working
        result.states.append(AttemptState.SUCCESS.label())
        return result

    def _postprocess(self, client, role: StepRole, text: str) -> str:
        text = text or ""
        if not client.supports_prompts:
            return text
        if role == StepRole.REFLECT:
            return remove_reasoning_markers(text)
        return clean_translation_output(text)

    def _check_output(self, client, role: StepRole, node: Node, output: str) -> None:
        if role == StepRole.REFLECT:
            return
        if node.content.strip() and not output.strip():
            raise ProviderError(client.provider_type, f"empty output for node {node.id}")
        if self.validate_preserve_markers:
            missing = missing_preserve_markers(node.content, output)
            if missing:
                raise ProviderError(
                    client.provider_type,
                    f"output for node {node.id} lost protected markers: {', '.join(missing)}"
                )
