"""Pytest configuration and fixtures."""

import logging
import sys
import threading
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest

from steptrans.core.exceptions import ProviderError
from steptrans.core.models import Node, StepConfig, StepSet
from steptrans.core.session import SessionStore
from steptrans.translation.base import ProviderClient, ProviderConfig, CompletionResult
from steptrans.translation.factory import ProviderRegistry
from steptrans.utils.cache import MemoryCache


class FakeProvider(ProviderClient):
    """
    In-process provider that records every call.

    `fail_when(text)` returning True makes the call raise ProviderError;
    `transform(text)` builds the output (identity by default); `status_code`
    is attached to scripted failures.
    """

    provider_type = "fake"

    def __init__(self, supports_prompts=False, transform=None, fail_when=None, status_code=None, config=None):
        super().__init__(config or ProviderConfig(model="fake-model"))
        self.supports_prompts = supports_prompts
        self.transform = transform or (lambda text: text)
        self.fail_when = fail_when or (lambda text: False)
        self.status_code = status_code
        self.calls = []
        self._lock = threading.Lock()

    def _complete_sync(self, prompt, max_tokens, temperature):
        with self._lock:
            self.calls.append(prompt)
        if self.fail_when(prompt):
            raise ProviderError("fake", "scripted failure", status_code=self.status_code)
        return CompletionResult(text=self.transform(prompt), input_tokens=10, output_tokens=5, model="fake-model")

    async def _complete(self, prompt, max_tokens, temperature):
        return self._complete_sync(prompt, max_tokens, temperature)

    def is_available(self):
        return True


class StaticRegistry(ProviderRegistry):
    """Registry serving pre-built clients by provider identifier."""

    def __init__(self, clients):
        super().__init__()
        self.static_clients = clients

    def get(self, identifier, model="", timeout=None):
        return self.static_clients[identifier]


def make_step_set(provider="fake", threshold=0, steps=3, set_id="test"):
    names = ["initial_translation", "reflection", "improvement", "reflection_2", "improvement_2"]
    return StepSet(
        id=set_id,
        name=set_id,
        steps=[StepConfig(name=names[i], provider=provider, model_name="fake-model") for i in range(steps)],
        fast_mode_threshold=threshold,
    )


@pytest.fixture
def test_logger():
    return logging.getLogger("steptrans.tests")


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def registry(fake_provider):
    return StaticRegistry({"fake": fake_provider})


@pytest.fixture
def memory_cache():
    return MemoryCache()


@pytest.fixture
def step_set():
    return make_step_set()


@pytest.fixture
def store(tmp_path, test_logger):
    return SessionStore(str(tmp_path / "sessions"), logger=test_logger)


@pytest.fixture
def sample_nodes():
    """Three nodes as an external splitter would produce them."""
    return [
        Node(id=1, content="First paragraph."),
        Node(id=2, content="Second paragraph with @@PRESERVE_1@@ inside."),
        Node(id=3, content="Third paragraph."),
    ]
