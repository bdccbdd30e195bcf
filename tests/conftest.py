import pytest

from orchestrator.gateway import ModelGateway
from tools.registry import ToolRegistry
from fakes import EchoTool, FakeProviderAdapter, make_settings


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def adapter():
    return FakeProviderAdapter()


@pytest.fixture
def gateway(adapter):
    return ModelGateway(adapters={"openai": adapter})


@pytest.fixture
def echo_tool():
    return EchoTool()


@pytest.fixture
def registry(echo_tool):
    registry = ToolRegistry()
    registry.register(echo_tool)
    return registry
