"""Orchestrator - model access and conversation driving.

Normalizes LLM vendors behind one gateway, manages conversation state,
supplies tool definitions and executes requested tools.
"""

from orchestrator.llm import ProviderAdapter, create_provider_adapter
from orchestrator.gateway import ModelGateway
from orchestrator.conversation import ConversationManager, ConversationOrchestrator

__all__ = [
    "ProviderAdapter",
    "create_provider_adapter",
    "ModelGateway",
    "ConversationManager",
    "ConversationOrchestrator",
]
