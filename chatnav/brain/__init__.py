"""
Brain module for chatnav.
Constrained model arbitration over the Ollama API.
"""
from chatnav.brain.arbitrator import ArbiterVerdict, ConstrainedArbitrator, VerdictKind
from chatnav.brain.ollama_client import OllamaClient

__all__ = [
    "ArbiterVerdict",
    "ConstrainedArbitrator",
    "VerdictKind",
    "OllamaClient",
]
