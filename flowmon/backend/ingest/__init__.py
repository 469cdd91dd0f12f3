"""
ingest/__init__.py

Public API for the ingest sub-package.
"""

from .collector import JsonFlowCollector, decode_datagram
from .consumer import FlowConsumer
from .enrichers import Enricher, EnricherChain, StaticEnricher
from .workers import IngestWorkerPool

__all__ = [
    "Enricher",
    "EnricherChain",
    "StaticEnricher",
    "FlowConsumer",
    "JsonFlowCollector",
    "IngestWorkerPool",
    "decode_datagram",
]
