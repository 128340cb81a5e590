"""
Common utilities for the download test.
"""

from .byte_counter import ByteCounter, ProgressAggregator
from .phase_manager import PhaseManager, TestPhase
from .worker_pool import StreamPool, StreamWorker, StreamState
from .orchestrator import TestOrchestrator, TestRun
from .run_config import TestConfig, configure

__all__ = [
    'ByteCounter', 'ProgressAggregator', 'PhaseManager', 'TestPhase',
    'StreamPool', 'StreamWorker', 'StreamState', 'TestOrchestrator', 'TestRun',
    'TestConfig', 'configure',
]
