"""
HarMock Mock Server Module

Replays recorded HAR traffic as a mock HTTP server.

This module provides:
- Key normalization and signature index
- Exact-signature request matcher
- Responder for replay, default and not-found responses
- FastAPI-based mock server
"""

from .events import EventRecorder, LoggingEventSink, null_sink
from .normalizer import build_signature, normalize_body, normalize_query, sort_json_keys
from .index import ArchiveEntry, Group, SignatureIndex, build_index
from .matcher import Matched, MatchOutcome, PathKnownNoVariant, PathUnknown, RequestMatcher
from .responder import ReplayResponse, Responder
from .server import MockConfig, MockMetrics, MockServer, create_mock_server

__all__ = [
    # Events
    'EventRecorder',
    'LoggingEventSink',
    'null_sink',

    # Normalizer
    'build_signature',
    'normalize_body',
    'normalize_query',
    'sort_json_keys',

    # Index
    'ArchiveEntry',
    'Group',
    'SignatureIndex',
    'build_index',

    # Matcher
    'Matched',
    'MatchOutcome',
    'PathKnownNoVariant',
    'PathUnknown',
    'RequestMatcher',

    # Responder
    'ReplayResponse',
    'Responder',

    # Server
    'MockConfig',
    'MockMetrics',
    'MockServer',
    'create_mock_server',
]

__version__ = '1.0.0'
