"""
HarMock Mock Server

FastAPI-based HTTP mock server that replays responses from a HAR archive.

Features:
- Exact signature matching (query order and JSON key order insensitive)
- Recorded status, headers and body replay
- Generic success stub for known endpoints with unrecorded parameters
- 404 diagnostics listing recorded endpoints
- Permissive CORS with preflight handling
- Admin API for metrics and browsing recorded endpoints
"""

from __future__ import annotations  # Enable forward references for type hints

import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

try:
    from fastapi import FastAPI, Request, Response
    from fastapi.responses import JSONResponse
    import uvicorn
    FASTAPI_AVAILABLE = True
except ImportError:
    FASTAPI_AVAILABLE = False

from ..common import ArchiveLoader
from .events import LoggingEventSink
from .index import SignatureIndex, build_index
from .matcher import Matched, MatchOutcome, PathKnownNoVariant, RequestMatcher
from .responder import Responder, ReplayResponse

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, POST, PUT, DELETE, OPTIONS, PATCH, HEAD',
    'Access-Control-Allow-Headers': 'Origin, X-Requested-With, Content-Type, Accept, Authorization, Cache-Control, Pragma',
    'Access-Control-Max-Age': '86400',
}


@dataclass
class MockConfig:
    """Configuration for mock server behavior."""

    # Server options
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "info"
    verbose_mode: bool = False  # Log every match outcome at INFO

    # Response behavior
    cors_enabled: bool = True  # Answer preflights and add CORS headers
    debug_headers: bool = False  # Add X-HarMock-* headers describing the match

    # Admin API
    admin_enabled: bool = True
    admin_prefix: str = "/__admin__"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MockConfig:
        """Create config from a dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    @classmethod
    def from_yaml(cls, yaml_path: str) -> MockConfig:
        """Load config from a YAML file."""
        with open(yaml_path, 'r') as f:
            data = yaml.safe_load(f)

        if data is not None and not isinstance(data, dict):
            raise ValueError(f"Config file {yaml_path} must contain a mapping")

        return cls.from_dict(data or {})


@dataclass
class MockMetrics:
    """Track mock server metrics."""

    total_requests: int = 0
    matched_requests: int = 0
    default_responses: int = 0
    not_found_responses: int = 0
    start_time: str = field(default_factory=lambda: datetime.now().isoformat())

    def record(self, outcome: MatchOutcome):
        self.total_requests += 1
        if isinstance(outcome, Matched):
            self.matched_requests += 1
        elif isinstance(outcome, PathKnownNoVariant):
            self.default_responses += 1
        else:
            self.not_found_responses += 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        uptime_seconds = (datetime.now() - datetime.fromisoformat(self.start_time)).total_seconds()
        return {
            'total_requests': self.total_requests,
            'matched_requests': self.matched_requests,
            'default_responses': self.default_responses,
            'not_found_responses': self.not_found_responses,
            'match_rate': round((self.matched_requests / self.total_requests * 100) if self.total_requests > 0 else 0, 2),
            'uptime_seconds': round(uptime_seconds, 2),
            'start_time': self.start_time
        }


class MockServer:
    """
    FastAPI-based mock server for replaying a HAR archive.

    The archive is loaded and indexed once, when the server is created.
    A missing or malformed archive raises immediately; there is no
    partially working server with zero entries.

    Example:
        server = MockServer('session.har')
        server.start(host='0.0.0.0', port=3000)

        # With custom config
        config = MockConfig(debug_headers=True, verbose_mode=True)
        server = MockServer('session.har', config=config)
        server.start()
    """

    def __init__(self, archive_file: str, config: Optional[MockConfig] = None):
        """
        Initialize mock server.

        Args:
            archive_file: Path to HAR file
            config: Optional MockConfig for server behavior

        Raises:
            FileNotFoundError: If the archive does not exist
            ArchiveFormatError: If the archive is not a HAR document
        """
        if not FASTAPI_AVAILABLE:
            raise ImportError("FastAPI is required for mock server. Install with: pip install fastapi uvicorn")

        self.archive_file = Path(archive_file)
        self.config = config or MockConfig()
        self.metrics = MockMetrics()

        # Setup logging first (before loading the archive)
        self.logger = logging.getLogger("harmock.mock")
        self.logger.setLevel(getattr(logging, self.config.log_level.upper(), logging.INFO))
        self.on_event = LoggingEventSink(self.logger, verbose=self.config.verbose_mode)

        self.index = self._load_index()
        self.matcher = RequestMatcher(self.index, on_event=self.on_event)
        self.responder = Responder(self.index, on_event=self.on_event)

        # Setup FastAPI app
        self.app = self._create_app()

    def _load_index(self) -> SignatureIndex:
        """Load the archive and build the frozen signature index."""
        raw_entries = ArchiveLoader(str(self.archive_file)).load()
        index = build_index(raw_entries, on_event=self.on_event)
        self.logger.info(
            f"Loaded {len(raw_entries)} entries from {self.archive_file} "
            f"({len(index)} signatures, {len(index.groups())} endpoints)"
        )
        return index

    def _create_app(self) -> FastAPI:
        """Create FastAPI application with routes."""
        app = FastAPI(
            title="HarMock Server",
            description="Mock HTTP server replaying responses recorded in a HAR file",
            version="1.0.0"
        )

        if self.config.cors_enabled:
            @app.middleware("http")
            async def cors_middleware(request: Request, call_next):
                """Answer preflight requests and add permissive CORS headers."""
                if request.method == 'OPTIONS':
                    return Response(status_code=200, headers=CORS_HEADERS)

                response = await call_next(request)
                for name, value in CORS_HEADERS.items():
                    response.headers.setdefault(name, value)
                return response

        # Admin API routes
        if self.config.admin_enabled:
            @app.get(f"{self.config.admin_prefix}/metrics")
            async def get_metrics():
                """Get server metrics."""
                return JSONResponse(content=self.metrics.to_dict())

            @app.post(f"{self.config.admin_prefix}/reset")
            async def reset_metrics():
                """Reset metrics."""
                self.metrics = MockMetrics()
                return JSONResponse(content={'status': 'reset'})

            @app.get(f"{self.config.admin_prefix}/config")
            async def get_config():
                """Get current configuration."""
                return JSONResponse(content={
                    'archive_file': str(self.archive_file),
                    'cors_enabled': self.config.cors_enabled,
                    'debug_headers': self.config.debug_headers,
                    'verbose_mode': self.config.verbose_mode,
                    'total_entries': len(self.index.entries()),
                    'total_signatures': len(self.index)
                })

            @app.get(f"{self.config.admin_prefix}/endpoints")
            async def list_endpoints():
                """List recorded endpoints grouped by method and path."""
                return JSONResponse(content=self.index.summary())

        # Main catch-all route for mocking
        @app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"])
        async def mock_request(request: Request, path: str):
            """Handle incoming requests and serve mock responses."""
            return await self._handle_request(request)

        return app

    async def _handle_request(self, request: Request) -> Response:
        """
        Match an incoming request and build the response.

        Args:
            request: FastAPI Request object

        Returns:
            FastAPI Response with the replayed, default or 404 payload
        """
        method = request.method
        path = self._raw_path(request)
        query = request.url.query
        body = await request.body()
        body_text = body.decode('utf-8', errors='replace') if body else None

        self.logger.debug(f"Incoming: {method} {path}{'?' + query if query else ''}")

        outcome = self.matcher.match(method, path, query, body_text)
        self.metrics.record(outcome)

        if isinstance(outcome, Matched):
            self.logger.debug(f"Matched entry #{outcome.entry.index} ({outcome.strategy}): {outcome.entry.url}")
        elif isinstance(outcome, PathKnownNoVariant):
            self.logger.info(f"No recorded variant for {method} {path}, serving default response")
        else:
            self.logger.info(f"No match found for {method} {path}")

        replay = self.responder.respond(outcome)
        return self._create_response(replay, outcome)

    @staticmethod
    def _raw_path(request: Request) -> str:
        """Request path exactly as sent (percent-encoding preserved, no query)."""
        raw_path = request.scope.get('raw_path')
        if raw_path:
            return raw_path.split(b'?', 1)[0].decode('latin-1')
        return request.url.path

    def _create_response(self, replay: ReplayResponse, outcome: MatchOutcome) -> Response:
        """
        Create FastAPI Response from a ReplayResponse.

        Headers are appended one by one so repeated headers (e.g. Set-Cookie)
        survive; a header the transport rejects is logged and skipped.
        """
        response = Response(content=replay.body_bytes(), status_code=replay.status)

        for name, value in replay.headers:
            try:
                response.headers.append(name, value)
            except (UnicodeEncodeError, ValueError) as e:
                self.logger.warning(f"Could not set header {name}: {e}")

        if self.config.debug_headers:
            if isinstance(outcome, Matched):
                response.headers['X-HarMock-Match'] = outcome.strategy
                response.headers['X-HarMock-Entry'] = str(outcome.entry.index)
            elif isinstance(outcome, PathKnownNoVariant):
                response.headers['X-HarMock-Match'] = 'default'
            else:
                response.headers['X-HarMock-Match'] = 'none'

        return response

    def start(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        access_log: bool = True
    ):
        """
        Start the mock server.

        Args:
            host: Host to bind to (overrides config)
            port: Port to bind to (overrides config)
            access_log: Enable access logging
        """
        actual_host = host or self.config.host
        actual_port = port or self.config.port

        self.logger.info(f"HarMock server starting on http://{actual_host}:{actual_port}")
        self.logger.info(f"HAR file: {self.archive_file} ({len(self.index)} mocked endpoints)")
        if self.config.admin_enabled:
            self.logger.info(f"Endpoint list: http://{actual_host}:{actual_port}{self.config.admin_prefix}/endpoints")

        uvicorn.run(
            self.app,
            host=actual_host,
            port=actual_port,
            log_level=self.config.log_level,
            access_log=access_log
        )

    def get_app(self) -> FastAPI:
        """
        Get the FastAPI app instance for testing or custom deployment.

        Returns:
            FastAPI application instance
        """
        return self.app


def create_mock_server(
    archive_file: str,
    host: str = "127.0.0.1",
    port: int = 3000,
    log_level: str = "info",
    verbose_mode: bool = False,
    cors_enabled: bool = True,
    debug_headers: bool = False,
    config_file: Optional[str] = None
) -> MockServer:
    """
    Convenience function to create and configure a mock server.

    Args:
        archive_file: Path to HAR file
        host: Host to bind to
        port: Port to bind to
        log_level: Logging level name
        verbose_mode: Log every match outcome at INFO
        cors_enabled: Add CORS headers and answer preflights
        debug_headers: Add X-HarMock-* headers to responses
        config_file: Optional YAML config; keyword arguments are ignored when given

    Returns:
        Configured MockServer instance

    Example:
        server = create_mock_server('session.har', port=3000, debug_headers=True)
        server.start()
    """
    if config_file:
        config = MockConfig.from_yaml(config_file)
    else:
        config = MockConfig(
            host=host,
            port=port,
            log_level=log_level,
            verbose_mode=verbose_mode,
            cors_enabled=cors_enabled,
            debug_headers=debug_headers
        )

    return MockServer(archive_file, config=config)
