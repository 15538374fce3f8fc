"""HarMock: replay a recorded HAR session as a mock HTTP server."""

__version__ = '1.0.0'
