"""Live multi-client todo list served over FastAPI with an SSE fan-out."""

__version__ = "0.1.0"
