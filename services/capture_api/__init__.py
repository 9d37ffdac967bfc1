"""Capture Agent - HTTP dispatch service.

FastAPI service exposing job ingestion, job lifecycle, settings and note
publishing over the core in app/.
"""

__all__: list[str] = []
