"""Capture Agent - Core application modules.

Provides:
- Versioned SQLite migrations and a bounded connection pool
- Asset ingestion (validation, fingerprinting, content storage)
- Job repository with an enforced status transition graph
- Lifecycle facade plus summarizer/publisher/credential collaborators
"""

__version__ = "0.1.0"
