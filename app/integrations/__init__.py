"""Capture Agent - External collaborators (summarizer, publisher, credentials)."""
