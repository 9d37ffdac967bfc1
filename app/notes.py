"""Capture Agent - Markdown note rendering."""

from __future__ import annotations

from pathlib import Path

from app.schemas import JobDetails

NOTE_TAGS = ("ai-capture", "capture-agent")

PLACEHOLDER_INSIGHTS = (
    "- Summary not generated yet.",
    "- Publish with a configured API key to add key insights.",
)


def _yaml_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def source_file_names(details: JobDetails) -> list[str]:
    return [Path(asset.original_path).name for asset in details.assets]


def build_note_markdown(details: JobDetails, summary: str | None = None) -> str:
    """Render a job as a markdown note with front matter.

    Args:
        details: Job and its assets.
        summary: Optional key-insights text; placeholders are used when absent.

    Returns:
        The note body.
    """
    lines = [
        "---",
        f"title: {_yaml_quote('[AI Capture] ' + details.job.title)}",
        f"tags: [{', '.join(NOTE_TAGS)}]",
        "---",
        "",
        "## Key Insights",
    ]
    if summary and summary.strip():
        lines.append(summary.strip())
    else:
        lines.extend(PLACEHOLDER_INSIGHTS)
    lines.extend(["", "## Source Files"])
    lines.extend(f"- {asset.original_path} ({asset.media_type})" for asset in details.assets)
    return "\n".join(lines) + "\n"
