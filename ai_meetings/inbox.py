"""Meeting files: frontmatter parsing, inbox scanning and archive logic.

A meeting file looks like::

    ---
    name: Pricing review
    objective: Decide the 2027 price tiers
    iterations: 2
    synthesis_provider: gemini
    selected_folders: [pricing]
    chain:
      - provider: openai
        primary: Analytical
        secondary: Strategic
        prompt: Focus on margins
      - provider: claude
        devils_advocate: true
    ---
    Should we introduce a usage-based tier?

The body is the initial prompt.
"""

import shutil
from datetime import datetime
from pathlib import Path

import frontmatter


def ensure_dirs(inbox_dir: Path, archive_dir: Path) -> None:
    """Create inbox and archive directories if they don't exist."""
    inbox_dir.mkdir(parents=True, exist_ok=True)
    archive_dir.mkdir(parents=True, exist_ok=True)


def scan_inbox(inbox_dir: Path) -> list[Path]:
    """Return all .md files in inbox_dir, sorted by mtime ascending (oldest first)."""
    files = list(inbox_dir.glob("*.md"))
    return sorted(files, key=lambda p: p.stat().st_mtime)


def parse_file(file_path: Path) -> tuple[str, dict]:
    """Parse a markdown file with optional YAML frontmatter.

    Returns:
        (content, metadata). If no frontmatter, metadata is {}.
    """
    post = frontmatter.load(str(file_path))
    content = post.content.strip()
    metadata = dict(post.metadata)
    return content, metadata


def meeting_payload(content: str, metadata: dict, fallback_name: str = "") -> dict:
    """Map meeting-file frontmatter onto the create-run payload shape."""
    chain = []
    for position, raw in enumerate(metadata.get("chain") or [], start=1):
        if not isinstance(raw, dict):
            chain.append(raw)  # left for build_chain_definition to reject
            continue
        chain.append(
            {
                "step": position,
                "providerId": raw.get("provider", ""),
                "primaryPersonality": raw.get("primary"),
                "secondaryPersonality": raw.get("secondary"),
                "isDevilsAdvocate": raw.get("devils_advocate", False),
                "supplementalPrompt": raw.get("prompt", ""),
            }
        )
    return {
        "name": metadata.get("name") or fallback_name,
        "description": metadata.get("description", ""),
        "objective": metadata.get("objective") or content,
        "initialPrompt": content,
        "chain": chain,
        "iterations": metadata.get("iterations", 1),
        "synthesisProviderId": metadata.get("synthesis_provider"),
        "selectedFolders": metadata.get("selected_folders") or [],
    }


def load_meeting_file(file_path: Path) -> dict:
    content, metadata = parse_file(file_path)
    return meeting_payload(content, metadata, fallback_name=file_path.stem)


def archive_file(file_path: Path, archive_dir: Path, *, failed: bool = False) -> Path:
    """Move file to archive_dir with a timestamp prefix.

    Args:
        file_path: Source file to archive.
        archive_dir: Destination directory.
        failed: If True, prefix filename with "FAILED_".

    Returns:
        Path to the archived file.
    """
    timestamp = datetime.now().strftime("%Y-%m-%dT%H%M")
    prefix = "FAILED_" if failed else ""
    dest_name = f"{prefix}{timestamp}_{file_path.name}"
    dest = archive_dir / dest_name
    shutil.move(str(file_path), str(dest))
    return dest
