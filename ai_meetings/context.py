"""Document context for meetings: folders of markdown/text files."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

import frontmatter

from ai_meetings.models import ContextDocument

logger = logging.getLogger(__name__)

_TEXT_SUFFIXES = {".md", ".txt"}


class ContextSource(ABC):
    @abstractmethod
    async def load(self, folder_ids: Sequence[str]) -> list[ContextDocument]:
        """Return the documents of every requested folder, in folder order."""


class FolderContextSource(ContextSource):
    """A folder id names a subdirectory of ``root_dir``.

    Markdown files may carry YAML frontmatter; a ``title`` key replaces the
    file name as the document name.
    """

    def __init__(self, root_dir: Path) -> None:
        self._root = Path(root_dir)

    def _read(self, path: Path) -> ContextDocument:
        if path.suffix == ".md":
            post = frontmatter.load(str(path))
            metadata = dict(post.metadata)
            name = str(metadata.get("title") or path.name)
            return ContextDocument(name=name, content=post.content.strip(), metadata=metadata)
        return ContextDocument(name=path.name, content=path.read_text(encoding="utf-8").strip())

    async def load(self, folder_ids: Sequence[str]) -> list[ContextDocument]:
        documents: list[ContextDocument] = []
        for folder_id in folder_ids:
            folder = (self._root / folder_id).resolve()
            if self._root.resolve() not in folder.parents:
                logger.warning("Context folder %r escapes %s, skipping", folder_id, self._root)
                continue
            if not folder.is_dir():
                logger.warning("Context folder not found: %s", folder)
                continue
            files = sorted(p for p in folder.iterdir() if p.is_file() and p.suffix in _TEXT_SUFFIXES)
            documents.extend(self._read(p) for p in files)
            logger.info("Loaded %d context document(s) from %s", len(files), folder_id)
        return documents
