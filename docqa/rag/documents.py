"""Document reading for ingestion.

Handles:
- Supported file types (.txt, .md, .json)
- YAML frontmatter parsing for markdown
- Scalar frontmatter values promoted to chunk metadata
"""
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

import structlog
import yaml

from docqa import config
from docqa.errors import EmptyDocumentError, ValidationError

logger = structlog.get_logger()

# YAML frontmatter (must be at start of file)
FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)


@dataclass
class Document:
    """Text of a source document and the metadata to attach to its chunks."""

    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def parse_frontmatter(content: str) -> Tuple[Dict[str, Any], str]:
    """Extract YAML frontmatter from markdown content.

    Args:
        content: Full markdown content

    Returns:
        Tuple of (frontmatter_dict, content_without_frontmatter)
    """
    match = FRONTMATTER_PATTERN.match(content)
    if not match:
        return {}, content

    try:
        frontmatter = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        logger.warning("frontmatter_parse_failed", error=str(e))
        return {}, content

    if not isinstance(frontmatter, dict):
        frontmatter = {}

    return frontmatter, content[match.end():]


def is_supported(path: Path) -> bool:
    return path.suffix.lower() in config.ALLOWED_EXTENSIONS


def read_document(path: Path) -> Document:
    """Read a text document from disk.

    Args:
        path: Path to a .txt, .md or .json file

    Returns:
        Document with text and source metadata

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the type is unsupported or the encoding invalid
        EmptyDocumentError: If the file has no content
    """
    path = Path(path)

    if not is_supported(path):
        raise ValidationError(
            f"Unsupported file type: {path.suffix or '(none)'}. "
            f"Allowed types: {', '.join(config.ALLOWED_EXTENSIONS)}"
        )
    if not path.exists():
        raise FileNotFoundError(f"Document not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        logger.error("document_encoding_error", path=str(path), error=str(e))
        raise ValidationError(f"File is not valid UTF-8 text: {path.name}") from e

    return parse_document(content, filename=path.name)


def parse_document(content: str, filename: str) -> Document:
    """Build a Document from raw content, parsing markdown frontmatter.

    Raises:
        EmptyDocumentError: If there is no content
    """
    metadata: Dict[str, Any] = {"filename": filename}

    if filename.lower().endswith(".md"):
        frontmatter, content = parse_frontmatter(content)
        for key, value in frontmatter.items():
            if isinstance(value, (str, int, float, bool)) and key not in metadata:
                metadata[str(key)] = value

    if not content or not content.strip():
        raise EmptyDocumentError(f"File is empty: {filename}")

    logger.debug("document_parsed", filename=filename, content_length=len(content))
    return Document(text=content, metadata=metadata)


def discover_documents(paths: List[Path]) -> List[Path]:
    """Expand files and directories into a sorted list of supported files."""
    found = []
    for path in paths:
        path = Path(path)
        if path.is_dir():
            found.extend(p for p in path.rglob("*") if p.is_file() and is_supported(p))
        else:
            found.append(path)

    files = sorted(set(found))
    logger.info("documents_discovered", count=len(files))
    return files
