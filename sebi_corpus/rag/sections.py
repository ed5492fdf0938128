"""
Section extraction for SEBI circulars
Builds a chapter -> section -> sub-section forest from line-oriented text
"""

import re
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field
import structlog

logger = structlog.get_logger()

CHAPTER_PATTERN = re.compile(r"^Chapter\s+(\d+|[IVXLCDM]+)[:.\s]+(.+)", re.IGNORECASE)
SUB_SECTION_PATTERN = re.compile(r"^(\d+\.\d+\.\d+)[:.\s]+(.+)")
SECTION_PATTERN = re.compile(r"^(\d+\.\d+)[:.\s]+(.+)")


class Section(BaseModel):
    """
    A node of the section forest.

    Owns its children; content excludes nested sections.
    """

    id: str
    title: str
    level: int = Field(..., ge=1, le=3, description="1 = chapter, 2 = section, 3 = sub-section")
    content: str = ""
    children: List["Section"] = Field(default_factory=list)

    @property
    def label(self) -> str:
        """Hierarchy label, e.g. '2.3 Disclosure'"""
        return f"{self.id} {self.title}".strip()


def extract_sections(text: str) -> List[Section]:
    """
    Extract hierarchical sections from document text.

    Lines before the first structural marker are dropped. An empty list means
    the document has no recognizable structure.

    Args:
        text: Normalized document text

    Returns:
        Top-level sections with nested children
    """
    sections: List[Section] = []
    chapter: Optional[Section] = None
    section: Optional[Section] = None
    sub_section: Optional[Section] = None
    buffer: List[str] = []
    preamble_lines = 0

    def flush() -> None:
        nonlocal preamble_lines
        content = "\n".join(buffer).strip()
        buffer.clear()
        if not content:
            return

        target = sub_section or section or chapter
        if target is None:
            preamble_lines += content.count("\n") + 1
            return
        target.content = f"{target.content}\n{content}" if target.content else content

    for raw_line in text.split("\n"):
        line = raw_line.strip()

        match = CHAPTER_PATTERN.match(line)
        if match:
            flush()
            chapter = Section(id=match.group(1), title=match.group(2).strip(), level=1)
            sections.append(chapter)
            section = None
            sub_section = None
            continue

        # Most specific numbering first so "2.3.1" is never read as "2.3"
        match = SUB_SECTION_PATTERN.match(line)
        if match:
            flush()
            sub_section = Section(id=match.group(1), title=match.group(2).strip(), level=3)
            parent = section or chapter
            if parent is not None:
                parent.children.append(sub_section)
            else:
                sections.append(sub_section)
            continue

        match = SECTION_PATTERN.match(line)
        if match:
            flush()
            section = Section(id=match.group(1), title=match.group(2).strip(), level=2)
            if chapter is not None:
                chapter.children.append(section)
            else:
                sections.append(section)
            sub_section = None
            continue

        if line:
            buffer.append(line)

    flush()

    if sections and preamble_lines:
        logger.debug("sections.preamble_discarded", lines=preamble_lines)

    return sections


def flatten_sections(
    sections: List[Section],
    parent_path: Optional[List[str]] = None,
) -> List[Tuple[str, List[str]]]:
    """
    Flatten the forest into (content, hierarchy) blocks in reading order.

    Only nodes with their own content produce a block.
    """
    parent_path = parent_path or []
    blocks: List[Tuple[str, List[str]]] = []

    for node in sections:
        path = [*parent_path, node.label]
        if node.content:
            blocks.append((node.content, path))
        if node.children:
            blocks.extend(flatten_sections(node.children, path))

    return blocks
