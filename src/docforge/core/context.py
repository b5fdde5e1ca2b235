# src/docforge/core/context.py
"""Project context and per-processor context slices.

The project context is a Markdown document split into sections at level-two
("## ") headings. Each processor sees a slice: the project sections plus one
section per artifact produced by its direct dependencies. Sections are
tagged with a priority according to the processor's category, which the
fallback chain uses to decide what can be discarded.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from docforge.contracts.enums import SectionPriority
from docforge.contracts.models import ContextSection, ProcessorDescriptor
from docforge.core.canonical import text_hash

_SECTION_SEPARATOR = "\n\n"


def _is_section_heading(line: str) -> bool:
    return line.startswith("## ")


def classify_section(section: ContextSection, patterns: Mapping[str, Sequence[str]]) -> SectionPriority:
    """Tag a section from heading patterns.

    A section is REQUIRED when its heading, or any sub-heading inside it,
    contains a "required" pattern. Otherwise it is LOW when its heading
    contains a "low" pattern, and NORMAL if nothing matches.
    """
    headings = [section.heading, *(line.strip() for line in section.body.splitlines() if line.lstrip().startswith("#"))]
    required = patterns.get("required", ())
    if any(pattern in heading for heading in headings for pattern in required):
        return SectionPriority.REQUIRED
    if any(pattern in section.heading for pattern in patterns.get("low", ())):
        return SectionPriority.LOW
    return SectionPriority.NORMAL


@dataclass(frozen=True, slots=True)
class ContextSlice:
    """The context a single processor will be given, as ordered sections."""

    sections: tuple[ContextSection, ...] = ()

    @property
    def text(self) -> str:
        return _SECTION_SEPARATOR.join(s.text for s in self.sections if s.text)

    def without(self, dropped: Iterable[int]) -> ContextSlice:
        skip = set(dropped)
        return ContextSlice(tuple(s for i, s in enumerate(self.sections) if i not in skip))

    def replace(self, index: int, section: ContextSection) -> ContextSlice:
        sections = list(self.sections)
        sections[index] = section
        return ContextSlice(tuple(sections))

    def count(self, priority: SectionPriority) -> int:
        return sum(1 for s in self.sections if s.priority == priority)


class ProjectContext:
    """Sectioned project context shared by every processor of a run.

    Immutable after construction; slices are built per processor.
    """

    def __init__(self, sections: Sequence[tuple[str, str]] = ()) -> None:
        self._sections = tuple(sections)

    @classmethod
    def from_markdown(cls, text: str) -> ProjectContext:
        """Split Markdown at "## " headings.

        Text before the first heading becomes a preamble section with an
        empty heading. Blank leading/trailing lines of each body are dropped.
        """
        sections: list[tuple[str, str]] = []
        heading = ""
        body: list[str] = []

        def flush() -> None:
            content = "\n".join(body).strip("\n")
            if heading or content.strip():
                sections.append((heading, content))

        for line in text.splitlines():
            if _is_section_heading(line):
                flush()
                heading = line.rstrip()
                body = []
            else:
                body.append(line)
        flush()
        return cls(sections)

    @classmethod
    def empty(cls) -> ProjectContext:
        return cls(())

    @property
    def headings(self) -> list[str]:
        return [heading for heading, _ in self._sections]

    def __len__(self) -> int:
        return len(self._sections)

    @property
    def fingerprint(self) -> str:
        """Hash of the whole context, for logging and run metadata."""
        return text_hash(_SECTION_SEPARATOR.join(f"{h}\n{b}" for h, b in self._sections))

    def slice_for(
        self,
        descriptor: ProcessorDescriptor,
        artifacts: Mapping[str, str],
        patterns: Mapping[str, Sequence[str]],
        titles: Mapping[str, str] | None = None,
    ) -> ContextSlice:
        """Build the context slice for one processor.

        Args:
            descriptor: Processor the slice is for
            artifacts: Artifacts produced so far, by processor key
            patterns: Priority heading patterns for the processor's category
            titles: Display names of dependencies, by key

        Returns:
            Project sections followed by dependency artifacts in key order.
            Dependencies without an artifact are omitted.
        """
        sections = []
        for heading, body in self._sections:
            section = ContextSection(heading=heading, body=body)
            sections.append(ContextSection(heading, body, classify_section(section, patterns)))
        for dependency in sorted(descriptor.dependencies):
            if dependency not in artifacts:
                continue
            title = (titles or {}).get(dependency) or dependency
            sections.append(ContextSection(heading=f"## {title}", body=artifacts[dependency].strip("\n")))
        return ContextSlice(tuple(sections))
