"""Profile chunking for the RAG pipeline.

Turns a parsed CV into section-tagged text chunks. Two passes exist:

- ``chunk_core_sections`` covers experience, education, skills and
  achievements (the full-profile pass).
- ``chunk`` supplies supplementary coverage (identity, summary, projects,
  certifications, languages, custom sections) and drops anything whose
  identity key is already covered.

Long texts are split with character windows to avoid tokenizer dependencies.
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

import structlog

from cvportal import config
from cvportal.models import ParsedCV

logger = structlog.get_logger()


class CVSection(str, Enum):
    PERSONAL = "personal"
    SUMMARY = "summary"
    EXPERIENCE = "experience"
    EDUCATION = "education"
    SKILLS = "skills"
    ACHIEVEMENTS = "achievements"
    PROJECTS = "projects"
    CERTIFICATIONS = "certifications"
    LANGUAGES = "languages"
    CUSTOM = "custom"


class ContentType(str, Enum):
    TEXT = "text"
    SUMMARY = "summary"
    DESCRIPTION = "description"
    SKILL = "skill"
    ACHIEVEMENT = "achievement"


@dataclass
class ChunkMetadata:
    """Section tags attached to every chunk."""

    section: CVSection
    importance: int
    content_type: ContentType
    keywords: List[str] = field(default_factory=list)
    subsection: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "section": self.section.value,
            "importance": self.importance,
            "contentType": self.content_type.value,
            "keywords": list(self.keywords),
        }
        if self.subsection is not None:
            data["subsection"] = self.subsection
        data.update(self.extra)
        return data


@dataclass
class TextChunk:
    """A chunk of profile text with its section metadata."""

    content: str
    metadata: ChunkMetadata
    index: int

    @property
    def key(self) -> str:
        """Identity key used to detect content already covered by another pass."""
        return f"{self.metadata.section.value}:{self.index}"


_UNICODE_SPACES = re.compile(r"[\u00a0\u2000-\u200a\u202f\u205f\u3000]")


def preprocess_text(text: str) -> str:
    """Normalize whitespace before embedding."""
    processed = _UNICODE_SPACES.sub(" ", text.strip())
    processed = re.sub(r"\s+", " ", processed)
    return re.sub(r"\s+([,.!?;:])", r"\1", processed)


def extract_keywords(text: str, limit: int = 10) -> List[str]:
    """Simple keyword extraction: lower-cased words longer than three chars."""
    words = re.split(r"\W+", text.lower())
    return [word for word in words if len(word) > 3][:limit]


class ContentChunker:
    """Splits a parsed CV into deterministic, section-tagged chunks."""

    def __init__(self, chunk_size: int = None, chunk_overlap: int = None):
        """Initialize the chunker.

        Args:
            chunk_size: Maximum chunk size in characters (default from config)
            chunk_overlap: Overlap between split parts in characters (default from config)
        """
        self.chunk_size = chunk_size or config.CHUNK_SIZE
        self.chunk_overlap = chunk_overlap if chunk_overlap is not None else config.CHUNK_OVERLAP

        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

    # ------------------------------------------------------------------
    # Full-profile pass
    # ------------------------------------------------------------------

    def chunk_core_sections(self, profile: ParsedCV) -> List[TextChunk]:
        """Chunk experience, education, skills and achievements."""
        chunks: List[TextChunk] = []

        for index, job in enumerate(profile.experience):
            parts = [f"{job.position or 'Role'} at {job.company or 'Unknown company'}"]
            period = job.duration or " - ".join(filter(None, [job.start_date, job.end_date]))
            if period:
                parts.append(f"({period})")
            text = " ".join(parts) + "."
            if job.description:
                text += f" {job.description}"
            if job.achievements:
                text += " Achievements: " + "; ".join(job.achievements) + "."
            if job.technologies:
                text += " Technologies: " + ", ".join(job.technologies) + "."

            extra = {}
            if job.company:
                extra["company"] = job.company
            if job.technologies:
                extra["technologies"] = list(job.technologies)
            if period:
                extra["dateRange"] = period
            chunks.extend(self._build(
                text, CVSection.EXPERIENCE, index, importance=8,
                content_type=ContentType.DESCRIPTION, extra=extra,
            ))

        for index, school in enumerate(profile.education):
            text = "Education: " + ", ".join(filter(None, [
                school.degree, school.field, school.institution, school.graduation_date,
            ]))
            chunks.extend(self._build(
                text, CVSection.EDUCATION, index, importance=7,
                content_type=ContentType.DESCRIPTION,
            ))

        skills = profile.skill_list()
        if skills:
            text = "Skills: " + ", ".join(skills)
            chunks.extend(self._build(
                text, CVSection.SKILLS, 0, importance=7,
                content_type=ContentType.SKILL, keywords=[s.lower() for s in skills[:10]],
            ))

        if profile.achievements:
            text = "Achievements: " + "; ".join(profile.achievements)
            chunks.extend(self._build(
                text, CVSection.ACHIEVEMENTS, 0, importance=8,
                content_type=ContentType.ACHIEVEMENT,
            ))

        logger.info("core_sections_chunked", chunk_count=len(chunks))
        return chunks

    # ------------------------------------------------------------------
    # Supplementary pass
    # ------------------------------------------------------------------

    def chunk(
        self, profile: ParsedCV, covered_keys: Optional[Set[str]] = None
    ) -> List[TextChunk]:
        """Chunk the sections the full-profile pass does not cover.

        Args:
            profile: Parsed CV
            covered_keys: Identity keys (``section:index``) already embedded

        Returns:
            Chunks ordered by section, then by original list index
        """
        covered_keys = covered_keys or set()
        chunks: List[TextChunk] = []

        info = profile.personal_info
        if info:
            identity = " - ".join(filter(None, [info.name, info.title, info.email, info.address]))
            if identity:
                chunks.extend(self._build(
                    f"Professional: {identity}", CVSection.PERSONAL, 0, importance=10,
                    content_type=ContentType.SUMMARY,
                ))

        summary = profile.summary or (info.summary if info else None)
        if summary:
            chunks.extend(self._build(
                f"Professional Summary: {summary}", CVSection.SUMMARY, 0, importance=9,
                content_type=ContentType.SUMMARY,
            ))

        for index, project in enumerate(profile.projects):
            if not project.name:
                continue
            technologies = ", ".join(project.technologies) or "N/A"
            text = f"Project: {project.name}. {project.description or ''}. Technologies: {technologies}"
            extra = {"technologies": list(project.technologies)} if project.technologies else {}
            chunks.extend(self._build(
                text, CVSection.PROJECTS, index, importance=8,
                content_type=ContentType.DESCRIPTION,
                keywords=extract_keywords(project.description or project.name),
                extra=extra,
            ))

        for index, cert in enumerate(profile.certifications):
            if not cert.name:
                continue
            text = f"Certification: {cert.name} from {cert.issuer or 'Unknown'}"
            if cert.date:
                text += f". Issued: {cert.date}"
            chunks.extend(self._build(
                text, CVSection.CERTIFICATIONS, index, importance=7,
                content_type=ContentType.DESCRIPTION, keywords=extract_keywords(cert.name),
            ))

        languages = [lang for lang in profile.languages if lang.language]
        if languages:
            text = "Languages: " + ", ".join(
                f"{lang.language}: {lang.proficiency or 'Proficient'}" for lang in languages
            )
            chunks.extend(self._build(
                text, CVSection.LANGUAGES, 0, importance=5,
                content_type=ContentType.SKILL,
                keywords=[lang.language for lang in languages],
            ))

        for index, (name, value) in enumerate(profile.custom_sections.items()):
            body = _custom_section_text(value)
            if not body:
                continue
            chunks.extend(self._build(
                f"{name}: {body}", CVSection.CUSTOM, index, importance=6,
                content_type=ContentType.DESCRIPTION,
                keywords=extract_keywords(body), subsection=name,
            ))

        supplementary = [c for c in chunks if c.key not in covered_keys]

        logger.info(
            "supplementary_sections_chunked",
            chunk_count=len(supplementary),
            skipped_covered=len(chunks) - len(supplementary),
            sections=sorted({c.metadata.section.value for c in supplementary}),
        )
        return supplementary

    @staticmethod
    def covered_keys(chunks: Iterable[TextChunk]) -> Set[str]:
        return {chunk.key for chunk in chunks}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _build(
        self,
        text: str,
        section: CVSection,
        index: int,
        importance: int,
        content_type: ContentType,
        keywords: Optional[List[str]] = None,
        subsection: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> List[TextChunk]:
        content = preprocess_text(text)
        if not content:
            return []

        parts = self.split_text(content)
        chunks = []
        for part_index, part in enumerate(parts):
            part_extra = dict(extra or {})
            if len(parts) > 1:
                part_extra["part"] = part_index
            chunks.append(TextChunk(
                content=part,
                metadata=ChunkMetadata(
                    section=section,
                    importance=importance,
                    content_type=content_type,
                    keywords=keywords if keywords is not None else extract_keywords(part),
                    subsection=subsection,
                    extra=part_extra,
                ),
                index=index,
            ))
        return chunks

    def split_text(self, text: str) -> List[str]:
        """Split text into overlapping windows no longer than ``chunk_size``."""
        text_length = len(text)
        if text_length <= self.chunk_size:
            return [text]

        parts = []
        start = 0
        while start < text_length:
            end = min(start + self.chunk_size, text_length)
            part = text[start:end]

            # Only adjust when we're not at the end of the text
            if end < text_length:
                part = _adjust_boundary(part)
                end = start + len(part)

            parts.append(part.strip())

            if end >= text_length:
                break

            next_start = end - self.chunk_overlap
            # Prevent infinite loop if the boundary adjustment shrank the part too far
            start = next_start if next_start > start else end

        return [p for p in parts if p]


def _adjust_boundary(part: str) -> str:
    """Trim a window back to a sentence or word boundary when one is close."""
    for break_char in (". ", "! ", "? ", "; "):
        last_break = part.rfind(break_char)
        if last_break > len(part) * 0.7:
            return part[: last_break + len(break_char)]

    last_space = part.rfind(" ")
    if last_space > len(part) * 0.8:
        return part[: last_space + 1]

    return part


def _custom_section_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "; ".join(item for item in value if isinstance(item, str))
    return ""
