"""Turn a markdown spec into a ``SpecPlan``.

The epic title comes from the first non-structural level-1 heading (or the
file name). Phases are ``Phase ...`` headings; milestones are ``Milestone ...``
headings or checklist bullets such as ``- [ ] **Milestone 1.1: ...**``.
Acceptance criteria are the bullets following a "Success Criteria" line in a
milestone's body.

Parsing is pure: the same text always yields an equal plan, which resume
relies on to reconcile checkpoints.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from .models import MilestonePlan, PhasePlan, SpecPlan, UNSORTED_PHASE_TITLE

STRUCTURAL_SPEC_HEADINGS = frozenset(
    {
        "abstract",
        "rationale",
        "specification",
        "further information",
        "implementation plan",
        "testing plan",
        "documentation plan",
    }
)

FALLBACK_EPIC_TITLE = "Spec Epic"

_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*$")
_ORDINAL_PREFIX = r"(?:\d+|[ivxlcdm]+)\s*[.)]\s*"
_PHASE_ORDINAL = re.compile(rf"^{_ORDINAL_PREFIX}")
_PHASE_ACCEPTANCE = re.compile(r"^phase\s+\d+\s+acceptance criteria\b", re.IGNORECASE)
_MILESTONE_HEADING = re.compile(rf"^(?:{_ORDINAL_PREFIX})?milestone\b", re.IGNORECASE)
_BULLET = re.compile(r"^[-*]\s+")
_CHECKBOX = re.compile(r"^\[[ xX]\]\s*")
_CHECKBOX_BULLET = re.compile(r"^[-*]\s+\[[ xX]\]\s*")
_BOLD_OPEN = re.compile(r"^(?:\*\*|__)\s*")
_BOLD_CLOSE = re.compile(r"\s*(?:\*\*|__)\s*$")
_BOLD_LINE = re.compile(r"^\*\*.+\*\*$")
_MARKUP = re.compile(r"[`*_]")
_MILESTONE_BULLET = re.compile(r"^(?:m\d+\b|milestone\b)", re.IGNORECASE)
_SUCCESS_CRITERIA = re.compile(r"success criteria", re.IGNORECASE)


def parse_heading(line: str) -> Optional[Tuple[int, str]]:
    """Return ``(level, title)`` for an ATX heading line."""
    match = _HEADING.match(line.strip())
    if not match:
        return None
    title = match.group(2).strip()
    if not title:
        return None
    return len(match.group(1)), title


def normalize_heading(title: str) -> str:
    normalized = _MARKUP.sub("", title.lower())
    normalized = re.sub(r"[:：]", "", normalized)
    return re.sub(r"\s+", " ", normalized).strip()


def is_structural_heading(title: str) -> bool:
    return normalize_heading(title) in STRUCTURAL_SPEC_HEADINGS


def is_phase_heading(title: str) -> bool:
    """``Phase ...`` headings, excluding navigation and acceptance sections."""
    normalized = _PHASE_ORDINAL.sub("", normalize_heading(title))
    if not normalized.startswith("phase"):
        return False
    if normalized.startswith("phase and milestone"):
        return False
    if _PHASE_ACCEPTANCE.match(normalized):
        return False
    return True


def is_milestone_heading(title: str) -> bool:
    return bool(_MILESTONE_HEADING.match(title.strip()))


def parse_milestone_bullet(line: str) -> Optional[str]:
    """Milestone title from a checklist bullet, with markup stripped."""
    trimmed = line.strip()
    if not _BULLET.match(trimmed):
        return None

    body = _BULLET.sub("", trimmed, count=1)
    body = _CHECKBOX.sub("", body, count=1)
    body = _BOLD_OPEN.sub("", body, count=1)
    body = _BOLD_CLOSE.sub("", body, count=1)
    body = _MARKUP.sub("", body).strip()
    if not body:
        return None

    if _MILESTONE_BULLET.match(body):
        return body
    return None


def extract_acceptance_criteria(body: Sequence[str]) -> Optional[str]:
    """Bullets after the first "Success Criteria" line, as ``- item`` lines."""
    lines = [line.strip() for line in body]
    marker_index = next(
        (index for index, line in enumerate(lines) if _SUCCESS_CRITERIA.search(line)),
        None,
    )
    if marker_index is None:
        return None

    criteria: List[str] = []
    for line in lines[marker_index + 1:]:
        if line == "":
            if criteria:
                break
            continue
        if criteria and _BOLD_LINE.match(line):
            break
        if _BULLET.match(line):
            item = _CHECKBOX_BULLET.sub("- ", line, count=1)
            criteria.append(_BULLET.sub("- ", item, count=1))
        elif criteria:
            break

    return "\n".join(criteria) if criteria else None


def derive_fallback_epic_title(spec_path: Union[str, Path]) -> str:
    """Title-case the file stem: ``rxdb-e2ee.md`` becomes ``Rxdb E2ee``."""
    stem = Path(spec_path).stem
    parts = [part for part in re.split(r"[-_]+", stem) if part]
    title = " ".join(part[:1].upper() + part[1:] for part in parts)
    return title or FALLBACK_EPIC_TITLE


@dataclass
class _MilestoneDraft:
    title: str
    body: List[str] = field(default_factory=list)

    def build(self) -> MilestonePlan:
        return MilestonePlan(title=self.title, acceptance=extract_acceptance_criteria(self.body))


@dataclass
class _PhaseDraft:
    title: str
    milestones: List[_MilestoneDraft] = field(default_factory=list)

    def build(self) -> PhasePlan:
        return PhasePlan(title=self.title, milestones=tuple(m.build() for m in self.milestones))


def parse_spec_text(text: str, spec_path: Union[str, Path]) -> SpecPlan:
    """Parse spec markdown; ``spec_path`` names the document in the plan.

    Headings at level 1 or 2 close the open milestone body. A phase heading
    closes it at any level, so a ``### Phase`` heading never leaks its
    Success Criteria into the previous phase's last milestone.
    """
    epic_title = derive_fallback_epic_title(spec_path)
    epic_title_from_heading = False
    phases: List[_PhaseDraft] = []
    current_phase: Optional[_PhaseDraft] = None
    current_milestone: Optional[_MilestoneDraft] = None

    def start_milestone(title: str) -> _MilestoneDraft:
        nonlocal current_phase
        if current_phase is None:
            current_phase = _PhaseDraft(title=UNSORTED_PHASE_TITLE)
            phases.append(current_phase)
        draft = _MilestoneDraft(title=title)
        current_phase.milestones.append(draft)
        return draft

    for line in text.splitlines():
        heading = parse_heading(line)
        if heading:
            level, title = heading
            if level == 1 and not epic_title_from_heading and not is_structural_heading(title):
                epic_title = title
                epic_title_from_heading = True

            if level <= 2:
                current_milestone = None

            if is_phase_heading(title):
                current_phase = _PhaseDraft(title=title)
                phases.append(current_phase)
                current_milestone = None
                continue

            if is_milestone_heading(title):
                current_milestone = start_milestone(title)
                continue

        bullet_title = parse_milestone_bullet(line)
        if bullet_title:
            current_milestone = start_milestone(bullet_title)
            continue

        if current_milestone is not None:
            current_milestone.body.append(line)

    return SpecPlan(
        spec_path=str(spec_path),
        epic_title=epic_title,
        phases=tuple(phase.build() for phase in phases),
    )


def parse_spec_file(spec_path: Union[str, Path]) -> SpecPlan:
    """Read the spec once and parse it."""
    path = Path(spec_path)
    return parse_spec_text(path.read_text(encoding="utf-8"), str(path))
