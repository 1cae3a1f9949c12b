"""Citation parsing for model answers.

The gateway forwards answers verbatim; this parser is the contract the
presentation layer relies on when it renders ``[n]`` markers and the trailing
``References:`` list.
"""

from __future__ import annotations

import re
from typing import List

from vetintel.storage.models import FormattedAnswer, Reference

_REFERENCES_HEADING = re.compile(
    r"(?im)(?:\**\breferences\**[ \t]*:\**|^[ \t]*(?:#+[ \t]*)?\**references\**[ \t]*$)"
)
_CITATION_MARKER = re.compile(r"\[(\d{1,3}(?:\s*[,\-–]\s*\d{1,3})*)\]")
_REFERENCE_START = re.compile(r"(?:^|\s)\[?(\d{1,3})[\].]\s+")
# Ranges like [1-200] are treated as a typo rather than expanded
_MAX_RANGE = 50


def _expand_marker(inner: str) -> List[int]:
    numbers: List[int] = []
    for part in re.split(r"\s*,\s*", inner.strip()):
        bounds = re.split(r"\s*[\-–]\s*", part)
        if len(bounds) == 2:
            start, end = int(bounds[0]), int(bounds[1])
            if start <= end and end - start <= _MAX_RANGE:
                numbers.extend(range(start, end + 1))
                continue
            numbers.extend([start, end])
        else:
            numbers.append(int(bounds[0]))
    return numbers


def extract_citations(text: str) -> List[int]:
    """Distinct citation numbers in order of first appearance."""
    seen: List[int] = []
    for match in _CITATION_MARKER.finditer(text):
        for number in _expand_marker(match.group(1)):
            if number > 0 and number not in seen:
                seen.append(number)
    return seen


def split_references(text: str) -> tuple[str, str]:
    """Split ``text`` at its last ``References:`` heading."""
    matches = list(_REFERENCES_HEADING.finditer(text))
    if not matches:
        return text, ""
    last = matches[-1]
    return text[: last.start()].rstrip(), text[last.end():].strip()


def parse_references(section: str) -> List[Reference]:
    """Parse a numbered reference list, inline or one entry per line.

    Entries must be numbered in sequence starting at 1; a number that does not
    continue the sequence (e.g. a year or page inside an entry) is kept as
    part of the current entry's text.
    """
    starts = []
    expected = 1
    for match in _REFERENCE_START.finditer(section):
        if int(match.group(1)) == expected:
            starts.append(match)
            expected += 1

    references: List[Reference] = []
    for index, match in enumerate(starts):
        end = starts[index + 1].start() if index + 1 < len(starts) else len(section)
        body = " ".join(section[match.end():end].split())
        references.append(Reference(number=int(match.group(1)), text=body))
    return references


def parse_answer(text: str) -> FormattedAnswer:
    body, section = split_references(text or "")
    citations = extract_citations(body)
    references = parse_references(section) if section else []
    known = {ref.number for ref in references}
    return FormattedAnswer(
        body=body,
        citations=citations,
        references=references,
        unresolved=[number for number in citations if number not in known],
    )
