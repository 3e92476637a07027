"""Tolerant parser for spreadsheet-exported question CSVs.

Expected layout, one header row then one question per row::

    question,options,correctAnswer
    "What is 2+2?",3|4|5,2

``options`` is a single cell joined by ``|``; ``correctAnswer`` is the 1-based
ordinal of the right option. Cells may be quoted to embed commas and a doubled
quote escapes a literal one. Malformed rows are dropped; only a sheet with no
usable rows at all is an error.
"""

from __future__ import annotations

import re
from typing import List, Optional

from errors import ParseError
from models import Question

_LINE_SPLIT_RE = re.compile(r"\r\n|\r|\n")
# A comma is a separator only when an even number of quotes follows it on the line.
_COLUMN_SPLIT_RE = re.compile(r',(?=(?:(?:[^"]*"){2})*[^"]*$)')
# ASCII digits only: no "1_0", no other scripts' digits
_ORDINAL_RE = re.compile(r"[+-]?[0-9]+")

OPTION_SEPARATOR = "|"


def _unescape_cell(raw: str) -> str:
    cell = raw.strip()
    if cell.startswith('"'):
        cell = cell[1:]
    if cell.endswith('"'):
        cell = cell[:-1]
    return cell.replace('""', '"')


def split_columns(line: str) -> List[str]:
    return _COLUMN_SPLIT_RE.split(line)


def parse_row(line: str, question_id: int) -> Optional[Question]:
    """Return a Question for a well-formed row, or None if the row must be dropped.

    The correct-answer ordinal counts the ``|`` entries as written, blanks
    included; blank entries are then left out of the options and the
    ordinal is mapped onto what remains.
    """
    columns = split_columns(line)
    if len(columns) < 3:
        return None

    question_text, options_text, answer_text = (_unescape_cell(c) for c in columns[:3])
    if not question_text or not options_text or not answer_text:
        return None

    if not _ORDINAL_RE.fullmatch(answer_text):
        return None
    correct_answer = int(answer_text)

    written = [o.strip() for o in options_text.split(OPTION_SEPARATOR)]
    options = [o for o in written if o]
    if len(options) < 2:
        return None
    if not (1 <= correct_answer <= len(written)) or not written[correct_answer - 1]:
        return None

    return Question(
        id=question_id,
        question=question_text,
        options=tuple(options),
        correct_index=sum(1 for o in written[:correct_answer - 1] if o),
    )


def parse_questions(raw_text: str) -> List[Question]:
    """Parse a CSV body into an ordered list of questions.

    Ids are assigned 1..N over the rows that survive filtering. Raises
    ParseError when nothing survives.
    """
    lines = _LINE_SPLIT_RE.split((raw_text or "").strip())
    rows = [ln for ln in lines[1:] if ln.strip()]

    questions: List[Question] = []
    for row_no, line in enumerate(rows, start=1):
        q = parse_row(line, question_id=len(questions) + 1)
        if q is None:
            print(f"[parser] dropped malformed data row {row_no}: {line[:80]!r}", flush=True)
            continue
        questions.append(q)

    print(f"[parser] kept {len(questions)} of {len(rows)} rows", flush=True)
    if not questions:
        raise ParseError("no valid questions")
    return questions


__all__ = ["parse_questions", "parse_row", "split_columns"]
