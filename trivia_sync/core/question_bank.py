"""Loading the static question bank from JSON or a human-friendly text file.

JSON format: a list of objects with ``id``, ``prompt``, ``options`` (A-D),
``correctOption`` and ``explanation``. Banks written for the first release
use ``pergunta``, ``alternativas``, ``correta`` and ``explicacao`` and are
accepted as well.

Text format (blocks separated by blank lines or '---'):

    ID: fire-01
    Q: Which extinguisher class covers electrical fires?
    A: Class A
    B: Class B
    C: Class C
    D: Class K
    CORRECT: C
    EXPLANATION: Class C agents do not conduct electricity.

Lines without a marker continue the previous section.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
from typing import Any, Callable, Sequence

from trivia_sync.constants.quiz_constants import OPTION_LETTERS
from trivia_sync.core.models import Question

_DEFAULT_BANK_PATH = Path(__file__).resolve().parent.parent / "data" / "questions.json"

QuestionSource = Callable[[], Sequence[Question]]
_MARKERS = ("ID", "Q", "CORRECT", "EXPLANATION", *OPTION_LETTERS)


class QuestionBankError(Exception):
    """Raised when a question bank cannot be parsed."""


@dataclass(slots=True)
class QuestionBank:
    """Question bank read from disk on every ``load`` call."""

    source_path: Path = _DEFAULT_BANK_PATH

    def __call__(self) -> list[Question]:
        return self.load()

    def load(self) -> list[Question]:
        return load_questions_from_file(self.source_path)


def load_questions_from_file(file_path: Path) -> list[Question]:
    text = file_path.read_text(encoding="utf-8")
    if file_path.suffix.lower() == ".json":
        questions = parse_questions_json(text)
    else:
        questions = parse_questions_text(text)
    if not questions:
        raise QuestionBankError(f"Question bank {file_path} did not contain any questions.")
    _ensure_unique_ids(questions)
    return questions


def parse_questions_json(text: str) -> list[Question]:
    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise QuestionBankError(f"Question bank is not valid JSON: {exc}") from exc
    if isinstance(payload, dict):
        payload = payload.get("questions", [])
    if not isinstance(payload, list):
        raise QuestionBankError("Question bank must be a list of questions.")
    return [_question_from_mapping(entry, position) for position, entry in enumerate(payload, start=1)]


def _question_from_mapping(entry: Any, position: int) -> Question:
    if not isinstance(entry, dict):
        raise QuestionBankError(f"Question #{position} must be an object.")
    question_id = entry.get("id")
    prompt = entry.get("prompt", entry.get("pergunta"))
    options = entry.get("options", entry.get("alternativas"))
    correct = entry.get("correctOption", entry.get("correta"))
    explanation = entry.get("explanation", entry.get("explicacao", ""))
    if question_id is None or str(question_id).strip() == "":
        raise QuestionBankError(f"Question #{position} is missing an id.")
    if not isinstance(options, dict):
        raise QuestionBankError(f"Question {question_id} must define options A-D as an object.")
    return _build_question(
        str(question_id).strip(),
        str(prompt or ""),
        {str(k).upper(): str(v) for k, v in options.items()},
        str(correct or "").strip().upper(),
        str(explanation or ""),
    )


def parse_questions_text(text: str) -> list[Question]:
    blocks: list[str] = []
    current_block: list[str] = []
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if stripped == "---":
            if current_block:
                blocks.append("\n".join(current_block).strip())
                current_block = []
            continue
        if stripped:
            current_block.append(raw_line)
        elif current_block:
            blocks.append("\n".join(current_block).strip())
            current_block = []
    if current_block:
        blocks.append("\n".join(current_block).strip())

    return [_parse_block(block, position) for position, block in enumerate(blocks, start=1) if block]


def _parse_block(block: str, position: int) -> Question:
    sections: dict[str, list[str]] = {}
    current_section: str | None = None

    for raw_line in block.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        marker, separator, rest = line.partition(":")
        marker = marker.strip().upper()
        if separator and marker in _MARKERS:
            current_section = marker
            sections[marker] = [rest.strip()]
            continue
        if current_section is None:
            raise QuestionBankError(f"Encountered text outside of a known section: '{line}'.")
        sections[current_section].append(line)

    def joined(name: str) -> str:
        return "\n".join(sections.get(name, [])).strip()

    question_id = joined("ID") or f"q{position}"
    options = {letter: joined(letter) for letter in OPTION_LETTERS if letter in sections}
    return _build_question(question_id, joined("Q"), options, joined("CORRECT").upper(), joined("EXPLANATION"))


def _build_question(
    question_id: str,
    prompt: str,
    options: dict[str, str],
    correct_option: str,
    explanation: str,
) -> Question:
    prompt = prompt.strip()
    if not prompt:
        raise QuestionBankError(f"Question {question_id} has no prompt.")
    if set(options) != set(OPTION_LETTERS):
        raise QuestionBankError(f"Question {question_id} must define exactly four options (A-D).")
    cleaned = {letter: options[letter].strip() for letter in OPTION_LETTERS}
    if any(not text for text in cleaned.values()):
        raise QuestionBankError(f"Question {question_id} has an empty option.")
    if correct_option not in OPTION_LETTERS:
        raise QuestionBankError(f"Question {question_id}: correct option must be one of A, B, C, or D.")
    return Question(
        id=question_id,
        prompt=prompt,
        options=cleaned,
        correct_option=correct_option,
        explanation=explanation.strip(),
    )


def _ensure_unique_ids(questions: list[Question]) -> None:
    seen: set[str] = set()
    for question in questions:
        if question.id in seen:
            raise QuestionBankError(f"Duplicate question id '{question.id}'.")
        seen.add(question.id)
