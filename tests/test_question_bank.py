import json

import pytest

from trivia_sync.core.identity import FileIdentityProvider, StaticIdentityProvider
from trivia_sync.core.question_bank import (
    QuestionBank,
    QuestionBankError,
    load_questions_from_file,
    parse_questions_json,
    parse_questions_text,
)

TEXT_BANK = """
ID: fire-01
Q: Which extinguisher class covers electrical fires?
A: Class A
B: Class B
C: Class C
D: Class K
CORRECT: c
EXPLANATION: Class C agents do not conduct electricity.
---
Q: Where is the assembly point?
on the east side?
A: Parking lot
B: Lobby
C: Roof
D: Basement
CORRECT: A
"""


def test_bundled_bank_loads():
    questions = QuestionBank()()
    assert len(questions) >= 10
    assert len({q.id for q in questions}) == len(questions)
    assert all(q.explanation for q in questions)


def test_parse_text_blocks():
    questions = parse_questions_text(TEXT_BANK)
    assert [q.id for q in questions] == ["fire-01", "q2"]
    assert questions[0].correct_option == "C"
    assert questions[1].prompt == "Where is the assembly point?\non the east side?"
    assert questions[1].explanation == ""


def test_parse_json_with_legacy_keys():
    payload = {
        "questions": [
            {
                "id": 7,
                "pergunta": "Qual extintor?",
                "alternativas": {"a": "1", "b": "2", "c": "3", "d": "4"},
                "correta": "b",
                "explicacao": "Porque sim.",
            }
        ]
    }
    question = parse_questions_json(json.dumps(payload))[0]
    assert question.id == "7"
    assert question.options["B"] == "2"
    assert question.correct_option == "B"
    assert question.explanation == "Porque sim."


@pytest.mark.parametrize(
    "entry",
    [
        {"id": "x", "prompt": "Q?", "options": {"A": "1", "B": "2", "C": "3"}, "correctOption": "A"},
        {"id": "x", "prompt": "Q?", "options": {"A": "1", "B": "2", "C": "3", "D": "4"}, "correctOption": "E"},
        {"id": "x", "prompt": " ", "options": {"A": "1", "B": "2", "C": "3", "D": "4"}, "correctOption": "A"},
        {"prompt": "Q?", "options": {"A": "1", "B": "2", "C": "3", "D": "4"}, "correctOption": "A"},
    ],
)
def test_invalid_json_questions(entry):
    with pytest.raises(QuestionBankError):
        parse_questions_json(json.dumps([entry]))


def test_duplicate_ids_are_rejected(tmp_path):
    path = tmp_path / "bank.txt"
    path.write_text(TEXT_BANK.replace("Q: Where", "ID: fire-01\nQ: Where"), encoding="utf-8")
    with pytest.raises(QuestionBankError):
        load_questions_from_file(path)


def test_text_outside_sections_is_rejected():
    with pytest.raises(QuestionBankError):
        parse_questions_text("just some words\nA: 1")


def test_file_identity_is_stable(tmp_path):
    path = tmp_path / "identity.json"
    first = FileIdentityProvider(path).current_identity()
    assert FileIdentityProvider(path).current_identity() == first
    assert json.loads(path.read_text(encoding="utf-8")) == {"playerId": first}
    assert StaticIdentityProvider("abc").current_identity() == "abc"
