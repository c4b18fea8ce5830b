import pytest

from index import OrderedIndex

SAMPLE = (
    "[what]\n"
    "ICT1001=Introduction to ICT.\n"
    "ICT1002=Programming Fundamentals.\n"
    "\n"
    "[where]\n"
    "SIT=Dover Drive.\n"
    "\n"
    "[who]\n"
    "Frank Guan=Frank teaches the C section of ICT1002.\n"
)


@pytest.fixture(autouse=True)
def validate_after_write(monkeypatch):
    """Check BST invariants after every write in every test."""
    monkeypatch.setattr(OrderedIndex, "_ENABLE_VALIDATE_AFTER_WRITE", True)


@pytest.fixture
def kb_file(tmp_path):
    path = tmp_path / "kb.ini"
    path.write_text(SAMPLE, encoding="utf-8")
    return path


class Replies:
    """Scripted confirm() callback that records every prompt."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.prompts = []

    def __call__(self, prompt):
        self.prompts.append(prompt)
        return self.answers.pop(0) if self.answers else ""


@pytest.fixture
def replies():
    return Replies
