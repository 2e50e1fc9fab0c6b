from __future__ import annotations

import json
from pathlib import Path

import pytest

from wigglepuppy.checklist import Checklist, Story, StoryStatus
from wigglepuppy.errors import ChecklistParseError, ChecklistReadError, ChecklistWriteError


def write_checklist(path: Path, stories: list[dict[str, object]]) -> Path:
    path.write_text(
        json.dumps({"name": "demo", "branchName": "feature/demo", "stories": stories}),
        encoding="utf-8",
    )
    return path


def test_load_reads_camel_case_document(tmp_path: Path) -> None:
    path = write_checklist(
        tmp_path / "prd.json",
        [
            {
                "id": "S1",
                "title": "Login",
                "priority": 2,
                "passes": True,
                "acceptance_criteria": ["user can log in"],
            },
            {"id": "S2", "title": "Logout", "depends_on": ["S1"]},
        ],
    )

    checklist = Checklist.load(path)

    assert checklist.name == "demo"
    assert checklist.branch_name == "feature/demo"
    assert [story.id for story in checklist.stories] == ["S1", "S2"]
    assert checklist.stories[0].acceptance_criteria == ["user can log in"]
    assert checklist.stories[1].passes is False
    assert checklist.completed_count() == 1
    assert checklist.is_complete() is False


def test_save_then_load_preserves_stories(tmp_path: Path) -> None:
    checklist = Checklist(
        name="demo",
        stories=[Story(id="S1", title="One", priority=1, depends_on=["S0"])],
    )
    path = tmp_path / "out.json"

    checklist.save(path)

    assert Checklist.load(path) == checklist
    assert json.loads(path.read_text(encoding="utf-8"))["branchName"] == ""


def test_empty_checklist_is_complete() -> None:
    assert Checklist(name="empty").is_complete() is True


def test_next_story_respects_dependencies_and_priority() -> None:
    checklist = Checklist(
        name="demo",
        stories=[
            Story(id="done", priority=0, passes=True),
            Story(id="blocked", priority=0, depends_on=["later"]),
            Story(id="later", priority=5),
            Story(id="soon", priority=1, depends_on=["done"]),
        ],
    )

    completed = checklist.completed_ids()

    assert completed == {"done"}
    assert checklist.stories[1].status(completed) is StoryStatus.BLOCKED
    assert checklist.stories[0].status(completed) is StoryStatus.COMPLETE
    assert checklist.next_story() is checklist.stories[3]


def test_next_story_none_when_all_pass() -> None:
    checklist = Checklist(name="demo", stories=[Story(id="a", passes=True)])

    assert checklist.next_story() is None


def test_load_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ChecklistReadError) as excinfo:
        Checklist.load(tmp_path / "missing.json")

    assert "missing.json" in str(excinfo.value)


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[]",
        json.dumps({"stories": []}),
        json.dumps({"name": "x", "stories": {}}),
        json.dumps({"name": "x", "stories": [{"title": "no id"}]}),
        json.dumps({"name": "x", "stories": [{"id": "a", "passes": "yes"}]}),
        json.dumps({"name": "x", "stories": [{"id": "a", "priority": -1}]}),
        json.dumps({"name": "x", "stories": [{"id": "a", "depends_on": "b"}]}),
    ],
)
def test_load_rejects_malformed_documents(tmp_path: Path, content: str) -> None:
    path = tmp_path / "bad.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ChecklistParseError):
        Checklist.load(path)


def test_save_into_missing_directory(tmp_path: Path) -> None:
    with pytest.raises(ChecklistWriteError):
        Checklist(name="demo").save(tmp_path / "missing" / "prd.json")


def test_load_rejects_invalid_utf8(tmp_path: Path) -> None:
    path = tmp_path / "prd.json"
    path.write_bytes(b'{"name": "\xff\xfe", "stories": []}')

    with pytest.raises(ChecklistParseError, match="not valid UTF-8"):
        Checklist.load(path)
