"""Checklist documents: the JSON list of stories an agent works through."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ChecklistParseError, ChecklistReadError, ChecklistWriteError


class StoryStatus(enum.Enum):
    COMPLETE = "complete"
    PENDING = "pending"
    BLOCKED = "blocked"
    # Reserved; nothing assigns it yet.
    IN_PROGRESS = "in_progress"


@dataclass(slots=True)
class Story:
    """A single story; lower ``priority`` numbers are more urgent."""

    id: str
    title: str = ""
    description: str = ""
    priority: int = 0
    passes: bool = False
    acceptance_criteria: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)

    def status(self, completed_ids: set[str]) -> StoryStatus:
        if self.passes:
            return StoryStatus.COMPLETE
        if all(dependency in completed_ids for dependency in self.depends_on):
            return StoryStatus.PENDING
        return StoryStatus.BLOCKED

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "passes": self.passes,
            "acceptance_criteria": list(self.acceptance_criteria),
            "depends_on": list(self.depends_on),
        }


@dataclass(slots=True)
class Checklist:
    name: str
    branch_name: str = ""
    description: str = ""
    stories: list[Story] = field(default_factory=list)

    @classmethod
    def load(cls, path: str | Path) -> Checklist:
        """Load a checklist from a JSON file.

        Raises ``ChecklistReadError`` when the file cannot be read and
        ``ChecklistParseError`` when it is not a valid checklist document.
        """
        source = Path(path)
        try:
            content = source.read_text(encoding="utf-8")
        except OSError as exc:
            raise ChecklistReadError(source, exc) from exc
        except UnicodeDecodeError as exc:
            raise ChecklistParseError(source, f"not valid UTF-8: {exc}") from exc
        try:
            raw = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ChecklistParseError(source, str(exc)) from exc
        return cls.from_dict(raw, source=source)

    @classmethod
    def from_dict(cls, raw: object, *, source: str | Path = "<memory>") -> Checklist:
        if not isinstance(raw, dict):
            raise ChecklistParseError(source, "expected a top-level object")
        name = raw.get("name")
        if not isinstance(name, str):
            raise ChecklistParseError(source, "missing string field 'name'")
        stories_raw = raw.get("stories", [])
        if not isinstance(stories_raw, list):
            raise ChecklistParseError(source, "'stories' must be a list")
        return cls(
            name=name,
            branch_name=_optional_str(raw.get("branchName")),
            description=_optional_str(raw.get("description")),
            stories=[_parse_story(item, index, source) for index, item in enumerate(stories_raw)],
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "branchName": self.branch_name,
            "description": self.description,
            "stories": [story.to_dict() for story in self.stories],
        }

    def save(self, path: str | Path) -> None:
        target = Path(path)
        try:
            target.write_text(json.dumps(self.to_dict(), indent=2) + "\n", encoding="utf-8")
        except OSError as exc:
            raise ChecklistWriteError(target, exc) from exc

    def is_complete(self) -> bool:
        """True when every story passes (an empty checklist is complete)."""
        return all(story.passes for story in self.stories)

    def completed_count(self) -> int:
        return sum(1 for story in self.stories if story.passes)

    def completed_ids(self) -> set[str]:
        return {story.id for story in self.stories if story.passes}

    def next_story(self) -> Story | None:
        """Most urgent incomplete story whose dependencies all pass."""
        completed = self.completed_ids()
        ready = [
            story
            for story in self.stories
            if story.status(completed) is StoryStatus.PENDING
        ]
        if not ready:
            return None
        return min(ready, key=lambda story: story.priority)


def _optional_str(value: object) -> str:
    return value if isinstance(value, str) else ""


def _str_list(value: object, *, field_name: str, source: str | Path) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ChecklistParseError(source, f"'{field_name}' must be a list of strings")
    return list(value)


def _parse_story(raw: object, index: int, source: str | Path) -> Story:
    if not isinstance(raw, dict):
        raise ChecklistParseError(source, f"story #{index} must be an object")
    story_id = raw.get("id")
    if not isinstance(story_id, str) or not story_id:
        raise ChecklistParseError(source, f"story #{index} is missing a string 'id'")
    passes = raw.get("passes", False)
    if not isinstance(passes, bool):
        raise ChecklistParseError(source, f"story '{story_id}' has a non-boolean 'passes'")
    priority = raw.get("priority", 0)
    if isinstance(priority, bool) or not isinstance(priority, int) or priority < 0:
        raise ChecklistParseError(
            source, f"story '{story_id}' priority must be a non-negative integer"
        )
    return Story(
        id=story_id,
        title=_optional_str(raw.get("title")),
        description=_optional_str(raw.get("description")),
        priority=priority,
        passes=passes,
        acceptance_criteria=_str_list(
            raw.get("acceptance_criteria"), field_name="acceptance_criteria", source=source
        ),
        depends_on=_str_list(raw.get("depends_on"), field_name="depends_on", source=source),
    )
