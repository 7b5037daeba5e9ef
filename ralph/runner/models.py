"""
Data models for run state.
"""

from dataclasses import dataclass, field


@dataclass
class Story:
    """One unit of work from prd.json.

    The file hints are advisory: they are read by the agents, never by the
    orchestrator. `passes` only ever moves from False to True.
    """
    id: str                                    # US-001
    title: str
    description: str = ""
    acceptance_criteria: list[str] = field(default_factory=list)
    files_to_modify: list[str] = field(default_factory=list)
    files_to_study: list[str] = field(default_factory=list)
    test_files: list[str] = field(default_factory=list)
    priority: int = 0                          # lower = sooner
    passes: bool = False
    notes: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Story":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            acceptance_criteria=list(data.get("acceptanceCriteria", [])),
            files_to_modify=list(data.get("filesToModify", [])),
            files_to_study=list(data.get("filesToStudy", [])),
            test_files=list(data.get("testFiles", [])),
            priority=data.get("priority", 0),
            passes=data.get("passes") is True,
            notes=data.get("notes", ""),
        )


@dataclass
class RunInfo:
    """Summary of a run directory, as shown by `ralph list`."""
    name: str
    directory: str
    branch_name: str
    total: int
    remaining: int
    error: str | None = None
