from __future__ import annotations

import asyncio
import datetime as dt
from pathlib import Path

import pytest
import yaml

from task_canvas import storage
from task_canvas.models import (
    Category,
    Position,
    Relationship,
    RelationshipType,
    StorageError,
    TaskNotFoundError,
    ValidationError,
)
from task_canvas.repository import CategoryQuery, PriorityRange, RelationshipQuery, SortSpec, TaskQuery


def _write_config(board_root: Path, content: str) -> None:
    board_root.mkdir(parents=True, exist_ok=True)
    (board_root / "config.yaml").write_text(content, encoding="utf-8")


def _stamp(minute: int) -> dt.datetime:
    return dt.datetime(2024, 3, 1, 9, minute, tzinfo=dt.timezone.utc)


def test_resolve_settings_uses_defaults_when_missing(tmp_path: Path) -> None:
    warnings: list[str] = []
    settings = storage.resolve_settings(tmp_path / ".board", warn=warnings.append)
    assert settings == {"viewport_padding": 240, "min_viewport_size": 480, "default_color": "#60a5fa"}
    assert warnings == []


def test_resolve_settings_reads_valid_values(tmp_path: Path) -> None:
    root = tmp_path / ".board"
    _write_config(
        root,
        "settings:\n  viewport_padding: 0\n  min_viewport_size: 320.5\n  default_color: '#112233'\n",
    )
    warnings: list[str] = []
    settings = storage.resolve_settings(root, warn=warnings.append)
    assert settings == {"viewport_padding": 0, "min_viewport_size": 320.5, "default_color": "#112233"}
    assert warnings == []


def test_resolve_settings_warns_and_falls_back(tmp_path: Path) -> None:
    root = tmp_path / ".board"
    _write_config(
        root,
        (
            "theme: dark\n"
            "settings:\n"
            "  viewport_padding: -5\n"
            "  min_viewport_size: true\n"
            "  default_color: blue\n"
            "  zoom: 2\n"
        ),
    )
    warnings: list[str] = []
    settings = storage.resolve_settings(root, warn=warnings.append)
    assert settings == storage.DEFAULT_SETTINGS
    assert any("Unsupported config key 'theme'" in message for message in warnings)
    assert any("Unsupported settings key 'zoom'" in message for message in warnings)
    assert any("Invalid settings.viewport_padding" in message for message in warnings)
    assert any("Invalid settings.min_viewport_size" in message for message in warnings)
    assert any("Invalid settings.default_color" in message for message in warnings)


def test_resolve_settings_handles_unparsable_file(tmp_path: Path) -> None:
    root = tmp_path / ".board"
    _write_config(root, "settings: [unclosed\n")
    warnings: list[str] = []
    assert storage.resolve_settings(root, warn=warnings.append) == storage.DEFAULT_SETTINGS
    assert len(warnings) == 1
    assert "Unable to parse config" in warnings[0]


def test_resolve_settings_rejects_non_mapping_settings(tmp_path: Path) -> None:
    root = tmp_path / ".board"
    _write_config(root, "settings:\n  - viewport_padding\n")
    warnings: list[str] = []
    assert storage.resolve_settings(root, warn=warnings.append) == storage.DEFAULT_SETTINGS
    assert warnings and "Invalid settings section" in warnings[0]


def test_write_default_config_only_once(tmp_path: Path) -> None:
    root = tmp_path / ".board"
    storage.ensure_layout(root)
    assert storage.write_default_config_if_missing(root)
    assert not storage.write_default_config_if_missing(root)
    data = yaml.safe_load((root / "config.yaml").read_text(encoding="utf-8"))
    assert data == {"settings": storage.DEFAULT_SETTINGS}
    assert (root / "tasks").is_dir()
    assert (root / "relationships").is_dir()
    assert (root / "categories").is_dir()


def test_discover_board_roots_prefers_nearest(tmp_path: Path) -> None:
    outer = tmp_path / ".board"
    inner_dir = tmp_path / "project" / "sub"
    inner = tmp_path / "project" / ".board"
    outer.mkdir()
    inner.mkdir(parents=True)
    inner_dir.mkdir(parents=True)

    root, multiple = storage.choose_board_root(inner_dir)
    assert root == inner.resolve()
    assert multiple
    assert storage.choose_board_root(tmp_path / "project" / ".board" / "..")[0] == inner.resolve()


def test_task_repository_round_trip(tmp_path: Path, make_task) -> None:
    repo = storage.YamlTaskRepository(tmp_path / ".board")
    task = make_task("t1", "Write docs", description="API guide", category="Docs", created_at=_stamp(0))
    task.move(Position(12.5, -4), _stamp(1))
    asyncio.run(repo.save(task))

    assert (tmp_path / ".board" / "tasks" / "t1.yaml").exists()
    loaded = asyncio.run(repo.find_by_id("t1"))
    assert loaded == task
    assert asyncio.run(repo.find_by_id("nope")) is None


def test_task_repository_filters_sorts_and_pages(tmp_path: Path, make_task) -> None:
    repo = storage.YamlTaskRepository(tmp_path / ".board")
    for index, (task_id, priority, status) in enumerate(
        [("t1", 1, "pending"), ("t2", 5, "completed"), ("t3", 3, "pending"), ("t4", 5, "pending")]
    ):
        asyncio.run(
            repo.save(
                make_task(
                    task_id,
                    f"Task {task_id}",
                    priority=priority,
                    status=status,
                    category="Ops" if index % 2 else None,
                    position=Position(index * 100, 0),
                    created_at=_stamp(index),
                )
            )
        )

    listed = asyncio.run(repo.list())
    assert [task.id for task in listed] == ["t1", "t2", "t3", "t4"]

    by_priority = asyncio.run(repo.list(TaskQuery(sort=SortSpec("priority", "desc"))))
    assert [task.id for task in by_priority] == ["t2", "t4", "t3", "t1"]

    pending = asyncio.run(repo.list(TaskQuery(status=("pending",), priority_range=PriorityRange(min=3))))
    assert [task.id for task in pending] == ["t3", "t4"]

    ops = asyncio.run(repo.list(TaskQuery(category="ops", search="task t4")))
    assert [task.id for task in ops] == ["t4"]

    page = asyncio.run(repo.list(TaskQuery(limit=2, offset=1)))
    assert [task.id for task in page] == ["t2", "t3"]


def test_task_repository_delete_many_is_all_or_nothing(tmp_path: Path, make_task) -> None:
    repo = storage.YamlTaskRepository(tmp_path / ".board")
    asyncio.run(repo.save(make_task("t1")))
    with pytest.raises(TaskNotFoundError):
        asyncio.run(repo.delete_many(["t1", "t2"]))
    assert asyncio.run(repo.find_by_id("t1")) is not None

    asyncio.run(repo.save(make_task("t2")))
    asyncio.run(repo.delete_many(["t1", "t2"]))
    assert asyncio.run(repo.list()) == []


def test_repository_rejects_path_like_ids(tmp_path: Path) -> None:
    repo = storage.YamlTaskRepository(tmp_path / ".board")
    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(repo.find_by_id("../escape"))
    assert exc_info.value.reason == "invalid_identifier"


def test_corrupt_record_raises_storage_error(tmp_path: Path) -> None:
    root = tmp_path / ".board"
    storage.ensure_layout(root)
    (root / "tasks" / "bad.yaml").write_text("- not\n- a mapping\n", encoding="utf-8")
    repo = storage.YamlTaskRepository(root)
    with pytest.raises(StorageError):
        asyncio.run(repo.list())


@pytest.mark.parametrize(
    "content",
    [
        "id: bad\ntitle: Half written\n",
        (
            "id: bad\ntitle: Bad stamp\nstatus: pending\npriority: 3\ncolor: '#60a5fa'\n"
            "position: {x: 0, y: 0}\ncreated_at: yesterday\nupdated_at: yesterday\n"
        ),
        (
            "id: bad\ntitle: Bad position\nstatus: pending\npriority: 3\ncolor: '#60a5fa'\n"
            "position: {x: left, y: 0}\ncreated_at: '2024-03-01T09:00:00+00:00'\n"
            "updated_at: '2024-03-01T09:00:00+00:00'\n"
        ),
        (
            "id: bad\ntitle: Bad status\nstatus: archived\npriority: 3\ncolor: '#60a5fa'\n"
            "position: {x: 0, y: 0}\ncreated_at: '2024-03-01T09:00:00+00:00'\n"
            "updated_at: '2024-03-01T09:00:00+00:00'\n"
        ),
    ],
)
def test_malformed_task_record_raises_storage_error(tmp_path: Path, content: str) -> None:
    root = tmp_path / ".board"
    storage.ensure_layout(root)
    path = root / "tasks" / "bad.yaml"
    path.write_text(content, encoding="utf-8")
    repo = storage.YamlTaskRepository(root)
    with pytest.raises(StorageError) as exc_info:
        asyncio.run(repo.list())
    assert exc_info.value.reason == "invalid_record"
    assert exc_info.value.context == {"path": str(path)}
    with pytest.raises(StorageError):
        asyncio.run(repo.find_by_id("bad"))


def test_malformed_relationship_record_raises_storage_error(tmp_path: Path) -> None:
    root = tmp_path / ".board"
    storage.ensure_layout(root)
    (root / "relationships" / "r1.yaml").write_text("id: r1\nfrom_id: a\nto_id: b\n", encoding="utf-8")
    repo = storage.YamlRelationshipRepository(root)
    with pytest.raises(StorageError):
        asyncio.run(repo.list())


def test_relationship_repository_queries(tmp_path: Path) -> None:
    repo = storage.YamlRelationshipRepository(tmp_path / ".board")
    for minute, (rel_id, source, target, rel_type) in enumerate(
        [
            ("r1", "a", "b", "depends_on"),
            ("r2", "b", "c", "blocks"),
            ("r3", "a", "c", "related_to"),
        ]
    ):
        asyncio.run(repo.save(Relationship.create(rel_id, source, target, rel_type, created_at=_stamp(minute))))

    assert [item.id for item in asyncio.run(repo.list())] == ["r3", "r2", "r1"]
    involving_b = asyncio.run(repo.list(RelationshipQuery(involving="b")))
    assert [item.id for item in involving_b] == ["r2", "r1"]
    typed = asyncio.run(repo.list(RelationshipQuery(from_id="a", type=RelationshipType.DEPENDS_ON)))
    assert [item.id for item in typed] == ["r1"]
    several = asyncio.run(
        repo.list(RelationshipQuery(type=(RelationshipType.BLOCKS, RelationshipType.RELATED_TO)))
    )
    assert [item.id for item in several] == ["r3", "r2"]

    found = asyncio.run(repo.find_between("a", "b", RelationshipType.DEPENDS_ON))
    assert found is not None and found.id == "r1"
    assert asyncio.run(repo.find_between("a", "b", RelationshipType.BLOCKS)) is None
    assert asyncio.run(repo.find_between("b", "a")) is None

    asyncio.run(repo.delete_by_task_id("c"))
    assert [item.id for item in asyncio.run(repo.list())] == ["r1"]
    asyncio.run(repo.delete("r1"))
    assert asyncio.run(repo.find_by_id("r1")) is None


def test_category_repository_queries(tmp_path: Path) -> None:
    repo = storage.YamlCategoryRepository(tmp_path / ".board")
    for minute, (category_id, name, description) in enumerate(
        [("c1", "ops", "Runbooks"), ("c2", "Design", None), ("c3", "Backend", "API work")]
    ):
        asyncio.run(
            repo.save(Category.create(category_id, name, description=description, created_at=_stamp(minute)))
        )

    assert (tmp_path / ".board" / "categories" / "c1.yaml").exists()
    assert [item.name for item in asyncio.run(repo.list())] == ["Backend", "Design", "ops"]
    assert [item.id for item in asyncio.run(repo.list(CategoryQuery(search="api")))] == ["c3"]
    assert [item.id for item in asyncio.run(repo.list(CategoryQuery(limit=1, offset=1)))] == ["c2"]

    found = asyncio.run(repo.find_by_name(" OPS "))
    assert found is not None and found.id == "c1"
    assert asyncio.run(repo.find_by_name("Frontend")) is None
    assert asyncio.run(repo.find_by_id("c2")) == asyncio.run(repo.list(CategoryQuery(search="design")))[0]

    asyncio.run(repo.delete("c2"))
    assert asyncio.run(repo.find_by_id("c2")) is None
