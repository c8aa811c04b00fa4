from __future__ import annotations

import asyncio

import pytest

from task_canvas.models import (
    Relationship,
    RelationshipNotFoundError,
    RelationshipType,
    Task,
    TaskNotFoundError,
    ValidationError,
)
from task_canvas.repository import RelationshipQuery


def _seed_tasks(task_repo, *ids: str) -> None:
    for task_id in ids:
        task_repo.items[task_id] = Task.create(task_id, task_id.title())


def _seed_relationship(relationship_repo, rel_id: str, from_id: str, to_id: str, rel_type: str) -> None:
    relationship_repo.items[rel_id] = Relationship.create(rel_id, from_id, to_id, rel_type)


def test_create_relationship_defaults_to_depends_on(links, task_repo, relationship_repo) -> None:
    _seed_tasks(task_repo, "a", "b")
    relationship = asyncio.run(links.create_relationship(" a ", "b", description="  needs api  "))
    assert relationship.id == "rel-1"
    assert relationship.from_id == "a"
    assert relationship.type is RelationshipType.DEPENDS_ON
    assert relationship.description == "needs api"
    assert relationship_repo.saved == ["rel-1"]


@pytest.mark.parametrize("rel_type", [member.value for member in RelationshipType])
def test_create_rejects_self_loop_for_every_type(links, task_repo, relationship_repo, rel_type: str) -> None:
    _seed_tasks(task_repo, "a")
    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(links.create_relationship("a", " a", rel_type))
    assert exc_info.value.reason == "self_loop"
    assert "self-referencing" in str(exc_info.value)
    assert relationship_repo.saved == []


def test_create_rejects_unknown_type(links, task_repo) -> None:
    _seed_tasks(task_repo, "a", "b")
    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(links.create_relationship("a", "b", "sibling_of"))
    assert exc_info.value.reason == "invalid_type"


def test_create_reports_every_missing_endpoint(links, relationship_repo) -> None:
    with pytest.raises(TaskNotFoundError) as exc_info:
        asyncio.run(links.create_relationship("a", "b"))
    assert exc_info.value.ids == ["a", "b"]
    assert str(exc_info.value) == "Todos not found: a, b"
    assert relationship_repo.saved == []


def test_create_rejects_duplicate_triple_but_allows_other_type(links, task_repo, relationship_repo) -> None:
    _seed_tasks(task_repo, "a", "b")
    asyncio.run(links.create_relationship("a", "b", "depends_on"))
    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(links.create_relationship("a", "b", "depends_on"))
    assert exc_info.value.reason == "duplicate"
    assert exc_info.value.context["relationship_id"] == "rel-1"

    related = asyncio.run(links.create_relationship("a", "b", "related_to"))
    assert related.type is RelationshipType.RELATED_TO
    assert len(relationship_repo.items) == 2


@pytest.mark.parametrize("rel_type", ["depends_on", "blocks"])
def test_create_rejects_edge_closing_a_cycle(links, task_repo, relationship_repo, rel_type: str) -> None:
    _seed_tasks(task_repo, "a", "b", "c")
    asyncio.run(links.create_relationship("a", "b", rel_type))
    asyncio.run(links.create_relationship("b", "c", rel_type))

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(links.create_relationship("c", "a", rel_type))
    assert exc_info.value.reason == "cycle"
    assert exc_info.value.context["path"] == ["c", "a", "b", "c"]
    assert len(relationship_repo.items) == 2


def test_related_to_may_close_a_loop(links, task_repo) -> None:
    _seed_tasks(task_repo, "a", "b", "c")
    asyncio.run(links.create_relationship("a", "b", "depends_on"))
    asyncio.run(links.create_relationship("b", "c", "depends_on"))
    relationship = asyncio.run(links.create_relationship("c", "a", "related_to"))
    assert relationship.type is RelationshipType.RELATED_TO


def test_cycle_check_follows_only_the_same_type(links, task_repo) -> None:
    _seed_tasks(task_repo, "a", "b", "c")
    asyncio.run(links.create_relationship("a", "b", "depends_on"))
    asyncio.run(links.create_relationship("b", "c", "blocks"))
    relationship = asyncio.run(links.create_relationship("c", "a", "depends_on"))
    assert relationship.from_id == "c"


def test_cycle_check_terminates_on_stored_cycle(links, task_repo, relationship_repo) -> None:
    _seed_tasks(task_repo, "a", "b", "c")
    _seed_relationship(relationship_repo, "old-1", "a", "b", "depends_on")
    _seed_relationship(relationship_repo, "old-2", "b", "a", "depends_on")
    relationship = asyncio.run(links.create_relationship("c", "a", "depends_on"))
    assert relationship.to_id == "a"


def test_update_retype_rejects_cycle_and_keeps_stored_type(links, task_repo, relationship_repo) -> None:
    _seed_tasks(task_repo, "a", "b", "c")
    asyncio.run(links.create_relationship("a", "b"))
    asyncio.run(links.create_relationship("b", "c"))
    loose = asyncio.run(links.create_relationship("c", "a", "related_to"))

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(links.update_relationship(loose.id, type="depends_on"))
    assert exc_info.value.reason == "cycle"
    assert relationship_repo.items[loose.id].type is RelationshipType.RELATED_TO


def test_update_retype_rejects_duplicate(links, task_repo) -> None:
    _seed_tasks(task_repo, "a", "b")
    asyncio.run(links.create_relationship("a", "b", "depends_on"))
    related = asyncio.run(links.create_relationship("a", "b", "related_to"))
    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(links.update_relationship(related.id, type="depends_on"))
    assert exc_info.value.reason == "duplicate"


def test_update_changes_type_and_clears_description(links, task_repo, relationship_repo) -> None:
    _seed_tasks(task_repo, "a", "b")
    created = asyncio.run(links.create_relationship("a", "b", "related_to", "context"))
    updated = asyncio.run(links.update_relationship(created.id, type="blocks", description=""))
    assert updated.type is RelationshipType.BLOCKS
    assert updated.description is None
    assert updated.updated_at > created.updated_at
    assert relationship_repo.items[created.id].type is RelationshipType.BLOCKS


def test_update_without_effective_change_does_not_write(links, task_repo, relationship_repo) -> None:
    _seed_tasks(task_repo, "a", "b")
    created = asyncio.run(links.create_relationship("a", "b", "blocks", "same"))
    relationship_repo.saved.clear()

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(links.update_relationship(created.id, type="blocks", description=" same "))
    assert exc_info.value.reason == "no_change"
    assert relationship_repo.saved == []


def test_update_requires_a_property(links) -> None:
    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(links.update_relationship("rel-1"))
    assert exc_info.value.reason == "empty_update"


def test_update_unknown_relationship(links) -> None:
    with pytest.raises(RelationshipNotFoundError) as exc_info:
        asyncio.run(links.update_relationship("nope", type="blocks"))
    assert exc_info.value.ids == ["nope"]


def test_delete_batch_is_all_or_nothing(links, task_repo, relationship_repo) -> None:
    _seed_tasks(task_repo, "a", "b")
    _seed_relationship(relationship_repo, "todo-1", "a", "b", "depends_on")

    with pytest.raises(RelationshipNotFoundError) as exc_info:
        asyncio.run(links.delete_relationships(["todo-1", "todo-2"]))
    assert exc_info.value.ids == ["todo-2"]
    assert "todo-2" in str(exc_info.value)
    assert "todo-1" in relationship_repo.items
    assert relationship_repo.deleted == []


def test_delete_normalizes_ids(links, task_repo, relationship_repo) -> None:
    _seed_tasks(task_repo, "a", "b", "c")
    _seed_relationship(relationship_repo, "r1", "a", "b", "depends_on")
    _seed_relationship(relationship_repo, "r2", "b", "c", "blocks")

    deleted = asyncio.run(links.delete_relationships([" r1", "r2", "r1", "  "]))
    assert deleted == ["r1", "r2"]
    assert relationship_repo.items == {}


def test_delete_single_id(links, task_repo, relationship_repo) -> None:
    _seed_tasks(task_repo, "a", "b")
    _seed_relationship(relationship_repo, "r1", "a", "b", "depends_on")
    assert asyncio.run(links.delete_relationships("r1")) == ["r1"]
    assert relationship_repo.items == {}


def test_delete_rejects_empty_id_list(links) -> None:
    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(links.delete_relationships(["", "  "]))
    assert exc_info.value.reason == "empty_ids"


def test_list_clamps_limit_and_applies_defaults(links, relationship_repo) -> None:
    asyncio.run(links.list_relationships(RelationshipQuery(limit=999)))
    assert relationship_repo.last_query.limit == 500

    asyncio.run(links.list_relationships())
    assert relationship_repo.last_query.limit == 100
    assert relationship_repo.last_query.offset == 0


@pytest.mark.parametrize(
    ("query", "reason"),
    [
        (RelationshipQuery(limit=0), "invalid_limit"),
        (RelationshipQuery(offset=-1), "invalid_offset"),
        (RelationshipQuery(from_id="  "), "blank_identifier"),
        (RelationshipQuery(involving=""), "blank_identifier"),
        (RelationshipQuery(type=["depends_on", "child_of"]), "invalid_type"),
    ],
)
def test_list_rejects_invalid_queries(links, query: RelationshipQuery, reason: str) -> None:
    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(links.list_relationships(query))
    assert exc_info.value.reason == reason


def test_list_collapses_single_type_and_filters(links, task_repo, relationship_repo) -> None:
    _seed_tasks(task_repo, "a", "b", "c")
    _seed_relationship(relationship_repo, "r1", "a", "b", "depends_on")
    _seed_relationship(relationship_repo, "r2", "b", "c", "blocks")
    _seed_relationship(relationship_repo, "r3", "a", "c", "related_to")

    result = asyncio.run(
        links.list_relationships(RelationshipQuery(involving=" b ", type=["blocks", "blocks"]))
    )
    assert relationship_repo.last_query.type is RelationshipType.BLOCKS
    assert relationship_repo.last_query.involving == "b"
    assert [item.id for item in result] == ["r2"]

    both = asyncio.run(
        links.list_relationships(RelationshipQuery(from_id="a", type=["depends_on", "related_to"]))
    )
    assert {item.id for item in both} == {"r1", "r3"}
