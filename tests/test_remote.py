"""Tests for tcheater.remote module."""

import stat
from pathlib import Path

import pytest
import yaml

from tcheater.checkpoint import Checkpoint, TimeWindow
from tcheater.errors import REMOTE_UNAVAILABLE
from tcheater.remote import InMemoryRemoteStore, YamlDocumentStore, _sanitize_id, new_checkpoint_id
from tcheater.types import CheckpointId, LocalId, ProjectId, TaskId

pytestmark = pytest.mark.asyncio


def _checkpoint(start, end, checkpoint_id=None, note="work"):
    return Checkpoint(
        local_id=LocalId(1),
        project_id=ProjectId("acme"),
        task_id=TaskId("4521"),
        start=start,
        end=end,
        note=note,
        id=checkpoint_id,
    )


@pytest.fixture
def documents(tmp_path: Path) -> YamlDocumentStore:
    return YamlDocumentStore(tmp_path / "remote")


class TestYamlDocumentStore:
    """Tests for YamlDocumentStore."""

    async def test_put_creates_document(self, documents, at, week):
        result = await documents.put(_checkpoint(at(9, 0), at(10, 0)))

        assert result.ok
        stored = result.value
        assert stored.revision == 1
        path = documents.root / f"{stored.id}.yaml"
        assert path.exists()
        data = yaml.safe_load(path.read_text())
        assert data["project_id"] == "acme"
        assert data["task_id"] == "4521"
        assert data["revision"] == 1

    async def test_document_is_world_readable(self, documents, at):
        stored = (await documents.put(_checkpoint(at(9, 0), at(10, 0)))).value
        mode = stat.S_IMODE((documents.root / f"{stored.id}.yaml").stat().st_mode)
        assert mode == 0o644

    async def test_put_with_id_bumps_revision(self, documents, at):
        first = (await documents.put(_checkpoint(at(9, 0), at(10, 0)))).value

        second = (await documents.put(_checkpoint(at(9, 0), at(11, 0), checkpoint_id=first.id))).value

        assert second.id == first.id
        assert second.revision == 2
        assert len(list(documents.root.glob("*.yaml"))) == 1

    async def test_list_filters_by_window(self, documents, at, week):
        await documents.put(_checkpoint(at(9, 0), at(10, 0)))
        await documents.put(_checkpoint(at(9, 0, day=20), at(10, 0, day=20)))

        result = await documents.list(week)

        assert result.ok
        assert len(result.value) == 1
        assert result.value[0].start == at(9, 0)

    async def test_list_sorted_by_start(self, documents, at, week):
        await documents.put(_checkpoint(at(14, 0), at(15, 0)))
        await documents.put(_checkpoint(at(9, 0), at(10, 0)))

        listed = (await documents.list(week)).value

        assert [doc.start for doc in listed] == [at(9, 0), at(14, 0)]

    async def test_list_round_trips_timezone(self, documents, at, week):
        await documents.put(_checkpoint(at(9, 0), at(10, 0)))

        (doc,) = (await documents.list(week)).value

        assert doc.start == at(9, 0)
        assert doc.start.utcoffset() == at(9, 0).utcoffset()

    async def test_list_of_missing_directory_is_empty(self, documents, week):
        result = await documents.list(week)
        assert result.ok
        assert result.value == []

    async def test_corrupt_document_skipped(self, documents, at, week):
        await documents.put(_checkpoint(at(9, 0), at(10, 0)))
        (documents.root / "broken.yaml").write_text("id: x\nstart: [not a date\n")
        (documents.root / "partial.yaml").write_text("id: y\n")

        result = await documents.list(week)

        assert result.ok
        assert len(result.value) == 1

    async def test_delete(self, documents, at, week):
        stored = (await documents.put(_checkpoint(at(9, 0), at(10, 0)))).value

        assert (await documents.delete(stored.id)).ok

        assert (await documents.list(week)).value == []

    async def test_delete_missing_succeeds(self, documents):
        assert (await documents.delete(CheckpointId("nope"))).ok

    async def test_put_to_unwritable_location_fails(self, tmp_path, at):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        store = YamlDocumentStore(blocker / "remote")

        result = await store.put(_checkpoint(at(9, 0), at(10, 0)))

        assert not result.ok
        assert result.error.code == REMOTE_UNAVAILABLE

    async def test_non_mapping_document_skipped(self, documents, at, week):
        stored = (await documents.put(_checkpoint(at(9, 0), at(10, 0)))).value
        (documents.root / "bad.yaml").write_text("- just\n- a list\n")

        assert (await documents.list(week)).value == [stored]


class TestInMemoryRemoteStore:
    """Tests for InMemoryRemoteStore."""

    async def test_put_list_delete(self, remote, at, week):
        stored = (await remote.put(_checkpoint(at(9, 0), at(10, 0)))).value

        assert [doc.id for doc in (await remote.list(week)).value] == [stored.id]

        await remote.delete(stored.id)
        assert (await remote.list(week)).value == []
        assert [op for op, _ in remote.calls] == ["put", "list", "delete", "list"]

    async def test_unavailable(self, remote, at, week):
        remote.unavailable = True

        assert (await remote.list(week)).error.code == REMOTE_UNAVAILABLE
        assert (await remote.put(_checkpoint(at(9, 0), at(10, 0)))).error.code == REMOTE_UNAVAILABLE
        assert (await remote.delete(CheckpointId("x"))).error.code == REMOTE_UNAVAILABLE

    async def test_revision_increments(self, remote, at):
        first = (await remote.put(_checkpoint(at(9, 0), at(10, 0)))).value
        second = (await remote.put(_checkpoint(at(9, 0), at(10, 0), checkpoint_id=first.id))).value
        assert (first.revision, second.revision) == (1, 2)

    async def test_list_half_open(self, remote, remote_doc, at):
        remote.seed(remote_doc("doc-1", at(9, 0), at(10, 0)))
        result = await remote.list(TimeWindow(at(10, 0), at(11, 0)))
        assert result.value == []


class TestIds:
    """Tests for id helpers."""

    async def test_new_ids_are_unique(self):
        assert new_checkpoint_id() != new_checkpoint_id()

    async def test_sanitize_id(self):
        assert _sanitize_id("abc-123_x") == "abc-123_x"
        assert _sanitize_id("../../etc/passwd") == "etc-passwd"
        assert _sanitize_id("///") == "unnamed"
