"""Tests for the MCP file-tools server."""

import pytest

from mcp_localwork import server


@pytest.fixture
def granted(docs_dir):
    permission = server.store.grant(docs_dir)
    yield docs_dir
    server.store.revoke(permission.id)


class TestMCPTools:
    """Test the tools exposed over MCP."""

    def test_read_file(self, granted):
        assert server.read_file(str(granted / "a.txt")) == "alpha\n"

    def test_read_outside_grant(self, granted):
        result = server.read_file(str(granted.parent / "other" / "b.txt"))
        assert result.startswith("Error: Access denied")

    def test_list_files(self, granted):
        result = server.list_files(str(granted))
        assert result.startswith("[FILE] a.txt")

    def test_create_write_move_delete(self, granted):
        path = str(granted / "notes.txt")
        moved = str(granted / "moved.txt")

        assert server.create_file(path, "v1") == f"Successfully created {path}"
        assert server.create_file(path, "v2") == "Error: File already exists"
        assert server.write_file(path, "v2") == f"Successfully wrote to {path}"
        assert server.move_file(path, moved) == f"Successfully moved {path} to {moved}"
        assert server.read_file(moved) == "v2"
        assert server.delete_file(moved) == f"Successfully deleted {moved}"

    def test_nothing_granted_denies(self, docs_dir):
        assert server.read_file(str(docs_dir / "a.txt")).startswith("Error:")


class TestServe:
    """Test server startup."""

    def test_serve_grants_folders_then_runs(self, monkeypatch, docs_dir):
        calls = []
        monkeypatch.setattr(server.mcp, "run", lambda: calls.append(len(server.store.list())))

        try:
            server.serve([str(docs_dir)])
            assert calls == [1]
        finally:
            for folder in server.store.list():
                server.store.revoke(folder.id)
