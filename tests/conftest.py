"""
Shared fixtures for moraine tests.
"""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from moraine.config.settings import StackSettings
from moraine.core.context import ExecutionGate, ExecutionMode
from moraine.publishing.blob_store import BlobStore

PLACEHOLDER = "#{REACT_APP_TODO_API_ENDPOINT}"
FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class RecordingBlobStore(BlobStore):
    """BlobStore that records every call instead of talking to Azure."""

    def __init__(self, fail_on: set[str] | None = None):
        self.fail_on = fail_on or set()
        self.calls: list[tuple] = []
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}

    def upload(self, container: str, name: str, data: bytes, content_type: str) -> str:
        self.calls.append(("upload", container, name))
        if name in self.fail_on:
            raise ConnectionError(f"upload of {name} failed")
        self.objects[(container, name)] = (data, content_type)
        return f"https://account.blob.core.windows.net/{container}/{name}"

    def sign_read(self, container: str, name: str, expires_at: datetime) -> str:
        self.calls.append(("sign", container, name))
        return f"se={expires_at.strftime('%Y-%m-%dT%H:%M:%SZ')}&sp=r&sig=test"

    def enable_static_website(self, index_document: str, error_document: str) -> None:
        self.calls.append(("enable_static_website", index_document, error_document))

    def uploaded_names(self) -> list[str]:
        return [call[2] for call in self.calls if call[0] == "upload"]


class StubResolver:
    """Endpoint resolver double recording lookups."""

    def __init__(self, gate: ExecutionGate, endpoint: str = "https://todofront.z6.web.core.windows.net/"):
        self.gate = gate
        self.endpoint = endpoint
        self.lookups: list[tuple[str, dict]] = []

    def resolve(self, name: str, **params: str) -> str | None:
        def lookup() -> str:
            self.lookups.append((name, params))
            return self.endpoint

        return self.gate.run(f"resolve-endpoint:{name}", lookup)


@pytest.fixture
def apply_gate() -> ExecutionGate:
    return ExecutionGate(ExecutionMode.APPLY)


@pytest.fixture
def preview_gate() -> ExecutionGate:
    return ExecutionGate(ExecutionMode.PREVIEW)


@pytest.fixture
def store() -> RecordingBlobStore:
    return RecordingBlobStore()


@pytest.fixture
def asset_tree(tmp_path: Path) -> Path:
    """A small front-end build: index.html and a hashed main bundle."""
    root = tmp_path / "build"
    (root / "static" / "js").mkdir(parents=True)
    (root / "index.html").write_text("<html><body>todo</body></html>")
    (root / "static" / "js" / "main.abc123.js").write_text(f'fetch("{PLACEHOLDER}/todos")')
    return root


@pytest.fixture
def settings(asset_tree: Path) -> StackSettings:
    return StackSettings(
        sql_admin_password="T0d0Adm1n",
        asset_root=asset_tree,
        function_package=asset_tree.parent / "functions",
    )
