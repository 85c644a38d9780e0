from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from deskflow.domain.kinds import EntityKind

WORKSPACES_DIR = Path("workspaces")
CURRENT_WORKSPACE_FILE = WORKSPACES_DIR / ".current"
WORKSPACE_FILENAME = "workspace.yaml"
EVENTS_FILENAME = "events.ndjson"
PROVIDERS = {"sqlite", "airtable"}


@dataclass(frozen=True)
class BackendConfig:
    provider: str
    sqlite_path: Path | None
    base_id: str | None
    tables: dict[str, str]


@dataclass(frozen=True)
class SyncConfig:
    poll_interval: float | None = None
    cascade_subtasks: bool = True
    events: bool = True


@dataclass(frozen=True)
class WorkspaceConfig:
    name: str
    backend: BackendConfig
    sync: SyncConfig
    path: Path

    @property
    def events_path(self) -> Path:
        return self.path / EVENTS_FILENAME


class WorkspaceError(RuntimeError):
    pass


def ensure_workspaces_dir() -> None:
    WORKSPACES_DIR.mkdir(parents=True, exist_ok=True)


def set_current_workspace(name: str) -> None:
    ensure_workspaces_dir()
    CURRENT_WORKSPACE_FILE.write_text(f"{name}\n", encoding="utf-8")


def get_current_workspace_name() -> str:
    if not CURRENT_WORKSPACE_FILE.exists():
        raise WorkspaceError("No active workspace. Run `deskflow workspace use <name>`.")
    return CURRENT_WORKSPACE_FILE.read_text(encoding="utf-8").strip()


def workspace_path(name: str) -> Path:
    return WORKSPACES_DIR / name


def workspace_config_path(name: str) -> Path:
    return workspace_path(name) / WORKSPACE_FILENAME


def load_workspace(name: str | None = None) -> WorkspaceConfig:
    if name is None:
        name = get_current_workspace_name()
    return load_workspace_file(workspace_config_path(name), name)


def load_workspace_file(config_path: Path, name: str | None = None) -> WorkspaceConfig:
    if not config_path.exists():
        raise WorkspaceError(f"Workspace config not found: {config_path}")
    data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise WorkspaceError("Workspace config must be a mapping.")
    backend = _parse_backend(data.get("backend"), config_path)
    sync = _parse_sync(data.get("sync"))
    return WorkspaceConfig(
        name=name or str(data.get("workspace") or config_path.parent.name),
        backend=backend,
        sync=sync,
        path=config_path.parent,
    )


def write_workspace_config(name: str, provider: str = "sqlite", base_id: str | None = None) -> Path:
    if provider not in PROVIDERS:
        raise WorkspaceError(f"provider must be one of: {', '.join(sorted(PROVIDERS))}")
    ensure_workspaces_dir()
    ws_dir = workspace_path(name)
    ws_dir.mkdir(parents=True, exist_ok=True)
    backend: dict[str, Any] = {"provider": provider}
    if provider == "sqlite":
        backend["sqlite_path"] = "./documents.sqlite"
    else:
        backend["base_id"] = base_id
        backend["tables"] = {kind.value: "" for kind in EntityKind}
    config = {
        "workspace": name,
        "backend": backend,
        "sync": {"poll_interval": None, "cascade_subtasks": True, "events": True},
    }
    config_path = workspace_config_path(name)
    config_path.write_text(yaml.safe_dump(config, sort_keys=False), encoding="utf-8")
    return config_path


def _parse_backend(backend_data: Any, config_path: Path) -> BackendConfig:
    if not isinstance(backend_data, dict):
        raise WorkspaceError("Invalid workspace backend configuration.")
    provider = backend_data.get("provider") or "sqlite"
    if provider not in PROVIDERS:
        raise WorkspaceError(f"Workspace backend.provider must be one of: {', '.join(sorted(PROVIDERS))}")
    tables = backend_data.get("tables") or {}
    if not isinstance(tables, dict):
        raise WorkspaceError("Workspace backend.tables must be a mapping.")

    sqlite_path = None
    if provider == "sqlite":
        sqlite_path_raw = backend_data.get("sqlite_path")
        if not sqlite_path_raw:
            raise WorkspaceError("Workspace backend.sqlite_path is required.")
        sqlite_path = _resolve_sqlite_path(sqlite_path_raw, config_path)
        if sqlite_path is None:
            raise WorkspaceError("Workspace backend.sqlite_path must be a string.")
    elif not backend_data.get("base_id"):
        raise WorkspaceError("Workspace backend.base_id is required for airtable.")

    return BackendConfig(
        provider=provider,
        sqlite_path=sqlite_path,
        base_id=backend_data.get("base_id"),
        tables={str(key): str(value or "") for key, value in tables.items()},
    )


def _parse_sync(sync_data: Any) -> SyncConfig:
    if sync_data is None:
        return SyncConfig()
    if not isinstance(sync_data, dict):
        raise WorkspaceError("Invalid workspace sync configuration.")
    poll_interval = sync_data.get("poll_interval")
    if poll_interval is not None:
        try:
            poll_interval = float(poll_interval)
        except (TypeError, ValueError) as exc:
            raise WorkspaceError("Workspace sync.poll_interval must be a number of seconds.") from exc
        if poll_interval <= 0:
            poll_interval = None
    return SyncConfig(
        poll_interval=poll_interval,
        cascade_subtasks=bool(sync_data.get("cascade_subtasks", True)),
        events=bool(sync_data.get("events", True)),
    )


def _resolve_sqlite_path(sqlite_path_raw: Any, config_path: Path) -> Path | None:
    if not isinstance(sqlite_path_raw, str):
        return None
    raw_path = Path(sqlite_path_raw)
    if raw_path.is_absolute():
        return raw_path
    workspace_dir = config_path.parent
    if raw_path.parts and raw_path.parts[0] == WORKSPACES_DIR.name:
        # Paths written relative to the repo root, e.g. "workspaces/demo/documents.sqlite".
        return (workspace_dir.parent.parent / raw_path).resolve()
    return (workspace_dir / raw_path).resolve()
