"""Persisted pod state.

The state file maps logical pod names to the last record observed for them::

    {
      "version": 1,
      "pods": {
        "dev-pod": {"id": "abc123", "name": "dev-pod", "image": "...",
                    "status": "running", "created_at": "2024-05-01T12:00:00+00:00",
                    "public_ip": "203.0.113.7", "port_mappings": {"22": 40001}}
      }
    }

Writes are atomic (temp file + ``os.replace``) but there is no locking: two
processes saving the same file race and the last save wins.
"""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from podward.errors import StateCorruptError, StorageError
from podward.model import PersistedState, PodRecord, PodStatus
from podward.observability.logger import logger

STATE_VERSION = 1
STATE_PATH_ENV = "RUNPOD_STATE_PATH"
DEFAULT_STATE_FILE = ".podward/state.json"


def default_path(environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    return Path(env.get(STATE_PATH_ENV) or DEFAULT_STATE_FILE)


@runtime_checkable
class StateStore(Protocol):
    def load(self) -> PersistedState: ...

    def save(self, state: PersistedState) -> None: ...


# =============================================================================
# Serialization
# =============================================================================


def _record_to_json(record: PodRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "name": record.name,
        "image": record.image,
        "status": record.status.value,
        "created_at": record.created_at.isoformat(),
        "public_ip": record.public_ip,
        "port_mappings": {str(k): v for k, v in sorted(record.port_mappings.items())},
    }


def _record_from_json(key: str, raw: Any) -> PodRecord:
    if not isinstance(raw, dict):
        raise StateCorruptError(f"Entry {key!r} is not an object", pod_name=key)

    try:
        pod_id, name, image = raw["id"], raw.get("name", key), raw["image"]
        status = PodStatus(raw["status"])
        created_at = datetime.fromisoformat(raw["created_at"])
    except KeyError as e:
        raise StateCorruptError(f"Entry {key!r} is missing {e}", pod_name=key) from None
    except (TypeError, ValueError) as e:
        raise StateCorruptError(f"Entry {key!r} is invalid: {e}", pod_name=key) from None

    if not all(isinstance(v, str) and v for v in (pod_id, name, image)):
        raise StateCorruptError(f"Entry {key!r} has empty id, name or image", pod_name=key)
    if name != key:
        raise StateCorruptError(f"Entry {key!r} holds a record named {name!r}", pod_name=key)

    public_ip = raw.get("public_ip")
    if public_ip is not None and not isinstance(public_ip, str):
        raise StateCorruptError(f"Entry {key!r} has a non-string public_ip", pod_name=key)

    mappings_raw = raw.get("port_mappings") or {}
    if not isinstance(mappings_raw, dict):
        raise StateCorruptError(f"Entry {key!r} has invalid port_mappings", pod_name=key)
    try:
        port_mappings = {int(k): int(v) for k, v in mappings_raw.items()}
    except (TypeError, ValueError):
        raise StateCorruptError(f"Entry {key!r} has non-integer ports", pod_name=key) from None

    return PodRecord(
        id=pod_id,
        name=name,
        image=image,
        status=status,
        public_ip=public_ip,
        port_mappings=port_mappings,
        created_at=created_at if created_at.tzinfo else created_at.replace(tzinfo=UTC),
    )


def dumps(state: PersistedState) -> str:
    payload = {
        "version": STATE_VERSION,
        "pods": {name: _record_to_json(state.pods[name]) for name in state.names()},
    }
    return json.dumps(payload, indent=2) + "\n"


def loads(text: str) -> PersistedState:
    """Parse a state document. Anything unexpected raises StateCorruptError."""
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise StateCorruptError(f"State file is not valid JSON: {e}") from None

    if not isinstance(raw, dict):
        raise StateCorruptError("State file must contain a JSON object")
    if raw.get("version") != STATE_VERSION:
        raise StateCorruptError(f"Unsupported state version: {raw.get('version')!r}")

    pods = raw.get("pods", {})
    if not isinstance(pods, dict):
        raise StateCorruptError("'pods' must be an object")

    return PersistedState(pods={key: _record_from_json(key, value) for key, value in pods.items()})


# =============================================================================
# JSON file store
# =============================================================================


class JsonFileStateStore:
    """State store backed by a single JSON file."""

    def __init__(self, path: str | os.PathLike[str] | None = None) -> None:
        self.path = Path(path) if path is not None else default_path()
        self._log = logger.bind(component="state")

    def load(self) -> PersistedState:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self._log.debug("No state file at {path}, starting empty", path=self.path)
            return PersistedState()
        except UnicodeDecodeError as e:
            raise StateCorruptError(f"{self.path}: not valid UTF-8: {e}") from e
        except OSError as e:
            raise StorageError(f"Cannot read state file {self.path}: {e}") from e

        try:
            state = loads(text)
        except StateCorruptError as e:
            e.message = f"{self.path}: {e.message}"
            raise
        self._log.debug("Loaded {n} pod(s) from {path}", n=len(state), path=self.path)
        return state

    def save(self, state: PersistedState) -> None:
        content = dumps(state)
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp",
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise StorageError(f"Cannot write state file {self.path}: {e}") from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
        self._log.debug("Saved {n} pod(s) to {path}", n=len(state), path=self.path)

    def __repr__(self) -> str:
        return f"JsonFileStateStore({str(self.path)!r})"
