import contextlib
import logging
import os
import shutil
from pathlib import Path
from typing import Any, TypeVar

import msgspec

from keyplane.base import ConfigStore
from keyplane.errors import ParseError, StorageError
from keyplane.models import DeviceInfo, SeedBundle, SessionState

logger = logging.getLogger(__name__)

T = TypeVar("T")


def ensure_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(f"Failed to create directory {path}: {e}") from e


def read_json(path: Path, into: type[T]) -> T:
    try:
        data = path.read_bytes()
    except OSError as e:
        raise StorageError(f"Failed to read {path}: {e}") from e
    try:
        return msgspec.json.decode(data, type=into)
    except msgspec.DecodeError as e:
        raise ParseError(f"Failed to parse {path}: {e}") from e


def tmp_path_for(path: Path) -> Path:
    return path.with_name(f".{path.name}.tmp")


def write_json_atomic(path: Path, value: Any) -> None:
    """
    Write `value` as JSON so that readers see either the old or the new
    document, never a partial one.
    """
    ensure_dir(path.parent)
    tmp_path = tmp_path_for(path)
    data = msgspec.json.format(msgspec.json.encode(value), indent=2)
    try:
        with open(tmp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        with contextlib.suppress(OSError):
            tmp_path.unlink(missing_ok=True)
        raise StorageError(f"Failed to write {path}: {e}") from e


def copy_seed_data_if_missing(seed_root: Path, data_root: Path) -> bool:
    """
    Copy the whole seed tree to `data_root` unless it already exists.

    The tree is copied next to the target and renamed into place, so an
    interrupted copy never leaves a half-populated data root behind. An
    existing data root is left alone even if incomplete.
    """
    if data_root.exists():
        return False
    if not seed_root.is_dir():
        raise StorageError(f"Seed root {seed_root} does not exist")

    ensure_dir(data_root.parent)
    staging = data_root.with_name(f".{data_root.name}.seeding")
    try:
        if staging.exists():
            shutil.rmtree(staging)
        shutil.copytree(seed_root, staging)
        staging.rename(data_root)
    except OSError as e:
        shutil.rmtree(staging, ignore_errors=True)
        raise StorageError(f"Failed to seed {data_root} from {seed_root}: {e}") from e

    logger.info(f"Seeded {data_root} from {seed_root}")
    return True


class FileConfigStore(ConfigStore):
    def __init__(self, seed_root: str | Path, data_root: str | Path) -> None:
        self.seed_root = Path(seed_root).absolute()
        self.data_root = Path(data_root).absolute()

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("FileConfigStore(...)")
        else:
            with p.group(4, "FileConfigStore(", ")"):
                p.breakable()
                p.text(f"seed_root={self.seed_root},")
                p.breakable()
                p.text(f"data_root={self.data_root},")
                p.breakable()

    def devices_path(self) -> Path:
        return self.seed_root / "devices.json"

    def bundle_path(self, device_id: str) -> Path:
        return self.seed_root / "profiles" / device_id / "bundle.json"

    def state_path(self, device_id: str) -> Path:
        return self.data_root / "state" / f"{device_id}.json"

    def load_device_catalog(self) -> list[DeviceInfo]:
        return read_json(self.devices_path(), list[DeviceInfo])

    def load_seed_bundle(self, device_id: str) -> SeedBundle:
        return read_json(self.bundle_path(device_id), SeedBundle)

    def load_session_state(self, device_id: str) -> SessionState | None:
        path = self.state_path(device_id)
        if not path.exists():
            return None
        state = read_json(path, SessionState)
        return self._upgrade(device_id, state)

    def save_session_state(self, device_id: str, state: SessionState) -> None:
        path = self.state_path(device_id)
        write_json_atomic(path, state)
        logger.debug(f"Saved state for {device_id} to {path}")

    def ensure_seeded(self) -> None:
        copy_seed_data_if_missing(self.seed_root, self.data_root)
        ensure_dir(self.data_root / "state")


def create_file_config_store(
    seed_root: str | Path, data_root: str | Path
) -> ConfigStore:
    return FileConfigStore(seed_root, data_root)
