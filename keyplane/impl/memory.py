from typing import Any

import msgspec

from keyplane.base import ConfigStore
from keyplane.errors import ParseError, StorageError
from keyplane.models import DeviceInfo, SeedBundle, SessionState

# {"devices": [DeviceInfo], "bundles": {device_id: SeedBundle},
#  "states": {device_id: encoded SessionState}}
MemoryStoreData = dict[str, Any]


class MemoryConfigStore(ConfigStore):
    """
    Store backed by a plain dict, shared between instances created over the
    same data. Session states are kept encoded and seed bundles are copied
    on load, so every load returns an independent copy, as a reload from
    disk would.
    """

    def __init__(self, store_data: MemoryStoreData) -> None:
        self.data = store_data
        self.data.setdefault("devices", [])
        self.data.setdefault("bundles", {})
        self.data.setdefault("states", {})

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("MemoryConfigStore(...)")
        else:
            with p.group(4, "MemoryConfigStore(", ")"):
                p.breakable()
                p.text(f"devices={[d.id for d in self.data['devices']]},")
                p.breakable()
                p.text(f"states={sorted(self.data['states'])},")
                p.breakable()

    def load_device_catalog(self) -> list[DeviceInfo]:
        return list(self.data["devices"])

    def load_seed_bundle(self, device_id: str) -> SeedBundle:
        bundle = self.data["bundles"].get(device_id)
        if bundle is None:
            raise StorageError(f"No seed bundle for device {device_id}")
        try:
            return msgspec.convert(msgspec.to_builtins(bundle), SeedBundle)
        except msgspec.ValidationError as e:
            raise ParseError(f"Invalid seed bundle for {device_id}: {e}") from e

    def load_session_state(self, device_id: str) -> SessionState | None:
        raw = self.data["states"].get(device_id)
        if raw is None:
            return None
        try:
            state = msgspec.json.decode(raw, type=SessionState)
        except msgspec.DecodeError as e:
            raise ParseError(f"Failed to parse state for {device_id}: {e}") from e
        return self._upgrade(device_id, state)

    def save_session_state(self, device_id: str, state: SessionState) -> None:
        self.data["states"][device_id] = msgspec.json.encode(state)

    def ensure_seeded(self) -> None:
        pass


def create_memory_config_store(store_data: MemoryStoreData) -> ConfigStore:
    return MemoryConfigStore(store_data)
