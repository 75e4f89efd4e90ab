import logging

from keyplane.errors import ParseError
from keyplane.models import (
    CURRENT_STATE_VERSION,
    BindingEntry,
    DeviceInfo,
    ProfileBundle,
    SeedBundle,
    SessionState,
)

logger = logging.getLogger(__name__)


class ConfigStore:
    """
    Persistence of the device catalog, seed bundles and per-device
    session state.

    Seed data is read-only. Session state is keyed by device id and
    every save replaces the previous record atomically.
    """

    def load_device_catalog(self) -> list[DeviceInfo]:
        """Return every device known to the seed data."""
        raise NotImplementedError()

    def load_seed_bundle(self, device_id: str) -> SeedBundle:
        """Return the factory baseline for a device."""
        raise NotImplementedError()

    def load_session_state(self, device_id: str) -> SessionState | None:
        """
        Return the persisted session state of a device, or None if the
        device has never been opened. Records from an older schema are
        upgraded and saved back before being returned.
        """
        raise NotImplementedError()

    def save_session_state(self, device_id: str, state: SessionState) -> None:
        """Replace the persisted session state of a device."""
        raise NotImplementedError()

    def ensure_seeded(self) -> None:
        """Prepare writable storage on first use. No-op afterwards."""
        raise NotImplementedError()

    def _upgrade(self, device_id: str, state: SessionState) -> SessionState:
        if state.version > CURRENT_STATE_VERSION:
            raise ParseError(
                f"State for {device_id} has schema version {state.version}, "
                f"newer than supported version {CURRENT_STATE_VERSION}"
            )
        if state.version < CURRENT_STATE_VERSION:
            old_version = state.version
            state.version = CURRENT_STATE_VERSION
            self.save_session_state(device_id, state)
            logger.info(
                f"Migrated state for {device_id} from version {old_version} "
                f"to {state.version}"
            )
        return state


class ScriptRunner:
    """
    Executes scripts on behalf of a device. Execution itself lives outside
    keyplane; the reconciler only validates the session before delegating.
    """

    def run(self, device_id: str, script_id: str) -> None:
        raise NotImplementedError()

    def stop_all(self, device_id: str) -> None:
        raise NotImplementedError()


class NullScriptRunner(ScriptRunner):
    def run(self, device_id: str, script_id: str) -> None:
        logger.info(f"No script runner configured, ignoring run of {script_id}")

    def stop_all(self, device_id: str) -> None:
        logger.info(f"No script runner configured, ignoring stop for {device_id}")


class DeviceBackend:
    """
    Operation surface for editing a device configuration through sessions.
    """

    def list_devices(self) -> list[DeviceInfo]:
        """List devices available for editing."""
        raise NotImplementedError()

    def open_session(self, device_id: str) -> ProfileBundle:
        """Open a new session against a device, seeding its state if needed."""
        raise NotImplementedError()

    def close_session(self, session_id: str) -> None:
        """Forget a session. Unknown sessions are ignored."""
        raise NotImplementedError()

    def session_state(self, session_id: str) -> SessionState:
        """Return the persisted state of the session's device."""
        raise NotImplementedError()

    def set_binding(self, session_id: str, entry: BindingEntry) -> None:
        """Merge a binding edit into the staged tier."""
        raise NotImplementedError()

    def apply_to_ram(self, session_id: str) -> None:
        """Promote staged to applied."""
        raise NotImplementedError()

    def revert_ram(self, session_id: str) -> None:
        """Reset applied and staged to the committed baseline."""
        raise NotImplementedError()

    def commit(self, session_id: str) -> None:
        """Make applied (or staged) the new committed baseline."""
        raise NotImplementedError()

    def run(self, session_id: str, script_id: str) -> None:
        """Start a script on the device."""
        raise NotImplementedError()

    def stop_all(self, session_id: str) -> None:
        """Stop every running script on the device."""
        raise NotImplementedError()
