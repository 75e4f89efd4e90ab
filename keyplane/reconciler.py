"""Staged / applied / committed lifecycle of a device configuration.

Every device has one persisted SessionState holding three tiers:

- staged: the user's in-progress edits,
- applied: what is active in (volatile) device memory,
- committed: the durable baseline, the only tier whose revision advances.

Sessions are short-lived handles onto a device. Each operation resolves its
session, then performs one read-modify-write of the device's state under a
per-device lock, so concurrent sessions on one device never lose updates.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

from keyplane.base import ConfigStore, DeviceBackend, NullScriptRunner, ScriptRunner
from keyplane.checksum import stamp_checksum
from keyplane.errors import NotFoundError, ValidationError
from keyplane.models import (
    CURRENT_STATE_VERSION,
    BindingEntry,
    DeviceInfo,
    DeviceState,
    LayerState,
    Profile,
    ProfileBundle,
    SeedBundle,
    SessionState,
    copy_layers,
    copy_state,
)
from keyplane.registry import SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_LAYER_ID = 1


def merge_binding(layer: LayerState, entry: BindingEntry) -> None:
    """
    Put `entry` into `layer`, replacing any binding for the same target.

    Existing bindings keep their position; a new target is appended.
    Duplicate targets already present collapse onto their first position.
    """
    by_target: dict[str, BindingEntry] = {}
    for existing in layer.bindings:
        by_target[existing.target_id] = existing
    by_target[entry.target_id] = entry
    layer.bindings = list(by_target.values())


def initial_state_from_bundle(device_id: str, bundle: SeedBundle) -> SessionState:
    if bundle.committed_state is not None:
        base = copy_state(bundle.committed_state)
    else:
        base = DeviceState(
            profile_id=bundle.profile.id, layers=copy_layers(bundle.profile.layers)
        )
    base.revision = 0
    base = stamp_checksum(base)

    return SessionState(
        version=CURRENT_STATE_VERSION,
        session_id=f"coldstart-{device_id}",
        staged=copy_state(base),
        applied=copy_state(base),
        committed=base,
    )


def profile_bundle(
    bundle: SeedBundle, session_id: str, state: SessionState
) -> ProfileBundle:
    layers = bundle.profile.layers
    for tier in (state.staged, state.applied, state.committed):
        if tier is not None:
            layers = tier.layers
            break

    return ProfileBundle(
        session_id=session_id,
        device=bundle.device,
        capabilities=bundle.capabilities,
        profile=Profile(
            id=bundle.profile.id, name=bundle.profile.name, layers=copy_layers(layers)
        ),
        layout=bundle.layout,
        targets=list(bundle.targets) or bundle.layout_targets(),
        scripts=bundle.scripts,
        committed_state=state.committed,
        applied_state=state.applied,
        staged_state=state.staged,
        bindings=bundle.bindings,
    )


class StateReconciler(DeviceBackend):
    def __init__(
        self,
        store: ConfigStore,
        registry: SessionRegistry | None = None,
        runner: ScriptRunner | None = None,
    ) -> None:
        self.store = store
        self.registry = registry if registry is not None else SessionRegistry()
        self.runner = runner if runner is not None else NullScriptRunner()

        self._locks_guard = threading.Lock()
        self._device_locks: dict[str, threading.Lock] = {}

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("StateReconciler(...)")
        else:
            with p.group(4, "StateReconciler(", ")"):
                p.breakable()
                p.text("store=")
                p.pretty(self.store)
                p.text(",")
                p.breakable()
                p.text("registry=")
                p.pretty(self.registry)
                p.breakable()

    @contextmanager
    def _device_lock(self, device_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._device_locks.setdefault(device_id, threading.Lock())
        with lock:
            yield

    def _load(self, device_id: str) -> SessionState:
        state = self.store.load_session_state(device_id)
        if state is None:
            raise ValidationError(f"No session state found for device {device_id}")
        return state

    def list_devices(self) -> list[DeviceInfo]:
        return self.store.load_device_catalog()

    def open_session(self, device_id: str) -> ProfileBundle:
        self.store.ensure_seeded()
        bundle = self.store.load_seed_bundle(device_id)
        session_id = str(uuid.uuid4())

        with self._device_lock(device_id):
            state = self.store.load_session_state(device_id)
            if state is None:
                state = initial_state_from_bundle(device_id, bundle)
                logger.info(f"Seeded state for device {device_id}")
            state.session_id = session_id
            self.store.save_session_state(device_id, state)

        self.registry.register(session_id, device_id)
        logger.info(f"Opened session {session_id} on device {device_id}")
        return profile_bundle(bundle, session_id, state)

    def close_session(self, session_id: str) -> None:
        self.registry.unregister(session_id)

    def session_state(self, session_id: str) -> SessionState:
        device_id = self.registry.resolve(session_id)
        with self._device_lock(device_id):
            return self._load(device_id)

    def set_binding(self, session_id: str, entry: BindingEntry) -> None:
        device_id = self.registry.resolve(session_id)
        with self._device_lock(device_id):
            state = self._load(device_id)
            staged = state.staged
            if staged is None:
                raise ValidationError(f"No staged state for device {device_id}")

            if entry.layer_id is not None:
                layer_id = entry.layer_id
            elif staged.layers:
                layer_id = staged.layers[0].id
            else:
                layer_id = DEFAULT_LAYER_ID
            layer = staged.layer(layer_id)
            if layer is None:
                raise NotFoundError(f"Layer {layer_id} not found")

            merge_binding(layer, entry)
            state.staged = stamp_checksum(staged)
            self.store.save_session_state(device_id, state)
        logger.debug(f"Set {entry.target_id} on layer {layer_id} of {device_id}")

    def apply_to_ram(self, session_id: str) -> None:
        device_id = self.registry.resolve(session_id)
        with self._device_lock(device_id):
            state = self._load(device_id)
            if state.staged is None:
                return
            applied = copy_state(state.staged)
            # Revision only advances on commit.
            applied.revision = applied.revision or 0
            state.applied = stamp_checksum(applied)
            self.store.save_session_state(device_id, state)

    def revert_ram(self, session_id: str) -> None:
        device_id = self.registry.resolve(session_id)
        with self._device_lock(device_id):
            state = self._load(device_id)
            if state.committed is None:
                return
            state.applied = stamp_checksum(copy_state(state.committed))
            state.staged = stamp_checksum(copy_state(state.committed))
            self.store.save_session_state(device_id, state)

    def commit(self, session_id: str) -> None:
        device_id = self.registry.resolve(session_id)
        with self._device_lock(device_id):
            state = self._load(device_id)
            source = state.applied if state.applied is not None else state.staged
            if source is None:
                raise ValidationError("Nothing to commit")

            committed = copy_state(source)
            committed.revision = (committed.revision or 0) + 1
            committed = stamp_checksum(committed)

            state.committed = committed
            state.applied = copy_state(committed)
            state.staged = copy_state(committed)
            self.store.save_session_state(device_id, state)
        logger.info(f"Committed revision {committed.revision} for {device_id}")

    def run(self, session_id: str, script_id: str) -> None:
        device_id = self.registry.resolve(session_id)
        self.runner.run(device_id, script_id)

    def stop_all(self, session_id: str) -> None:
        device_id = self.registry.resolve(session_id)
        self.runner.stop_all(device_id)


def create_reconciler(
    store: ConfigStore, runner: ScriptRunner | None = None
) -> StateReconciler:
    return StateReconciler(store, runner=runner)
