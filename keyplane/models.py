from typing import Any

import msgspec

Meta = dict[str, Any]

CURRENT_STATE_VERSION = 1


class DeviceInfo(msgspec.Struct, kw_only=True, rename="camel"):
    id: str
    name: str
    transport: str = ""
    vendor_id: str | None = None
    product_id: str | None = None
    firmware_version: str | None = None


class Capabilities(msgspec.Struct, kw_only=True, rename="camel"):
    volatile_apply: bool
    commit: bool
    layouts: bool
    keymap: bool
    scripts: bool


class Step(msgspec.Struct, kw_only=True):
    id: int
    name: str
    op: str
    arg: str | None = None
    class_: int | None = msgspec.field(default=None, name="class")


class Script(msgspec.Struct, kw_only=True, rename="camel"):
    id: str
    profile_id: str
    name: str
    steps: list[Step]
    meta: Meta | None = None


### Bindings
# Closed set of variants, tagged by the "type" field on the wire.


class _Binding(msgspec.Struct, kw_only=True, tag_field="type", rename="camel"):
    pass


class NoBinding(_Binding, tag="none"):
    pass


class ScriptRef(_Binding, tag="scriptRef"):
    script_id: str
    meta: Meta | None = None


class SimpleAction(_Binding, tag="simpleAction"):
    action: str
    arg: str | None = None
    meta: Meta | None = None


class InlineSequence(_Binding, tag="inlineSequence"):
    steps: list[Step]
    meta: Meta | None = None


class Program(_Binding, tag="program"):
    path: str
    meta: Meta | None = None


Binding = NoBinding | ScriptRef | SimpleAction | InlineSequence | Program


class BindingEntry(msgspec.Struct, kw_only=True, rename="camel"):
    target_id: str
    binding: Binding
    layer_id: int | None = None


### State tiers


class LayerState(msgspec.Struct, kw_only=True):
    id: int
    bindings: list[BindingEntry] = msgspec.field(default_factory=list)


class DeviceState(msgspec.Struct, kw_only=True, rename="camel"):
    """
    One complete configuration snapshot of a device profile.
    """

    profile_id: str
    layers: list[LayerState] = msgspec.field(default_factory=list)
    revision: int | None = None
    checksum: int | None = None

    def layer(self, layer_id: int) -> LayerState | None:
        for layer in self.layers:
            if layer.id == layer_id:
                return layer
        return None


class SessionState(msgspec.Struct, kw_only=True, rename="camel"):
    """
    Persisted per device, not per session: `session_id` only records the
    most recent session opened against the device.

    Records written before versioning carry no `version` and decode as 0.
    """

    session_id: str
    version: int = 0
    staged: DeviceState | None = None
    applied: DeviceState | None = None
    committed: DeviceState | None = None


### Seed data and the session bundle


class Profile(msgspec.Struct, kw_only=True):
    id: str
    name: str
    layers: list[LayerState] = msgspec.field(default_factory=list)


class LayoutElement(msgspec.Struct, kw_only=True, rename="camel"):
    element_id: str | None = None


class LayoutIndex(msgspec.Struct, kw_only=True):
    """
    The part of a layout that is read here. Everything else in the layout is
    geometry and stays opaque.
    """

    keys: list[LayoutElement] = msgspec.field(default_factory=list)
    controls: list[LayoutElement] = msgspec.field(default_factory=list)


def index_layout(layout: Meta) -> LayoutIndex:
    try:
        return msgspec.convert(layout, LayoutIndex)
    except msgspec.ValidationError as e:
        raise ValueError(f"Invalid layout: {e}") from e


class SeedBundle(msgspec.Struct, kw_only=True, rename="camel"):
    device: DeviceInfo
    capabilities: Capabilities
    profile: Profile
    scripts: list[Script]
    # Precomputed geometry, passed through untouched.
    layout: Meta | None = None
    targets: list[str] = msgspec.field(default_factory=list)
    committed_state: DeviceState | None = None
    bindings: list[BindingEntry] = msgspec.field(default_factory=list)

    def __post_init__(self) -> None:
        # Raised while decoding, this surfaces as msgspec.ValidationError.
        if self.layout is not None:
            index_layout(self.layout)

    def layout_targets(self) -> list[str]:
        if self.layout is None:
            return []
        index = index_layout(self.layout)
        return sorted(
            e.element_id
            for e in [*index.keys, *index.controls]
            if e.element_id is not None
        )


class ProfileBundle(msgspec.Struct, kw_only=True, rename="camel"):
    session_id: str
    device: DeviceInfo
    capabilities: Capabilities
    profile: Profile
    layout: Meta | None
    targets: list[str]
    scripts: list[Script]
    committed_state: DeviceState | None
    applied_state: DeviceState | None
    staged_state: DeviceState | None
    bindings: list[BindingEntry] = msgspec.field(default_factory=list)


def copy_state(state: DeviceState) -> DeviceState:
    """Deep copy of a snapshot; tiers never share layer or binding lists."""
    return msgspec.convert(msgspec.to_builtins(state), DeviceState)


def copy_layers(layers: list[LayerState]) -> list[LayerState]:
    return msgspec.convert(msgspec.to_builtins(layers), list[LayerState])


def describe_binding(binding: Binding) -> str:
    match binding:
        case NoBinding():
            return "none"
        case ScriptRef(script_id=script_id):
            return f"script {script_id}"
        case SimpleAction(action=action, arg=None):
            return action
        case SimpleAction(action=action, arg=arg):
            return f"{action}({arg})"
        case InlineSequence(steps=steps):
            return f"sequence of {len(steps)} steps"
        case Program(path=path):
            return f"program {path}"
    raise TypeError(f"Unknown binding variant {type(binding).__name__}")
