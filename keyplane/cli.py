import argparse
import logging
import sys
from typing import Any, Callable

import msgspec

from keyplane.errors import KeyplaneError, ParseError
from keyplane.models import Binding, BindingEntry, SessionState, describe_binding
from keyplane.reconciler import StateReconciler, create_reconciler
from keyplane.settings import Settings, create_config_store

logger = logging.getLogger(__name__)


def emit(value: Any) -> None:
    sys.stdout.write(msgspec.json.format(msgspec.json.encode(value), indent=2).decode())
    sys.stdout.write("\n")


def with_session(
    backend: StateReconciler, device_id: str, action: Callable[[str], Any]
) -> Any:
    bundle = backend.open_session(device_id)
    try:
        return action(bundle.session_id)
    finally:
        backend.close_session(bundle.session_id)


def parse_binding(raw: str) -> Binding:
    try:
        return msgspec.json.decode(raw, type=Binding)
    except msgspec.DecodeError as e:
        raise ParseError(f"Invalid binding {raw!r}: {e}") from e


def cmd_devices(backend: StateReconciler, args: argparse.Namespace) -> None:
    emit(backend.list_devices())


def cmd_open(backend: StateReconciler, args: argparse.Namespace) -> None:
    bundle = backend.open_session(args.device)
    backend.close_session(bundle.session_id)
    emit(bundle)


def cmd_show(backend: StateReconciler, args: argparse.Namespace) -> None:
    emit(with_session(backend, args.device, backend.session_state))


def cmd_set_binding(backend: StateReconciler, args: argparse.Namespace) -> None:
    binding = parse_binding(args.binding)
    entry = BindingEntry(target_id=args.target, layer_id=args.layer, binding=binding)
    with_session(backend, args.device, lambda sid: backend.set_binding(sid, entry))
    logger.info(f"{args.target} -> {describe_binding(binding)}")


def cmd_apply(backend: StateReconciler, args: argparse.Namespace) -> None:
    with_session(backend, args.device, backend.apply_to_ram)


def cmd_revert(backend: StateReconciler, args: argparse.Namespace) -> None:
    with_session(backend, args.device, backend.revert_ram)


def cmd_commit(backend: StateReconciler, args: argparse.Namespace) -> None:
    def commit(session_id: str) -> SessionState:
        backend.commit(session_id)
        return backend.session_state(session_id)

    state = with_session(backend, args.device, commit)
    emit({"revision": state.committed.revision, "checksum": state.committed.checksum})


def cmd_run(backend: StateReconciler, args: argparse.Namespace) -> None:
    with_session(backend, args.device, lambda sid: backend.run(sid, args.script))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keyplane", description="Edit programmable input device configuration"
    )
    parser.add_argument(
        "--backend", choices=["file", "sql"], default=None, help="State backend"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("devices", help="List devices").set_defaults(func=cmd_devices)

    for name, func, help_text in [
        ("open", cmd_open, "Open a session and print the profile bundle"),
        ("show", cmd_show, "Print the persisted state tiers"),
        ("apply", cmd_apply, "Promote staged to applied"),
        ("revert", cmd_revert, "Reset applied and staged to committed"),
        ("commit", cmd_commit, "Commit applied (or staged)"),
    ]:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("device")
        p.set_defaults(func=func)

    p = sub.add_parser("set-binding", help="Set the binding of one target")
    p.add_argument("device")
    p.add_argument("target", help="Target id, e.g. key:1,1")
    p.add_argument("binding", help='Binding JSON, e.g. {"type": "none"}')
    p.add_argument("--layer", type=int, default=None, help="Layer id")
    p.set_defaults(func=cmd_set_binding)

    p = sub.add_parser("run", help="Run a script on the device")
    p.add_argument("device")
    p.add_argument("script")
    p.set_defaults(func=cmd_run)

    return parser


def main(argv: list[str] | None = None, settings: Settings | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings if settings is not None else Settings()
    if args.backend is not None:
        settings = settings.model_copy(update={"backend": args.backend})

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        backend = create_reconciler(create_config_store(settings))
        args.func(backend, args)
    except KeyplaneError as e:
        print(str(e), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
