import logging
from pathlib import Path
from typing import Any, Callable

import msgspec
from sqlalchemy import JSON
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from keyplane.base import ConfigStore
from keyplane.errors import ParseError, StorageError
from keyplane.impl.files import read_json
from keyplane.models import DeviceInfo, SeedBundle, SessionState

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class SessionStateModel(Base):
    __tablename__ = "session_states"
    device_id: Mapped[str] = mapped_column(primary_key=True)
    version: Mapped[int]
    session_id: Mapped[str]
    document: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)


class SqlConfigStore(ConfigStore):
    """
    Seed data comes from files under `seed_root`, exactly as for the file
    store. Session states live in the `session_states` table, one row per
    device, each save being a single transaction.
    """

    def __init__(
        self, session_maker: Callable[[], Session], seed_root: str | Path
    ) -> None:
        self.session_maker = session_maker
        self.seed_root = Path(seed_root).absolute()

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("SqlConfigStore(...)")
        else:
            with p.group(4, "SqlConfigStore(", ")"):
                p.breakable()
                p.text(f"seed_root={self.seed_root},")
                p.breakable()

    def load_device_catalog(self) -> list[DeviceInfo]:
        return read_json(self.seed_root / "devices.json", list[DeviceInfo])

    def load_seed_bundle(self, device_id: str) -> SeedBundle:
        path = self.seed_root / "profiles" / device_id / "bundle.json"
        return read_json(path, SeedBundle)

    def load_session_state(self, device_id: str) -> SessionState | None:
        try:
            with self.session_maker() as session:
                row = session.get(SessionStateModel, device_id)
                document = None if row is None else row.document
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read state for {device_id}: {e}") from e

        if document is None:
            return None
        try:
            state = msgspec.convert(document, SessionState)
        except msgspec.ValidationError as e:
            raise ParseError(f"Failed to parse state for {device_id}: {e}") from e
        return self._upgrade(device_id, state)

    def save_session_state(self, device_id: str, state: SessionState) -> None:
        document = msgspec.to_builtins(state)
        try:
            with self.session_maker() as session, session.begin():
                row = session.get(SessionStateModel, device_id)
                if row is None:
                    row = SessionStateModel(device_id=device_id)
                    session.add(row)
                row.version = state.version
                row.session_id = state.session_id
                row.document = document
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to write state for {device_id}: {e}") from e
        logger.debug(f"Saved state for {device_id}")

    def ensure_seeded(self) -> None:
        try:
            with self.session_maker() as session:
                Base.metadata.create_all(session.get_bind())
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to create state tables: {e}") from e


def create_sql_config_store(
    session_maker: Callable[[], Session], seed_root: str | Path
) -> ConfigStore:
    return SqlConfigStore(session_maker, seed_root)
