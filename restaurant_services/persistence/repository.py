"""
restaurant_services.persistence.repository -- Where the state lives between runs.

Responsibility:
    ``AppRepository`` is the storage port the store saves through.  Two
    adapters: a JSON file (the local-storage backend) and a SQLAlchemy
    table (the database backend).  Both store the encoded state together
    with its schema version and migrate older payloads on load.

Invariants enforced:
    - Writes are all-or-nothing: the JSON file is replaced atomically, the
      database row is written in one transaction.
    - The database payload is checked against its SHA-256 checksum before
      it is decoded.
    - ``load`` returns None only when nothing has been saved.

Failure modes:
    - StateLoadError: unreadable JSON, missing envelope, checksum mismatch
      or a payload that does not decode.
    - UnsupportedSchemaVersionError: data written by a newer schema.
"""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
from abc import ABC, abstractmethod
from decimal import Decimal
from pathlib import Path

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from restaurant_kernel.db.engine import get_session_factory
from restaurant_kernel.db.models import AppStateSnapshot
from restaurant_kernel.domain.clock import Clock, SystemClock
from restaurant_kernel.exceptions import StateLoadError
from restaurant_kernel.logging_config import get_logger
from restaurant_kernel.utils.hashing import canonicalize_json
from restaurant_services.persistence.codec import decode_state, encode_state
from restaurant_services.persistence.migrations import CURRENT_SCHEMA_VERSION, migrate
from restaurant_services.state import RestaurantState

logger = get_logger("persistence.repository")


class AppRepository(ABC):
    """Storage port for the application state."""

    @abstractmethod
    def load(self) -> RestaurantState | None:
        """The saved state, migrated to the current schema, or None."""

    @abstractmethod
    def save(self, state: RestaurantState) -> None:
        """Persist ``state`` at the current schema version."""

    @abstractmethod
    def clear(self) -> None:
        """Remove the saved state."""


def _load_payload(payload: object, version: object, source: str) -> RestaurantState:
    if not isinstance(payload, dict):
        raise StateLoadError(source, "state is not an object")
    if not isinstance(version, int) or isinstance(version, bool):
        raise StateLoadError(source, f"invalid schema version {version!r}")
    state = decode_state(migrate(payload, version), source)
    logger.info(
        "state_loaded",
        extra={"source": source, "schema_version": version, "sale_count": len(state.sales)},
    )
    return state


class JsonFileAppRepository(AppRepository):
    """
    State stored as ``{"state": ..., "version": N}`` in one JSON file.

    The file is written to a temporary sibling and renamed over the target.
    """

    def __init__(self, path: Path | str):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> RestaurantState | None:
        if not self._path.exists():
            return None
        source = str(self._path)
        try:
            envelope = json.loads(self._path.read_text(encoding="utf-8"), parse_float=Decimal)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise StateLoadError(source, f"invalid JSON: {exc}") from exc
        if not isinstance(envelope, dict) or "state" not in envelope:
            raise StateLoadError(source, "missing state envelope")
        # Files written before versioning carry no version
        return _load_payload(envelope["state"], envelope.get("version", 0), source)

    def save(self, state: RestaurantState) -> None:
        envelope = {"state": encode_state(state), "version": CURRENT_SCHEMA_VERSION}
        text = json.dumps(envelope, ensure_ascii=False, indent=2)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_name, self._path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("state_saved", extra={"path": str(self._path), "bytes": len(text)})

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
        logger.info("state_cleared", extra={"path": str(self._path)})


class SqlAlchemyAppRepository(AppRepository):
    """
    State stored as one ``app_state_snapshots`` row per ``state_key``.

    Contract:
        Receives a session factory; defaults to the one configured by
        ``init_engine_from_url``.  Tables must exist (``create_tables``).
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        state_key: str = "default",
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._state_key = state_key
        self._clock = clock or SystemClock()

    def _row(self, session: Session) -> AppStateSnapshot | None:
        return session.execute(
            select(AppStateSnapshot).where(AppStateSnapshot.state_key == self._state_key)
        ).scalar_one_or_none()

    def load(self) -> RestaurantState | None:
        source = f"app_state_snapshots[{self._state_key}]"
        with self._session_factory() as session:
            row = self._row(session)
            if row is None:
                return None
            payload_text, checksum, version = row.payload, row.checksum, row.schema_version

        actual = hashlib.sha256(payload_text.encode("utf-8")).hexdigest()
        if actual != checksum:
            logger.critical(
                "state_checksum_mismatch",
                extra={"state_key": self._state_key, "expected": checksum, "actual": actual},
            )
            raise StateLoadError(source, "checksum mismatch")
        try:
            payload = json.loads(payload_text, parse_float=Decimal)
        except json.JSONDecodeError as exc:
            raise StateLoadError(source, f"invalid JSON: {exc}") from exc
        return _load_payload(payload, version, source)

    def save(self, state: RestaurantState) -> None:
        payload_text = canonicalize_json(encode_state(state))
        checksum = hashlib.sha256(payload_text.encode("utf-8")).hexdigest()
        saved_at = self._clock.now_utc()
        with self._session_factory() as session, session.begin():
            row = self._row(session)
            if row is None:
                session.add(AppStateSnapshot(
                    state_key=self._state_key,
                    schema_version=CURRENT_SCHEMA_VERSION,
                    payload=payload_text,
                    checksum=checksum,
                    saved_at=saved_at,
                ))
            else:
                row.schema_version = CURRENT_SCHEMA_VERSION
                row.payload = payload_text
                row.checksum = checksum
                row.saved_at = saved_at
        logger.debug(
            "state_saved",
            extra={"state_key": self._state_key, "checksum": checksum},
        )

    def clear(self) -> None:
        with self._session_factory() as session, session.begin():
            session.execute(
                delete(AppStateSnapshot).where(AppStateSnapshot.state_key == self._state_key)
            )
        logger.info("state_cleared", extra={"state_key": self._state_key})
