"""
Peer Registry

Owns the set of authorized peers. Peers are created only by add() and
destroyed only by remove(); the one in-place mutation is usage accounting
through record_activity(), fed by the daemon adapter.

Usage:
    from wg_gateway.peer_registry import PeerRegistry

    registry = PeerRegistry(db_path)
    registry.add(Peer(id="laptop", public_key=key, allowed_ips="10.0.0.2/32"))
    registry.record_activity("laptop", 4096)
    peers = registry.list()
"""

import ipaddress
import logging
import sqlite3
import time
from pathlib import Path
from threading import Lock
from typing import List, Optional

from wg_gateway.errors import (
    DuplicateIdError,
    DuplicatePublicKeyError,
    InvalidPeerError,
    NotFoundError,
)
from wg_gateway.keygen import validate_public_key
from wg_gateway.models import Peer
from wg_gateway.storage import SQLiteStore

logger = logging.getLogger(__name__)


def validate_allowed_ips(value: str) -> bool:
    """True for a single CIDR (IPv4 or IPv6) such as '10.0.0.2/32'"""
    if not isinstance(value, str) or '/' not in value:
        return False
    try:
        ipaddress.ip_interface(value.strip())
        return True
    except ValueError:
        return False


class PeerRegistry(SQLiteStore):
    """
    Peer store with identity uniqueness.

    Writes serialize on one lock per registry. Reads open their own
    connection and never wait on the lock.
    """

    def __init__(self, db_path: Path | str, enforce_unique_keys: bool = True):
        self.enforce_unique_keys = enforce_unique_keys
        self._write_lock = Lock()
        super().__init__(db_path)

    def _init_schema(self):
        with self._connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS peer (
                    id TEXT PRIMARY KEY,
                    public_key TEXT NOT NULL,
                    allowed_ips TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    last_seen INTEGER,
                    data_usage INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_peer_public_key ON peer(public_key)")

    @staticmethod
    def _row_to_peer(row: sqlite3.Row) -> Peer:
        return Peer(
            id=row['id'],
            public_key=row['public_key'],
            allowed_ips=row['allowed_ips'],
            created_at=row['created_at'],
            last_seen=row['last_seen'],
            data_usage=row['data_usage'],
        )

    def _validate(self, peer: Peer):
        if not isinstance(peer.id, str) or not peer.id.strip():
            raise InvalidPeerError("Peer id is required")
        if not validate_public_key(peer.public_key):
            raise InvalidPeerError(f"Invalid public key for peer: {peer.id}")
        if not validate_allowed_ips(peer.allowed_ips):
            raise InvalidPeerError(f"Invalid allowed IPs for peer {peer.id}: {peer.allowed_ips!r}")
        created_at = peer.created_at
        if created_at is not None and (isinstance(created_at, bool) or not isinstance(created_at, int)):
            raise InvalidPeerError(f"createdAt must be integer nanoseconds for peer: {peer.id}")

    # =========================================================================
    # COMMANDS
    # =========================================================================

    def add(self, peer: Peer) -> Peer:
        """
        Register a new peer.

        The caller substitutes a generated key before calling when the
        owner supplied none; the registry never invents one. A new peer
        always starts with no activity and zero usage.

        Raises:
            InvalidPeerError: malformed id, key or allowed IPs
            DuplicateIdError: id already registered
            DuplicatePublicKeyError: key already registered (when enforced)
        """
        self._validate(peer)

        stored = Peer(
            id=peer.id,
            public_key=peer.public_key,
            allowed_ips=peer.allowed_ips.strip(),
            created_at=peer.created_at if peer.created_at is not None else time.time_ns(),
            last_seen=None,
            data_usage=0,
        )

        with self._write_lock:
            with self._connection() as conn:
                if conn.execute("SELECT 1 FROM peer WHERE id = ?", (stored.id,)).fetchone():
                    logger.warning(f"Rejected duplicate peer id: {stored.id}")
                    raise DuplicateIdError(stored.id)

                if self.enforce_unique_keys:
                    owner = conn.execute(
                        "SELECT id FROM peer WHERE public_key = ?", (stored.public_key,)
                    ).fetchone()
                    if owner:
                        logger.warning(f"Rejected peer {stored.id}: key already used by {owner['id']}")
                        raise DuplicatePublicKeyError(stored.public_key, owner['id'])

                conn.execute("""
                    INSERT INTO peer (id, public_key, allowed_ips, created_at, last_seen, data_usage)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (stored.id, stored.public_key, stored.allowed_ips,
                      stored.created_at, stored.last_seen, stored.data_usage))

        logger.info(f"Added peer {stored.id} ({stored.allowed_ips})")
        return stored

    def remove(self, peer_id: str) -> Peer:
        """Delete a peer unconditionally. Raises NotFoundError if absent."""
        with self._write_lock:
            with self._connection() as conn:
                row = conn.execute("SELECT * FROM peer WHERE id = ?", (peer_id,)).fetchone()
                if not row:
                    raise NotFoundError(peer_id)
                conn.execute("DELETE FROM peer WHERE id = ?", (peer_id,))

        logger.info(f"Removed peer {peer_id}")
        return self._row_to_peer(row)

    def record_activity(self, peer_id: str, bytes_delta: int, seen_at: Optional[int] = None) -> bool:
        """
        Apply an activity report from the tunnel daemon.

        Advances last_seen (never backwards) and adds bytes_delta to
        data_usage. Unknown ids are ignored so a stale report cannot
        create a phantom peer.

        Returns:
            True if a peer was updated
        """
        seen_at = seen_at if seen_at is not None else time.time_ns()
        delta = max(0, int(bytes_delta))

        with self._write_lock:
            with self._connection() as conn:
                cursor = conn.execute("""
                    UPDATE peer
                    SET last_seen = MAX(COALESCE(last_seen, 0), ?),
                        data_usage = data_usage + ?
                    WHERE id = ?
                """, (seen_at, delta, peer_id))
                updated = cursor.rowcount > 0

        if not updated:
            logger.debug(f"Ignored activity for unknown peer: {peer_id}")
        return updated

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get(self, peer_id: str) -> Peer:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM peer WHERE id = ?", (peer_id,)).fetchone()
        if not row:
            raise NotFoundError(peer_id)
        return self._row_to_peer(row)

    def list(self) -> List[Peer]:
        """All peers in insertion order"""
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM peer ORDER BY rowid").fetchall()
        return [self._row_to_peer(row) for row in rows]

    def find_by_public_key(self, public_key: str) -> Optional[Peer]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM peer WHERE public_key = ? ORDER BY rowid LIMIT 1", (public_key,)
            ).fetchone()
        return self._row_to_peer(row) if row else None

    def count(self) -> int:
        with self._connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM peer").fetchone()[0]
