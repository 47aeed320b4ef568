"""
Credential Vault

Holds the single set of relay-provider credentials and runs relay
discovery with them. Credentials are forwarded to the provider verbatim,
so they are stored as given rather than hashed.

fetch_relays() is the only operation with a non-local failure domain. It
is bounded by a hard deadline, and whatever goes wrong upstream surfaces
as UpstreamUnavailable without touching the stored credentials.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from threading import Lock
from typing import List, Optional

from wg_gateway.errors import InvalidCredentialsError, NoCredentialsError, UpstreamUnavailable
from wg_gateway.models import ProtonVpnCredentials, Relay
from wg_gateway.relays import RelayDirectory, TargetRegion, rank_relays
from wg_gateway.storage import SQLiteStore

logger = logging.getLogger(__name__)


class CredentialVault(SQLiteStore):
    """Singleton credential store plus relay discovery"""

    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        db_path: Path | str,
        directory: RelayDirectory,
        target: Optional[TargetRegion] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.directory = directory
        self.target = target or TargetRegion()
        self.timeout = timeout
        self._write_lock = Lock()
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix='relay-fetch')
        self._last_relays: List[Relay] = []
        super().__init__(db_path)

    def _init_schema(self):
        with self._connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS relay_credentials (
                    slot INTEGER PRIMARY KEY CHECK (slot = 1),
                    username TEXT NOT NULL,
                    password TEXT NOT NULL,
                    saved_at INTEGER NOT NULL
                )
            """)

    def save(self, credentials: ProtonVpnCredentials) -> ProtonVpnCredentials:
        """Replace the stored credentials in one statement"""
        if not credentials.username or not credentials.password:
            raise InvalidCredentialsError("Username and password are required")

        stored = ProtonVpnCredentials(
            username=credentials.username,
            password=credentials.password,
            saved_at=time.time_ns(),
        )
        with self._write_lock:
            with self._connection() as conn:
                conn.execute("""
                    INSERT OR REPLACE INTO relay_credentials (slot, username, password, saved_at)
                    VALUES (1, ?, ?, ?)
                """, (stored.username, stored.password, stored.saved_at))

        logger.info(f"Saved relay provider credentials for {stored.username}")
        return stored

    def get(self) -> Optional[ProtonVpnCredentials]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM relay_credentials WHERE slot = 1").fetchone()
        if not row:
            return None
        return ProtonVpnCredentials(
            username=row['username'],
            password=row['password'],
            saved_at=row['saved_at'],
        )

    def clear(self) -> bool:
        with self._write_lock:
            with self._connection() as conn:
                cursor = conn.execute("DELETE FROM relay_credentials")
                removed = cursor.rowcount > 0
        if removed:
            logger.info("Cleared relay provider credentials")
        return removed

    @property
    def last_relays(self) -> List[Relay]:
        """Ranked result of the last successful fetch"""
        return list(self._last_relays)

    def fetch_relays(self) -> List[Relay]:
        """
        Discover relays with the stored credentials.

        Returns:
            WireGuard-capable relays, best first

        Raises:
            NoCredentialsError: save() was never called
            UpstreamUnavailable: directory failed or missed the deadline
        """
        credentials = self.get()
        if credentials is None:
            raise NoCredentialsError()

        future = self._executor.submit(self.directory.fetch, credentials, self.timeout)
        try:
            relays = future.result(timeout=self.timeout)
        except FutureTimeoutError as e:
            future.cancel()
            logger.error(f"Relay discovery timed out after {self.timeout}s")
            raise UpstreamUnavailable(f"Relay directory timed out after {self.timeout}s") from e
        except UpstreamUnavailable as e:
            logger.error(f"Relay discovery failed: {e.message}")
            raise
        except Exception as e:
            logger.exception("Relay directory raised unexpectedly")
            raise UpstreamUnavailable(f"Relay directory failed: {e}") from e

        ranked = rank_relays(relays, self.target)
        self._last_relays = ranked
        logger.info(f"Fetched {len(relays)} relays, {len(ranked)} WireGuard-capable")
        return ranked

    def close(self):
        self._executor.shutdown(wait=False)
