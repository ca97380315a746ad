"""Database operations for the application."""

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from typing import Callable, Generator, List, Optional, Tuple

from accessgate.models import (
    AdminSession,
    Request,
    RequestStatus,
    RequestView,
    User,
    UserStatus,
    WizardStep,
    now_ts,
)

# Database schema
CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS users (
    user_id INTEGER PRIMARY KEY,
    username TEXT NULL,
    display_name TEXT NULL,
    status TEXT NOT NULL DEFAULT 'new',
    device_limit INTEGER NOT NULL DEFAULT 0,   -- 0 = unlimited
    devices_used INTEGER NOT NULL DEFAULT 0,   -- one-shot activation counter
    expires_at INTEGER NULL,                   -- NULL = no expiry
    menu_msg_id INTEGER NULL,                  -- the user's live menu message
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS requests (
    id TEXT PRIMARY KEY,
    user_id INTEGER NOT NULL REFERENCES users(user_id),
    status TEXT NOT NULL,
    created_at INTEGER NOT NULL
);

-- At most one pending request per user
CREATE UNIQUE INDEX IF NOT EXISTS idx_requests_one_pending
    ON requests(user_id) WHERE status = 'pending';

CREATE INDEX IF NOT EXISTS idx_requests_status_created
    ON requests(status, created_at);

CREATE TABLE IF NOT EXISTS admin_sessions (
    req_id TEXT PRIMARY KEY,
    admin_id INTEGER NOT NULL,
    device_limit INTEGER NOT NULL,
    expires_days INTEGER NOT NULL,
    step TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS user_rotation_state (
    user_id INTEGER NOT NULL,
    stage TEXT NOT NULL,
    last_idx INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    PRIMARY KEY (user_id, stage)
);
"""

REQUEST_VIEW_SELECT = """
    SELECT r.id AS r_id, r.status AS r_status, r.created_at AS r_created_at, u.*
    FROM requests r
    JOIN users u ON r.user_id = u.user_id
"""


def _request_view_from_row(row: sqlite3.Row) -> RequestView:
    request = Request(
        request_id=row["r_id"],
        user_id=int(row["user_id"]),
        status=RequestStatus(row["r_status"]),
        created_at=int(row["r_created_at"]),
    )
    return RequestView(request=request, user=User.from_row(row))


class Database:
    """Handles database operations with proper connection management and error handling"""

    def __init__(self, db_file_path: str, clock: Callable[[], int] = now_ts):
        self.db_file = db_file_path
        self.clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database with required tables"""
        try:
            with self._get_connection() as conn:
                conn.executescript(CREATE_TABLE_SQL)
                conn.commit()
                self.logger.info(f"Database initialized successfully: {self.db_file}")
        except Exception as e:
            self.logger.critical(
                f"Failed to initialize database {self.db_file}: {str(e)}"
            )
            raise

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections with proper error handling"""
        conn = None
        try:
            conn = sqlite3.connect(self.db_file, timeout=10)
            conn.row_factory = sqlite3.Row
            yield conn
        except sqlite3.Error as e:
            self.logger.error(f"Database error ({self.db_file}): {str(e)}")
            raise
        finally:
            if conn:
                conn.close()

    # ---------- Users ----------

    def upsert_user(
        self, user_id: int, username: Optional[str], display_name: Optional[str]
    ) -> None:
        """Insert a new user, or refresh the display fields of an existing one."""
        now = self.clock()
        try:
            with self._get_connection() as conn:
                with conn:
                    conn.execute(
                        """
                        INSERT INTO users (user_id, username, display_name, status, created_at, updated_at)
                        VALUES (?, ?, ?, 'new', ?, ?)
                        ON CONFLICT(user_id) DO UPDATE SET
                            username = excluded.username,
                            display_name = excluded.display_name,
                            updated_at = excluded.updated_at
                        """,
                        (user_id, username, display_name, now, now),
                    )
        except Exception as e:
            self.logger.error(f"Error upserting user {user_id}: {str(e)}")
            raise

    def get_user(self, user_id: int) -> Optional[User]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE user_id = ?", (user_id,)
            ).fetchone()
        return User.from_row(row) if row else None

    def set_user_status(self, user_id: int, status: UserStatus) -> bool:
        """Set a user's status. A banned user keeps its status; returns False then."""
        self.logger.debug(f"Setting status '{status.value}' for user_id: {user_id}")
        try:
            with self._get_connection() as conn:
                with conn:
                    cursor = conn.execute(
                        "UPDATE users SET status = ?, updated_at = ? WHERE user_id = ? AND status != 'banned'",
                        (status.value, self.clock(), user_id),
                    )
                    updated = cursor.rowcount > 0
            if updated:
                self.logger.info(f"User {user_id} status set to '{status.value}'")
            return updated
        except Exception as e:
            self.logger.error(
                f"Error setting status '{status.value}' for user {user_id}: {str(e)}"
            )
            raise

    def grant_access(
        self, user_id: int, device_limit: int, expires_at: Optional[int]
    ) -> bool:
        """Approve a user with the given grant. devices_used is left untouched."""
        try:
            with self._get_connection() as conn:
                with conn:
                    cursor = conn.execute(
                        """
                        UPDATE users
                        SET status = 'approved', device_limit = ?, expires_at = ?, updated_at = ?
                        WHERE user_id = ? AND status != 'banned'
                        """,
                        (device_limit, expires_at, self.clock(), user_id),
                    )
                    granted = cursor.rowcount > 0
            if granted:
                self.logger.info(
                    f"Granted access to user {user_id}: device_limit={device_limit}, expires_at={expires_at}"
                )
            return granted
        except Exception as e:
            self.logger.error(f"Error granting access to user {user_id}: {str(e)}")
            raise

    def set_device_limit(self, user_id: int, device_limit: int) -> bool:
        try:
            with self._get_connection() as conn:
                with conn:
                    cursor = conn.execute(
                        "UPDATE users SET device_limit = ?, updated_at = ? WHERE user_id = ?",
                        (device_limit, self.clock(), user_id),
                    )
                    return cursor.rowcount > 0
        except Exception as e:
            self.logger.error(
                f"Error setting device limit for user {user_id}: {str(e)}"
            )
            raise

    def activate_device(self, user_id: int) -> bool:
        """Move devices_used from 0 to 1. Returns False when it was already non-zero."""
        try:
            with self._get_connection() as conn:
                with conn:
                    cursor = conn.execute(
                        "UPDATE users SET devices_used = 1, updated_at = ? WHERE user_id = ? AND devices_used = 0",
                        (self.clock(), user_id),
                    )
                    activated = cursor.rowcount > 0
            if activated:
                self.logger.info(f"First device activated for user {user_id}")
            return activated
        except Exception as e:
            self.logger.error(f"Error activating device for user {user_id}: {str(e)}")
            raise

    def swap_menu_message(self, user_id: int, message_id: int) -> Optional[int]:
        """Record a new live menu message and return the one it replaced, if any."""
        try:
            with self._get_connection() as conn:
                with conn:
                    conn.execute("BEGIN IMMEDIATE")
                    row = conn.execute(
                        "SELECT menu_msg_id FROM users WHERE user_id = ?", (user_id,)
                    ).fetchone()
                    conn.execute(
                        "UPDATE users SET menu_msg_id = ?, updated_at = ? WHERE user_id = ?",
                        (message_id, self.clock(), user_id),
                    )
            previous = row["menu_msg_id"] if row else None
            return previous if previous != message_id else None
        except Exception as e:
            self.logger.error(
                f"Error recording menu message for user {user_id}: {str(e)}"
            )
            raise

    def clear_menu_message(self, user_id: int, expected_message_id: int) -> bool:
        """Forget the live menu message, but only if it is still the expected one."""
        try:
            with self._get_connection() as conn:
                with conn:
                    cursor = conn.execute(
                        "UPDATE users SET menu_msg_id = NULL, updated_at = ? WHERE user_id = ? AND menu_msg_id = ?",
                        (self.clock(), user_id, expected_message_id),
                    )
                    return cursor.rowcount > 0
        except Exception as e:
            self.logger.error(
                f"Error clearing menu message for user {user_id}: {str(e)}"
            )
            raise

    # ---------- Requests ----------

    def insert_pending_request(self, user_id: int) -> Tuple[str, bool]:
        """
        Create a pending request unless the user already has one.

        The partial unique index makes the check and the insert a single atomic
        statement.

        Returns:
            (request_id, created): the new id and True, or the existing pending id and False
        """
        request_id = str(uuid.uuid4())
        try:
            with self._get_connection() as conn:
                with conn:
                    cursor = conn.execute(
                        "INSERT OR IGNORE INTO requests (id, user_id, status, created_at) VALUES (?, ?, 'pending', ?)",
                        (request_id, user_id, self.clock()),
                    )
                    if cursor.rowcount > 0:
                        self.logger.info(
                            f"Created pending request {request_id} for user {user_id}"
                        )
                        return request_id, True
                    row = conn.execute(
                        "SELECT id FROM requests WHERE user_id = ? AND status = 'pending'",
                        (user_id,),
                    ).fetchone()
            if row is None:
                raise sqlite3.IntegrityError(
                    f"Request insert for user {user_id} was ignored but no pending request exists"
                )
            self.logger.info(
                f"User {user_id} already has pending request {row['id']}"
            )
            return row["id"], False
        except Exception as e:
            self.logger.error(
                f"Error creating request for user {user_id}: {str(e)}"
            )
            raise

    def get_request(self, request_id: str) -> Optional[Request]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM requests WHERE id = ?", (request_id,)
            ).fetchone()
        return Request.from_row(row) if row else None

    def get_request_view(self, request_id: str) -> Optional[RequestView]:
        with self._get_connection() as conn:
            row = conn.execute(
                REQUEST_VIEW_SELECT + " WHERE r.id = ?", (request_id,)
            ).fetchone()
        return _request_view_from_row(row) if row else None

    def update_request_status_if_pending(
        self, request_id: str, status: RequestStatus
    ) -> bool:
        """Conditional pending -> status update. Exactly one concurrent caller can win."""
        try:
            with self._get_connection() as conn:
                with conn:
                    cursor = conn.execute(
                        "UPDATE requests SET status = ? WHERE id = ? AND status = 'pending'",
                        (status.value, request_id),
                    )
                    won = cursor.rowcount > 0
            if won:
                self.logger.info(f"Request {request_id} moved to '{status.value}'")
            return won
        except Exception as e:
            self.logger.error(
                f"Error moving request {request_id} to '{status.value}': {str(e)}"
            )
            raise

    def supersede_and_reopen(self, request_id: str) -> Optional[str]:
        """
        Mark a pending request superseded and open a fresh pending one for the same user.

        Both writes share one transaction. Returns the new request id, or None when
        the old request was not pending (nothing is written then).
        """
        new_request_id = str(uuid.uuid4())
        try:
            with self._get_connection() as conn:
                with conn:
                    cursor = conn.execute(
                        "UPDATE requests SET status = 'superseded' WHERE id = ? AND status = 'pending'",
                        (request_id,),
                    )
                    if cursor.rowcount == 0:
                        return None
                    conn.execute(
                        """
                        INSERT INTO requests (id, user_id, status, created_at)
                        SELECT ?, user_id, 'pending', ? FROM requests WHERE id = ?
                        """,
                        (new_request_id, self.clock(), request_id),
                    )
            self.logger.info(
                f"Request {request_id} superseded by new request {new_request_id}"
            )
            return new_request_id
        except Exception as e:
            self.logger.error(f"Error reopening request {request_id}: {str(e)}")
            raise

    def list_request_views(
        self, status: RequestStatus, newest_first: bool = False
    ) -> List[RequestView]:
        order = "DESC" if newest_first else "ASC"
        with self._get_connection() as conn:
            rows = conn.execute(
                REQUEST_VIEW_SELECT + f" WHERE r.status = ? ORDER BY r.created_at {order}",
                (status.value,),
            ).fetchall()
        return [_request_view_from_row(row) for row in rows]

    # ---------- Admin sessions ----------

    def upsert_session(
        self,
        request_id: str,
        operator_id: int,
        device_limit: int,
        expires_days: int,
        step: WizardStep,
    ) -> None:
        """Create the wizard session for a request, or reset the existing one."""
        now = self.clock()
        try:
            with self._get_connection() as conn:
                with conn:
                    conn.execute(
                        """
                        INSERT INTO admin_sessions (req_id, admin_id, device_limit, expires_days, step, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(req_id) DO UPDATE SET
                            admin_id = excluded.admin_id,
                            device_limit = excluded.device_limit,
                            expires_days = excluded.expires_days,
                            step = excluded.step,
                            updated_at = excluded.updated_at
                        """,
                        (request_id, operator_id, device_limit, expires_days, step.value, now, now),
                    )
        except Exception as e:
            self.logger.error(f"Error saving session for request {request_id}: {str(e)}")
            raise

    def get_session(self, request_id: str) -> Optional[AdminSession]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM admin_sessions WHERE req_id = ?", (request_id,)
            ).fetchone()
        return AdminSession.from_row(row) if row else None

    def update_session(
        self,
        request_id: str,
        step: WizardStep,
        device_limit: Optional[int] = None,
        expires_days: Optional[int] = None,
    ) -> bool:
        """Move a session to a step, optionally overwriting working values. Re-stamps updated_at."""
        fields = ["step = ?"]
        values: list = [step.value]
        if device_limit is not None:
            fields.append("device_limit = ?")
            values.append(device_limit)
        if expires_days is not None:
            fields.append("expires_days = ?")
            values.append(expires_days)
        values.extend([self.clock(), request_id])
        try:
            with self._get_connection() as conn:
                with conn:
                    cursor = conn.execute(
                        f"UPDATE admin_sessions SET {', '.join(fields)}, updated_at = ? WHERE req_id = ?",
                        values,
                    )
                    return cursor.rowcount > 0
        except Exception as e:
            self.logger.error(f"Error updating session for request {request_id}: {str(e)}")
            raise

    def delete_session(self, request_id: str) -> bool:
        try:
            with self._get_connection() as conn:
                with conn:
                    cursor = conn.execute(
                        "DELETE FROM admin_sessions WHERE req_id = ?", (request_id,)
                    )
                    return cursor.rowcount > 0
        except Exception as e:
            self.logger.error(f"Error deleting session for request {request_id}: {str(e)}")
            raise

    def delete_sessions_older_than(self, cutoff: int) -> int:
        """Delete sessions whose updated_at is before cutoff. Requests are not touched."""
        try:
            with self._get_connection() as conn:
                with conn:
                    cursor = conn.execute(
                        "DELETE FROM admin_sessions WHERE updated_at < ?", (cutoff,)
                    )
                    return cursor.rowcount
        except Exception as e:
            self.logger.error(f"Error deleting stale sessions: {str(e)}")
            raise

    # ---------- Rotation state ----------

    def get_rotation_index(self, user_id: int, stage: str) -> Optional[int]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT last_idx FROM user_rotation_state WHERE user_id = ? AND stage = ?",
                (user_id, stage),
            ).fetchone()
        return int(row["last_idx"]) if row else None

    def set_rotation_index(self, user_id: int, stage: str, index: int) -> None:
        with self._get_connection() as conn:
            with conn:
                conn.execute(
                    """
                    INSERT INTO user_rotation_state (user_id, stage, last_idx, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(user_id, stage) DO UPDATE SET
                        last_idx = excluded.last_idx,
                        updated_at = excluded.updated_at
                    """,
                    (user_id, stage, index, self.clock()),
                )

    # ---------- Reporting ----------

    def count_users(self, status: Optional[UserStatus] = None) -> int:
        with self._get_connection() as conn:
            if status is None:
                row = conn.execute("SELECT COUNT(*) AS count FROM users").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS count FROM users WHERE status = ?",
                    (status.value,),
                ).fetchone()
        return int(row["count"])

    def count_requests(self, status: RequestStatus) -> int:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM requests WHERE status = ?",
                (status.value,),
            ).fetchone()
        return int(row["count"])

    def count_expiring(self, after: int, before: int) -> int:
        """Approved users whose expiry falls strictly between after and before."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM users WHERE status = 'approved' AND expires_at > ? AND expires_at < ?",
                (after, before),
            ).fetchone()
        return int(row["count"])

    def list_users(
        self, status: Optional[UserStatus] = None, limit: int = 200
    ) -> List[User]:
        """Users ordered by most recently updated, optionally filtered by status."""
        try:
            with self._get_connection() as conn:
                if status is None:
                    rows = conn.execute(
                        "SELECT * FROM users ORDER BY updated_at DESC LIMIT ?", (limit,)
                    ).fetchall()
                else:
                    rows = conn.execute(
                        "SELECT * FROM users WHERE status = ? ORDER BY updated_at DESC LIMIT ?",
                        (status.value, limit),
                    ).fetchall()
            return [User.from_row(row) for row in rows]
        except Exception as e:
            self.logger.error(f"Error listing users: {str(e)}", exc_info=True)
            return []
