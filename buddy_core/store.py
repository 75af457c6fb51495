"""
Study Store Module

This module handles persistence for users, face embeddings and study content.

Everything is stored in a single SQLite database:
- users: Local user records linked to the identity provider by external_id
- face_embeddings: Enrolled face embeddings (float32 BLOBs), one table for
  all embeddings, never stored on the user row
- learning_plans / quiz_results: Saved completion output
- notes / note_versions: Notes with restorable snapshots
- auth_logs: Authentication attempt history

The StudyStore class provides CRUD operations scoped to the owning user:
- create_user / get_user / upsert_user_from_identity / delete_user
- add_face_embedding / list_face_embeddings (for 1:N identification)
- save_learning_plan / save_quiz_result / list_* for history
- create_note / update_note / restore_note_version (versioned writes)

Usage:
    from buddy_core.store import StudyStore

    store = StudyStore(db_path="storage/study_buddy.sqlite")
    user = store.create_user(email="alice@example.com", external_id="user_2abc")
    store.add_face_embedding(user["user_id"], embedding)
    note = store.create_note(user["user_id"], title="Cells", content="<p>...</p>")
"""

import json
import sqlite3
import threading
import uuid
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

# Setup logging
logger = logging.getLogger(__name__)

USER_ACTIVE = "active"
USER_PENDING = "pending"

DEFAULT_NOTE_TITLE = "Untitled Note"


class StoreError(Exception):
    """Base class for store failures."""


class NotFoundError(StoreError):
    """Raised when a keyed lookup misses or the record belongs to another user."""


class ConflictError(StoreError):
    """Raised when a write would violate a uniqueness constraint."""


def generate_user_id() -> str:
    """
    Generate a unique user ID.

    Format: "usr_" followed by 8 random hex characters.

    Returns:
        A unique user ID string (e.g., "usr_a1b2c3d4").
    """
    return f"usr_{uuid.uuid4().hex[:8]}"


def generate_id(prefix: str) -> str:
    """Generate a record ID such as "note_" followed by 16 random hex characters."""
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _encode_embedding(embedding: Sequence[float]) -> Tuple[bytes, int]:
    vector = np.asarray(embedding, dtype=np.float32).ravel()
    return vector.tobytes(), int(vector.shape[0])


def _decode_embedding(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32).copy()


class StudyStore:
    """
    Manages persistence of users, embeddings and study content.

    The manager handles:
    - Creating the database directory if it doesn't exist
    - Initializing the SQLite schema on first use
    - Ownership-scoped CRUD operations
    - Atomic multi-statement writes (note versioning)
    - Logging authentication attempts

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str):
        """
        Initialize the StudyStore.

        Creates the database and schema if they don't exist.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

        logger.info(f"StudyStore initialized: db={self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get or create the SQLite connection.

        Returns:
            SQLite connection with Row factory for dict-like access.
        """
        if self._conn is None:
            # Requests may be served from worker threads; access is serialized by _lock.
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Run a block of statements as one transaction.

        Commits when the block exits normally and rolls back on any exception.
        Uniqueness violations are re-raised as ConflictError.
        """
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                yield cursor
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise ConflictError(str(e)) from e
            except Exception:
                conn.rollback()
                raise

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            cursor = self._get_connection().cursor()
            cursor.execute(sql, params)
            return cursor.fetchall()

    def _query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        rows = self._query(sql, params)
        return rows[0] if rows else None

    def _init_database(self) -> None:
        """
        Initialize the SQLite database schema.

        Creates tables if they don't exist.
        """
        with self._transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    external_id TEXT UNIQUE,
                    email TEXT UNIQUE,
                    first_name TEXT,
                    last_name TEXT,
                    status TEXT NOT NULL DEFAULT 'active',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS face_embeddings (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    dim INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS learning_plans (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    topic TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS quiz_results (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    topic TEXT NOT NULL,
                    questions TEXT NOT NULL,
                    answers TEXT NOT NULL,
                    score REAL NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS notes (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    tags TEXT NOT NULL DEFAULT '[]',
                    is_pinned INTEGER NOT NULL DEFAULT 0,
                    is_starred INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS note_versions (
                    id TEXT PRIMARY KEY,
                    note_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    tags TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (note_id) REFERENCES notes(id) ON DELETE CASCADE
                )
            """)

            # Table for tracking authentication attempts
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS auth_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT,
                    method TEXT NOT NULL,
                    score REAL,
                    success BOOLEAN NOT NULL,
                    timestamp TEXT NOT NULL
                )
            """)

            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_face_embeddings_user ON face_embeddings(user_id)"
            )
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_notes_user ON notes(user_id)")
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_note_versions_note ON note_versions(note_id)"
            )

        logger.debug("Database schema initialized")

    # ============================================================
    # Users
    # ============================================================

    @staticmethod
    def _user_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "user_id": row["user_id"],
            "external_id": row["external_id"],
            "email": row["email"],
            "first_name": row["first_name"],
            "last_name": row["last_name"],
            "status": row["status"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    def create_user(
        self,
        email: Optional[str],
        external_id: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        status: str = USER_ACTIVE,
    ) -> Dict[str, Any]:
        """
        Create a local user record.

        Args:
            email: Primary email address (unique).
            external_id: Identity provider user ID (unique), if known.
            first_name: Optional given name.
            last_name: Optional family name.
            status: "active" or "pending".

        Returns:
            The created user as a dictionary.

        Raises:
            ConflictError: If the email or external_id is already taken.
        """
        user_id = generate_user_id()
        now = _now()

        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO users
                (user_id, external_id, email, first_name, last_name, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (user_id, external_id, email, first_name, last_name, status, now, now))

        logger.info(f"Created user {user_id} (status={status})")
        return self.get_user(user_id)

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a user by local ID.

        Args:
            user_id: The user's unique identifier.

        Returns:
            Dictionary with user details, or None if not found.
        """
        row = self._query_one("SELECT * FROM users WHERE user_id = ?", (user_id,))
        return self._user_to_dict(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """Get a user by email address, or None if not found."""
        row = self._query_one("SELECT * FROM users WHERE email = ?", (email,))
        return self._user_to_dict(row) if row else None

    def get_user_by_external_id(self, external_id: str) -> Optional[Dict[str, Any]]:
        """Get a user by identity provider ID, or None if not found."""
        row = self._query_one("SELECT * FROM users WHERE external_id = ?", (external_id,))
        return self._user_to_dict(row) if row else None

    def update_user(self, user_id: str, **fields: Any) -> Dict[str, Any]:
        """
        Update selected columns of a user.

        Args:
            user_id: The user's unique identifier.
            **fields: Any of email, external_id, first_name, last_name, status.

        Returns:
            The updated user.

        Raises:
            NotFoundError: If the user doesn't exist.
            ConflictError: If the new email or external_id is taken.
        """
        allowed = {"email", "external_id", "first_name", "last_name", "status"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)}")

        assignments = [f"{name} = ?" for name in fields]
        params = list(fields.values())
        assignments.append("updated_at = ?")
        params.extend([_now(), user_id])

        with self._transaction() as cursor:
            cursor.execute(
                f"UPDATE users SET {', '.join(assignments)} WHERE user_id = ?", params
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"User {user_id} not found")

        return self.get_user(user_id)

    def upsert_user_from_identity(
        self,
        external_id: str,
        email: Optional[str],
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create or refresh the local user for an identity provider account.

        Lookup order is external_id, then email (which links a local row
        created before the identity existed, e.g. a pending face sign-up).
        A pending row claimed this way loses its face embeddings: anyone can
        enroll a pending face for any email, so only the face sign-up flow
        (activate_pending_user) may carry one forward.

        Returns:
            The created or updated user.
        """
        existing = self.get_user_by_external_id(external_id)
        if existing is None and email:
            existing = self.get_user_by_email(email)

        if existing is None:
            return self.create_user(
                email=email,
                external_id=external_id,
                first_name=first_name,
                last_name=last_name,
            )

        fields: Dict[str, Any] = {
            "external_id": external_id,
            "first_name": first_name,
            "last_name": last_name,
            "status": USER_ACTIVE,
        }
        if email:
            fields["email"] = email

        assignments = [f"{name} = ?" for name in fields]
        params = list(fields.values())
        assignments.append("updated_at = ?")
        params.extend([_now(), existing["user_id"]])

        with self._transaction() as cursor:
            if existing["status"] == USER_PENDING:
                cursor.execute(
                    "DELETE FROM face_embeddings WHERE user_id = ?", (existing["user_id"],)
                )
                if cursor.rowcount:
                    logger.warning(
                        f"Discarded {cursor.rowcount} unverified pending embedding(s) "
                        f"for {existing['user_id']}"
                    )
            cursor.execute(
                f"UPDATE users SET {', '.join(assignments)} WHERE user_id = ?", params
            )

        return self.get_user(existing["user_id"])

    def delete_user(self, user_id: str) -> bool:
        """
        Delete a user and everything they own.

        Args:
            user_id: The user's unique identifier.

        Returns:
            True if deletion was successful, False if user not found.
        """
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM users WHERE user_id = ?", (user_id,))
            deleted = cursor.rowcount > 0
            if deleted:
                cursor.execute("DELETE FROM auth_logs WHERE user_id = ?", (user_id,))

        if deleted:
            logger.info(f"Deleted user {user_id}")
        else:
            logger.warning(f"Cannot delete: user {user_id} not found")
        return deleted

    def delete_user_by_external_id(self, external_id: str) -> bool:
        """Delete the user linked to an identity provider ID. False if none."""
        user = self.get_user_by_external_id(external_id)
        if user is None:
            return False
        return self.delete_user(user["user_id"])

    def list_users(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        List users with their metadata, newest first.

        Args:
            status: Optional filter ("active" or "pending").
        """
        if status:
            rows = self._query(
                "SELECT * FROM users WHERE status = ? ORDER BY created_at DESC, rowid DESC",
                (status,),
            )
        else:
            rows = self._query("SELECT * FROM users ORDER BY created_at DESC, rowid DESC")
        return [self._user_to_dict(row) for row in rows]

    # ============================================================
    # Pending face sign-ups
    # ============================================================

    def create_pending_user(self, email: str, embedding: Sequence[float]) -> Dict[str, Any]:
        """
        Store a face embedding for someone who has not signed up yet.

        An existing pending row for the same email has its embedding replaced.

        Args:
            email: Email the sign-up will use.
            embedding: Face embedding captured before sign-up.

        Returns:
            The pending user.

        Raises:
            ConflictError: If an active user already owns this email.
        """
        existing = self.get_user_by_email(email)
        if existing is not None and existing["status"] != USER_PENDING:
            raise ConflictError(f"An account already exists for {email}")

        if existing is None:
            user = self.create_user(email=email, status=USER_PENDING)
        else:
            user = existing

        self.replace_face_embedding(user["user_id"], embedding)
        logger.info(f"Stored pending face enrollment for {user['user_id']}")
        return user

    def get_pending_user(self, email: str) -> Optional[Dict[str, Any]]:
        """Get the pending user for an email, or None."""
        row = self._query_one(
            "SELECT * FROM users WHERE email = ? AND status = ?", (email, USER_PENDING)
        )
        return self._user_to_dict(row) if row else None

    def delete_pending_users(self, email: str) -> int:
        """
        Remove pending face sign-ups for an email.

        Returns:
            Number of pending users deleted.
        """
        with self._transaction() as cursor:
            cursor.execute(
                "DELETE FROM users WHERE email = ? AND status = ?", (email, USER_PENDING)
            )
            count = cursor.rowcount

        logger.info(f"Cleaned up {count} pending enrollment(s)")
        return count

    def activate_pending_user(
        self,
        user_id: str,
        external_id: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Link a pending user to its new identity and mark it active."""
        return self.update_user(
            user_id,
            external_id=external_id,
            first_name=first_name,
            last_name=last_name,
            status=USER_ACTIVE,
        )

    # ============================================================
    # Face embeddings
    # ============================================================

    def add_face_embedding(self, user_id: str, embedding: Sequence[float]) -> str:
        """
        Store an additional face embedding for a user.

        Args:
            user_id: Owner of the embedding.
            embedding: 1-D numeric vector.

        Returns:
            ID of the stored embedding.

        Raises:
            ConflictError: If the user doesn't exist.
        """
        blob, dim = _encode_embedding(embedding)
        embedding_id = generate_id("emb")

        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO face_embeddings (id, user_id, embedding, dim, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (embedding_id, user_id, blob, dim, _now()))

        logger.debug(f"Stored face embedding {embedding_id} for {user_id} (dim={dim})")
        return embedding_id

    def replace_face_embedding(self, user_id: str, embedding: Sequence[float]) -> str:
        """Replace all of a user's embeddings with a single new one, atomically."""
        blob, dim = _encode_embedding(embedding)
        embedding_id = generate_id("emb")

        with self._transaction() as cursor:
            cursor.execute("DELETE FROM face_embeddings WHERE user_id = ?", (user_id,))
            cursor.execute("""
                INSERT INTO face_embeddings (id, user_id, embedding, dim, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (embedding_id, user_id, blob, dim, _now()))

        logger.info(f"Registered face embedding for {user_id} (dim={dim})")
        return embedding_id

    def list_face_embeddings(
        self,
        user_id: Optional[str] = None,
        active_only: bool = True,
    ) -> List[Tuple[str, np.ndarray]]:
        """
        Load stored embeddings in insertion order.

        Used for 1:N identification where the probe is compared against
        every enrolled user. Insertion order is the scan order.

        Args:
            user_id: Restrict to one user's embeddings.
            active_only: Skip embeddings owned by pending users.

        Returns:
            List of (user_id, embedding) pairs.
        """
        sql = """
            SELECT e.user_id AS user_id, e.embedding AS embedding
            FROM face_embeddings e JOIN users u ON u.user_id = e.user_id
        """
        clauses = []
        params: List[Any] = []
        if user_id is not None:
            clauses.append("e.user_id = ?")
            params.append(user_id)
        if active_only:
            clauses.append("u.status = ?")
            params.append(USER_ACTIVE)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY e.rowid ASC"

        rows = self._query(sql, params)
        return [(row["user_id"], _decode_embedding(row["embedding"])) for row in rows]

    def has_face_embedding(self, user_id: str) -> bool:
        """Check whether a user has at least one enrolled embedding."""
        row = self._query_one("SELECT 1 FROM face_embeddings WHERE user_id = ?", (user_id,))
        return row is not None

    def delete_face_embeddings(self, user_id: str) -> int:
        """Delete all of a user's embeddings. Returns the number removed."""
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM face_embeddings WHERE user_id = ?", (user_id,))
            return cursor.rowcount

    def migrate_legacy_embeddings(self) -> int:
        """
        Move embeddings stored on the user row into face_embeddings.

        Older databases kept a JSON-encoded `face_embedding` column on users.
        Each non-empty value is copied into face_embeddings and the column is
        cleared. Unparseable values are logged and left in place.

        Returns:
            Number of embeddings migrated.
        """
        columns = {row["name"] for row in self._query("PRAGMA table_info(users)")}
        if "face_embedding" not in columns:
            logger.info("No legacy face_embedding column; nothing to migrate")
            return 0

        rows = self._query(
            "SELECT user_id, face_embedding FROM users WHERE face_embedding IS NOT NULL"
        )

        migrated = 0
        for row in rows:
            try:
                values = json.loads(row["face_embedding"])
                blob, dim = _encode_embedding(values)
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable legacy embedding for {row['user_id']}: {e}")
                continue
            if dim == 0:
                continue

            with self._transaction() as cursor:
                cursor.execute("""
                    INSERT INTO face_embeddings (id, user_id, embedding, dim, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (generate_id("emb"), row["user_id"], blob, dim, _now()))
                cursor.execute(
                    "UPDATE users SET face_embedding = NULL WHERE user_id = ?",
                    (row["user_id"],),
                )
            migrated += 1

        logger.info(f"Migrated {migrated} legacy embedding(s)")
        return migrated

    # ============================================================
    # Learning plans and quiz results
    # ============================================================

    def save_learning_plan(self, user_id: str, topic: str, content: str) -> Dict[str, Any]:
        """
        Save a generated learning plan.

        Returns:
            The stored plan.
        """
        plan = {
            "id": generate_id("plan"),
            "user_id": user_id,
            "topic": topic,
            "content": content,
            "created_at": _now(),
        }
        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO learning_plans (id, user_id, topic, content, created_at)
                VALUES (:id, :user_id, :topic, :content, :created_at)
            """, plan)
        return plan

    def list_learning_plans(self, user_id: str) -> List[Dict[str, Any]]:
        """List a user's learning plans, newest first."""
        rows = self._query("""
            SELECT id, user_id, topic, content, created_at FROM learning_plans
            WHERE user_id = ? ORDER BY created_at DESC, rowid DESC
        """, (user_id,))
        return [dict(row) for row in rows]

    def save_quiz_result(
        self,
        user_id: str,
        topic: str,
        questions: List[Dict[str, Any]],
        answers: List[Any],
        score: float,
    ) -> Dict[str, Any]:
        """
        Save a completed quiz.

        Args:
            user_id: Owner of the result.
            topic: Quiz topic.
            questions: List of {question, choices, answer} dicts.
            answers: The user's chosen answers.
            score: Final score.

        Returns:
            The stored result with questions/answers decoded.
        """
        result = {
            "id": generate_id("quiz"),
            "user_id": user_id,
            "topic": topic,
            "questions": questions,
            "answers": answers,
            "score": float(score),
            "created_at": _now(),
        }
        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO quiz_results (id, user_id, topic, questions, answers, score, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                result["id"],
                user_id,
                topic,
                json.dumps(questions),
                json.dumps(answers),
                result["score"],
                result["created_at"],
            ))
        return result

    def list_quiz_results(self, user_id: str) -> List[Dict[str, Any]]:
        """List a user's quiz results, newest first."""
        rows = self._query("""
            SELECT * FROM quiz_results
            WHERE user_id = ? ORDER BY created_at DESC, rowid DESC
        """, (user_id,))
        return [
            {
                "id": row["id"],
                "user_id": row["user_id"],
                "topic": row["topic"],
                "questions": json.loads(row["questions"]),
                "answers": json.loads(row["answers"]),
                "score": row["score"],
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    # ============================================================
    # Notes
    # ============================================================

    @staticmethod
    def _note_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "user_id": row["user_id"],
            "title": row["title"],
            "content": row["content"],
            "tags": json.loads(row["tags"]),
            "is_pinned": bool(row["is_pinned"]),
            "is_starred": bool(row["is_starred"]),
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    @staticmethod
    def _version_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "note_id": row["note_id"],
            "title": row["title"],
            "content": row["content"],
            "tags": json.loads(row["tags"]),
            "created_at": row["created_at"],
        }

    def create_note(
        self,
        user_id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Create a note, applying defaults for missing fields.

        Returns:
            The created note.
        """
        note_id = generate_id("note")
        now = _now()

        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO notes (id, user_id, title, content, tags, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                note_id,
                user_id,
                title or DEFAULT_NOTE_TITLE,
                content or "",
                json.dumps(tags or []),
                now,
                now,
            ))

        return self.get_note(user_id, note_id)

    def list_notes(self, user_id: str) -> List[Dict[str, Any]]:
        """List a user's notes, most recently updated first."""
        rows = self._query(
            "SELECT * FROM notes WHERE user_id = ? ORDER BY updated_at DESC, rowid DESC",
            (user_id,),
        )
        return [self._note_to_dict(row) for row in rows]

    def get_note(self, user_id: str, note_id: str) -> Dict[str, Any]:
        """
        Get one of a user's notes.

        Raises:
            NotFoundError: If the note doesn't exist or belongs to someone else.
        """
        row = self._query_one(
            "SELECT * FROM notes WHERE id = ? AND user_id = ?", (note_id, user_id)
        )
        if row is None:
            raise NotFoundError(f"Note {note_id} not found")
        return self._note_to_dict(row)

    def update_note(
        self,
        user_id: str,
        note_id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
        tags: Optional[List[str]] = None,
        is_pinned: Optional[bool] = None,
        is_starred: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Update a note, snapshotting its previous state first.

        A NoteVersion with the pre-update title, content and tags is written
        in the same transaction as the update whenever title or content is
        being changed. None means "leave unchanged".

        Returns:
            The updated note.

        Raises:
            NotFoundError: If the note doesn't exist or belongs to someone else.
        """
        changes: Dict[str, Any] = {}
        if title is not None:
            changes["title"] = title
        if content is not None:
            changes["content"] = content
        if tags is not None:
            changes["tags"] = json.dumps(tags)
        if is_pinned is not None:
            changes["is_pinned"] = int(is_pinned)
        if is_starred is not None:
            changes["is_starred"] = int(is_starred)

        with self._transaction() as cursor:
            cursor.execute(
                "SELECT * FROM notes WHERE id = ? AND user_id = ?", (note_id, user_id)
            )
            current = cursor.fetchone()
            if current is None:
                raise NotFoundError(f"Note {note_id} not found")

            if title is not None or content is not None:
                self._insert_version(cursor, current)

            if changes:
                assignments = [f"{name} = ?" for name in changes]
                params = list(changes.values()) + [_now(), note_id]
                cursor.execute(
                    f"UPDATE notes SET {', '.join(assignments)}, updated_at = ? WHERE id = ?",
                    params,
                )

        return self.get_note(user_id, note_id)

    @staticmethod
    def _insert_version(cursor: sqlite3.Cursor, note_row: sqlite3.Row) -> str:
        version_id = generate_id("ver")
        cursor.execute("""
            INSERT INTO note_versions (id, note_id, title, content, tags, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            version_id,
            note_row["id"],
            note_row["title"],
            note_row["content"],
            note_row["tags"],
            _now(),
        ))
        return version_id

    def delete_note(self, user_id: str, note_id: str) -> None:
        """
        Delete a note and its versions.

        Raises:
            NotFoundError: If the note doesn't exist or belongs to someone else.
        """
        with self._transaction() as cursor:
            cursor.execute(
                "DELETE FROM notes WHERE id = ? AND user_id = ?", (note_id, user_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Note {note_id} not found")

        logger.debug(f"Deleted note {note_id}")

    def list_note_versions(self, user_id: str, note_id: str) -> List[Dict[str, Any]]:
        """
        List a note's versions, newest first.

        Raises:
            NotFoundError: If the note doesn't exist or belongs to someone else.
        """
        self.get_note(user_id, note_id)
        rows = self._query(
            "SELECT * FROM note_versions WHERE note_id = ? ORDER BY created_at DESC, rowid DESC",
            (note_id,),
        )
        return [self._version_to_dict(row) for row in rows]

    def get_note_version(self, user_id: str, version_id: str) -> Dict[str, Any]:
        """
        Get a single version of one of the user's notes.

        Raises:
            NotFoundError: If the version doesn't exist or its note belongs
                           to someone else.
        """
        row = self._query_one("""
            SELECT v.* FROM note_versions v JOIN notes n ON n.id = v.note_id
            WHERE v.id = ? AND n.user_id = ?
        """, (version_id, user_id))
        if row is None:
            raise NotFoundError(f"Version {version_id} not found")
        return self._version_to_dict(row)

    def restore_note_version(self, user_id: str, version_id: str) -> Dict[str, Any]:
        """
        Restore a note to a previous version.

        The note's current state is snapshotted as a new version, then its
        title, content and tags are overwritten with the version's values.
        Both writes happen in one transaction.

        Returns:
            The restored note.

        Raises:
            NotFoundError: If the version doesn't exist or its note belongs
                           to someone else.
        """
        with self._transaction() as cursor:
            cursor.execute("""
                SELECT v.title AS v_title, v.content AS v_content, v.tags AS v_tags,
                       n.*
                FROM note_versions v JOIN notes n ON n.id = v.note_id
                WHERE v.id = ? AND n.user_id = ?
            """, (version_id, user_id))
            row = cursor.fetchone()
            if row is None:
                raise NotFoundError(f"Version {version_id} not found")

            self._insert_version(cursor, row)
            cursor.execute("""
                UPDATE notes SET title = ?, content = ?, tags = ?, updated_at = ?
                WHERE id = ?
            """, (row["v_title"], row["v_content"], row["v_tags"], _now(), row["id"]))

        logger.info(f"Restored note {row['id']} to version {version_id}")
        return self.get_note(user_id, row["id"])

    # ============================================================
    # Authentication audit log
    # ============================================================

    def log_authentication(
        self,
        user_id: Optional[str],
        method: str,
        success: bool,
        score: Optional[float] = None,
    ) -> int:
        """
        Log an authentication attempt for analytics and auditing.

        Args:
            user_id: User that was matched or attempted, if known.
            method: "password" or "face".
            success: Whether authentication succeeded.
            score: Best similarity for face attempts.

        Returns:
            The log entry ID.
        """
        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO auth_logs (user_id, method, score, success, timestamp)
                VALUES (?, ?, ?, ?, ?)
            """, (user_id, method, score, success, _now()))
            log_id = cursor.lastrowid

        logger.debug(f"Logged authentication attempt: id={log_id}, user={user_id}, "
                     f"method={method}, success={success}")
        return log_id

    def get_auth_logs(
        self,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """
        Get authentication attempt logs, newest first.

        Args:
            user_id: Filter by user ID (optional).
            limit: Maximum number of entries to return.
        """
        if user_id:
            rows = self._query("""
                SELECT * FROM auth_logs WHERE user_id = ?
                ORDER BY id DESC LIMIT ?
            """, (user_id, limit))
        else:
            rows = self._query("SELECT * FROM auth_logs ORDER BY id DESC LIMIT ?", (limit,))

        return [
            {
                "id": row["id"],
                "user_id": row["user_id"],
                "method": row["method"],
                "score": row["score"],
                "success": bool(row["success"]),
                "timestamp": row["timestamp"],
            }
            for row in rows
        ]

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the database.

        Returns:
            Dictionary with:
            - total_users: Number of active users
            - pending_users: Number of pending face sign-ups
            - enrolled_faces: Number of users with at least one embedding
            - total_notes: Number of notes
            - total_auth_attempts / successful_auths
        """
        user_stats = self._query_one("""
            SELECT SUM(status = 'active') AS active, SUM(status = 'pending') AS pending
            FROM users
        """)
        faces = self._query_one("SELECT COUNT(DISTINCT user_id) AS n FROM face_embeddings")
        notes = self._query_one("SELECT COUNT(*) AS n FROM notes")
        auth_stats = self._query_one(
            "SELECT COUNT(*) AS total, SUM(success) AS successes FROM auth_logs"
        )

        return {
            "total_users": int(user_stats["active"] or 0),
            "pending_users": int(user_stats["pending"] or 0),
            "enrolled_faces": int(faces["n"] or 0),
            "total_notes": int(notes["n"] or 0),
            "total_auth_attempts": int(auth_stats["total"] or 0),
            "successful_auths": int(auth_stats["successes"] or 0),
        }

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.debug("Database connection closed")


# Singleton instance for the store
_store_instance: Optional[StudyStore] = None


def get_store(db_path: Optional[str] = None) -> StudyStore:
    """
    Get or create the singleton StudyStore instance.

    Args:
        db_path: Path to SQLite database.
                 If None, uses value from config (relative to project root).

    Returns:
        The shared StudyStore instance.
    """
    global _store_instance

    if _store_instance is None:
        if db_path is None:
            from buddy_core.config import get_storage_config, get_project_root

            configured = Path(get_storage_config()["db_path"])
            if not configured.is_absolute():
                configured = get_project_root() / configured
            db_path = str(configured)

        _store_instance = StudyStore(db_path)

    return _store_instance
