"""
SQLite Database Repository - Reviews, Settings and Activity Log
================================================================

Every review, settings row and activity belongs to one business, and every
query takes the business id. Nothing here reads across businesses.
"""

import json
import sqlite3
import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from ...domain.models import Activity, Review, ReviewStatus, utc_now_iso

logger = logging.getLogger(__name__)

DATABASE_FILE = "replydesk.db"

# Columns update_review() is allowed to touch
REVIEW_UPDATABLE = {
    "status",
    "ai_reply",
    "final_reply",
    "automated_reply",
    "automation_failed",
    "automation_error",
    "reply_tone",
    "posted_at",
    "auto_approved",
}

SETTINGS_COLUMNS = (
    "brand_voice_preset",
    "formality_level",
    "warmth_level",
    "brevity_level",
    "custom_instruction",
    "approval_mode",
)


def normalize_timestamp(value: Any) -> str:
    """
    Convert a date/datetime/ISO string to a UTC ISO timestamp (seconds).

    Stored timestamps share one format so period filters can compare text.
    Blank values mean "now".

    Raises:
        ValueError: if ``value`` is not a recognisable date.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        moment = datetime.now(timezone.utc)
    elif isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        moment = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported date value: {value!r}")

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="seconds")


class Database:
    """
    SQLite database for ReplyDesk.

    Usage:
        db = Database()
        db.init()

        db.upsert_business("biz-1", name="Corner Cafe", industry="restaurant")
        db.add_review(Review(id="r-1", business_id="biz-1", rating=5, text="Great!"))

        pending = db.pending_unreplied("biz-1")
    """

    def __init__(self, db_path: str = DATABASE_FILE):
        self.db_path = str(db_path)

    @contextmanager
    def _get_connection(self):
        """Get database connection with context manager."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def init(self):
        """Initialize database tables."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS businesses (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    industry TEXT DEFAULT 'service',
                    contact_email TEXT,
                    phone TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS business_settings (
                    business_id TEXT PRIMARY KEY,
                    brand_voice_preset TEXT DEFAULT 'friendly',
                    formality_level INTEGER DEFAULT 3,
                    warmth_level INTEGER DEFAULT 3,
                    brevity_level INTEGER DEFAULT 3,
                    custom_instruction TEXT,
                    approval_mode TEXT DEFAULT 'manual',
                    updated_at TEXT
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS reviews (
                    id TEXT NOT NULL,
                    business_id TEXT NOT NULL,
                    rating INTEGER NOT NULL,
                    review_text TEXT DEFAULT '',
                    customer_name TEXT DEFAULT '',
                    review_date TEXT NOT NULL,
                    status TEXT DEFAULT 'pending',
                    ai_reply TEXT,
                    final_reply TEXT,
                    automated_reply INTEGER DEFAULT 0,
                    updated_at TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (business_id, id)
                )
            """)

            # Migrations for older databases
            self._migrate_reviews_table(conn)
            self._migrate_settings_table(conn)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS activities (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    business_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    review_id TEXT,
                    metadata TEXT DEFAULT '{}',
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_reviews_business_date ON reviews (business_id, review_date)"
            )

            logger.info(f"Database initialized: {self.db_path}")

    def _migrate_reviews_table(self, conn):
        """Add missing columns to existing reviews table."""
        existing = {row[1] for row in conn.execute("PRAGMA table_info(reviews)").fetchall()}

        migrations = {
            "automation_failed": "ALTER TABLE reviews ADD COLUMN automation_failed INTEGER DEFAULT 0",
            "automation_error": "ALTER TABLE reviews ADD COLUMN automation_error TEXT",
            "reply_tone": "ALTER TABLE reviews ADD COLUMN reply_tone TEXT",
            "posted_at": "ALTER TABLE reviews ADD COLUMN posted_at TEXT",
            "auto_approved": "ALTER TABLE reviews ADD COLUMN auto_approved INTEGER DEFAULT 0",
        }

        for col, sql in migrations.items():
            if col not in existing:
                try:
                    conn.execute(sql)
                    logger.info(f"Migrated: added '{col}' column to reviews")
                except sqlite3.OperationalError:
                    pass

    def _migrate_settings_table(self, conn):
        existing = {row[1] for row in conn.execute("PRAGMA table_info(business_settings)").fetchall()}
        if "approval_mode" not in existing:
            conn.execute("ALTER TABLE business_settings ADD COLUMN approval_mode TEXT DEFAULT 'manual'")
            logger.info("Migrated: added 'approval_mode' column to business_settings")

    # ── Businesses & settings ──────────────────────────────────────

    def upsert_business(
        self,
        business_id: str,
        name: str,
        industry: str = "service",
        contact_email: Optional[str] = None,
        phone: Optional[str] = None,
    ):
        """Create or update a business record."""
        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO businesses (id, name, industry, contact_email, phone)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       name = excluded.name,
                       industry = excluded.industry,
                       contact_email = excluded.contact_email,
                       phone = excluded.phone""",
                (business_id, name, industry, contact_email, phone)
            )

    def get_business(self, business_id: str) -> Optional[dict]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM businesses WHERE id = ?", (business_id,)).fetchone()
            return dict(row) if row else None

    def save_business_settings(self, business_id: str, **settings):
        """Insert or update brand voice settings. Unknown keys are ignored."""
        values = {k: v for k, v in settings.items() if k in SETTINGS_COLUMNS}
        values["updated_at"] = utc_now_iso()

        columns = ", ".join(["business_id"] + list(values))
        placeholders = ", ".join("?" for _ in range(len(values) + 1))
        updates = ", ".join(f"{k} = excluded.{k}" for k in values)

        with self._get_connection() as conn:
            conn.execute(
                f"""INSERT INTO business_settings ({columns}) VALUES ({placeholders})
                    ON CONFLICT(business_id) DO UPDATE SET {updates}""",
                [business_id] + list(values.values())
            )

    def get_business_settings(self, business_id: str) -> Optional[dict]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM business_settings WHERE business_id = ?", (business_id,)
            ).fetchone()
            return dict(row) if row else None

    # ── Review CRUD ────────────────────────────────────────────────

    def add_review(self, review: Review) -> bool:
        """Add a review. Returns False if the business already has this review id."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """INSERT INTO reviews
                       (id, business_id, rating, review_text, customer_name, review_date,
                        status, ai_reply, final_reply, automated_reply, automation_failed,
                        automation_error, reply_tone, posted_at, auto_approved, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        review.id,
                        review.business_id,
                        review.rating,
                        review.text,
                        review.customer_name,
                        normalize_timestamp(review.review_date),
                        review.status.value,
                        review.ai_reply,
                        review.final_reply,
                        int(review.automated_reply),
                        int(review.automation_failed),
                        review.automation_error,
                        review.reply_tone,
                        review.posted_at,
                        int(review.auto_approved),
                        review.updated_at or utc_now_iso(),
                    )
                )
                return True
        except sqlite3.IntegrityError:
            logger.warning(f"Review {review.id} already exists for business {review.business_id}")
            return False

    def bulk_add_reviews(self, business_id: str, reviews: list) -> dict:
        """
        Add multiple reviews at once for a business.

        Args:
            business_id: Owning business
            reviews: List of dicts with 'id', 'rating', 'text', 'customer_name', 'review_date'

        Returns:
            Dict with 'added', 'skipped', 'errors' counts
        """
        result = {'added': 0, 'skipped': 0, 'errors': []}

        with self._get_connection() as conn:
            for item in reviews:
                try:
                    review = Review(
                        id=str(item.get('id') or '').strip(),
                        business_id=business_id,
                        rating=item.get('rating'),
                        text=str(item.get('text') or '').strip(),
                        customer_name=str(item.get('customer_name') or '').strip(),
                    )
                    if not review.id:
                        result['errors'].append(f"Missing review id: {item}")
                        continue

                    conn.execute(
                        """INSERT INTO reviews
                           (id, business_id, rating, review_text, customer_name, review_date, updated_at)
                           VALUES (?, ?, ?, ?, ?, ?, ?)""",
                        (
                            review.id,
                            business_id,
                            review.rating,
                            review.text,
                            review.customer_name,
                            normalize_timestamp(item.get('review_date')),
                            utc_now_iso(),
                        )
                    )
                    result['added'] += 1
                except sqlite3.IntegrityError:
                    result['skipped'] += 1
                except (ValueError, TypeError) as e:
                    result['errors'].append(f"{item.get('id', 'Unknown')}: {str(e)}")

        logger.info(f"Bulk import for business {business_id}: {result['added']} added, {result['skipped']} skipped")
        return result

    def get_review(self, business_id: str, review_id: str) -> Optional[Review]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM reviews WHERE business_id = ? AND id = ?",
                (business_id, review_id)
            ).fetchone()
            return self._row_to_review(row) if row else None

    def update_review(self, business_id: str, review_id: str, /, **updates) -> bool:
        """Update review fields. Returns False if nothing matched."""
        unknown = set(updates) - REVIEW_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update review columns: {sorted(unknown)}")
        if not updates:
            return False

        values = {}
        for key, value in updates.items():
            if isinstance(value, ReviewStatus):
                value = value.value
            elif isinstance(value, bool):
                value = int(value)
            values[key] = value
        values["updated_at"] = utc_now_iso()

        set_clause = ", ".join(f"{k} = ?" for k in values)
        params = list(values.values()) + [business_id, review_id]

        with self._get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE reviews SET {set_clause} WHERE business_id = ? AND id = ?",
                params
            )
            return cursor.rowcount > 0

    def list_reviews(self, business_id: str, status: Optional[str] = None, limit: int = 100) -> List[Review]:
        with self._get_connection() as conn:
            if status is not None:
                rows = conn.execute(
                    """SELECT * FROM reviews WHERE business_id = ? AND status = ?
                       ORDER BY review_date DESC LIMIT ?""",
                    (business_id, status, limit)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM reviews WHERE business_id = ? ORDER BY review_date DESC LIMIT ?",
                    (business_id, limit)
                ).fetchall()
            return [self._row_to_review(row) for row in rows]

    def reviews_between(self, business_id: str, start: datetime, end: datetime) -> List[Review]:
        """Reviews dated in ``[start, end)``."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """SELECT * FROM reviews
                   WHERE business_id = ? AND review_date >= ? AND review_date < ?
                   ORDER BY review_date""",
                (business_id, normalize_timestamp(start), normalize_timestamp(end))
            ).fetchall()
            return [self._row_to_review(row) for row in rows]

    def pending_unreplied(self, business_id: str, limit: int = 50) -> List[Review]:
        """Pending reviews that have no draft or final reply yet."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """SELECT * FROM reviews
                   WHERE business_id = ? AND status = 'pending'
                     AND (ai_reply IS NULL OR ai_reply = '')
                     AND (final_reply IS NULL OR final_reply = '')
                   ORDER BY review_date LIMIT ?""",
                (business_id, limit)
            ).fetchall()
            return [self._row_to_review(row) for row in rows]

    def failed_reviews(self, business_id: str, limit: int = 20) -> List[Review]:
        """Reviews whose last automated draft failed and are still open."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """SELECT * FROM reviews
                   WHERE business_id = ? AND automation_failed = 1
                     AND status IN ('pending', 'approved')
                   ORDER BY updated_at LIMIT ?""",
                (business_id, limit)
            ).fetchall()
            return [self._row_to_review(row) for row in rows]

    def recent_replies(self, business_id: str, limit: int = 20) -> List[str]:
        """Most recent reply texts, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """SELECT COALESCE(NULLIF(final_reply, ''), ai_reply) AS reply FROM reviews
                   WHERE business_id = ?
                     AND COALESCE(NULLIF(final_reply, ''), ai_reply) IS NOT NULL
                   ORDER BY updated_at DESC LIMIT ?""",
                (business_id, limit)
            ).fetchall()
            return [row["reply"] for row in rows if row["reply"]]

    def get_stats(self, business_id: str) -> dict:
        """Workflow counts for a business."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM reviews WHERE business_id = ? GROUP BY status",
                (business_id,)
            ).fetchall()
            by_status = {status.value: 0 for status in ReviewStatus}
            for row in rows:
                by_status[row["status"]] = row["n"]

            total = sum(by_status.values())
            failed = conn.execute(
                "SELECT COUNT(*) FROM reviews WHERE business_id = ? AND automation_failed = 1",
                (business_id,)
            ).fetchone()[0]
            replied = conn.execute(
                """SELECT COUNT(*) FROM reviews WHERE business_id = ?
                   AND (COALESCE(ai_reply, '') != '' OR COALESCE(final_reply, '') != '')""",
                (business_id,)
            ).fetchone()[0]

            return {
                "total": total,
                **by_status,
                "automation_failed": failed,
                "replied": replied,
                "response_rate": round(replied / total * 100, 1) if total > 0 else 0
            }

    def _row_to_review(self, row: sqlite3.Row) -> Review:
        """Convert database row to Review object."""
        return Review(
            id=row["id"],
            business_id=row["business_id"],
            rating=row["rating"],
            text=row["review_text"] or "",
            customer_name=row["customer_name"] or "",
            review_date=row["review_date"] or "",
            status=row["status"] or ReviewStatus.PENDING.value,
            ai_reply=row["ai_reply"],
            final_reply=row["final_reply"],
            automated_reply=bool(row["automated_reply"]),
            automation_failed=bool(row["automation_failed"]),
            automation_error=row["automation_error"],
            reply_tone=row["reply_tone"],
            posted_at=row["posted_at"],
            auto_approved=bool(row["auto_approved"]),
            updated_at=row["updated_at"],
        )

    # ── Activity log ───────────────────────────────────────────────

    def add_activity(self, activity: Activity) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute(
                """INSERT INTO activities (business_id, type, description, review_id, metadata, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    activity.business_id,
                    activity.type,
                    activity.description,
                    activity.review_id,
                    json.dumps(activity.metadata, default=str),
                    activity.created_at,
                )
            )
            return cursor.lastrowid

    def list_activities(self, business_id: str, limit: int = 50) -> List[Activity]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM activities WHERE business_id = ? ORDER BY id DESC LIMIT ?",
                (business_id, limit)
            ).fetchall()
            return [self._row_to_activity(row) for row in rows]

    def _row_to_activity(self, row: sqlite3.Row) -> Activity:
        try:
            metadata = json.loads(row["metadata"] or "{}")
        except ValueError:
            metadata = {}
        return Activity(
            id=row["id"],
            business_id=row["business_id"],
            type=row["type"],
            description=row["description"] or "",
            review_id=row["review_id"],
            metadata=metadata if isinstance(metadata, dict) else {},
            created_at=row["created_at"],
        )


def open_database(db_path: str = DATABASE_FILE) -> Database:
    """Create a Database and make sure its tables exist."""
    db = Database(db_path)
    db.init()
    return db
