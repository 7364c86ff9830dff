from .database import Database, DATABASE_FILE, normalize_timestamp, open_database
from .store import ReviewStore, SQLiteReviewStore
