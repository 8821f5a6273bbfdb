"""Database initialization and connection management."""
import os
import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = os.environ.get(
    "SCORE_COACH_DB", str(Path.home() / ".score_coach" / "library.db")
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS pieces (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    composer TEXT DEFAULT '',
    difficulty INTEGER NOT NULL DEFAULT 3,
    target_tempo REAL,
    current_tempo REAL,
    total_minutes INTEGER DEFAULT 0,
    tags TEXT DEFAULT '[]',
    pdf_path TEXT DEFAULT '',
    total_pages INTEGER DEFAULT 0,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS spots (
    id TEXT PRIMARY KEY,
    piece_id TEXT NOT NULL REFERENCES pieces(id),
    title TEXT NOT NULL,
    page INTEGER NOT NULL DEFAULT 1,
    x REAL NOT NULL,
    y REAL NOT NULL,
    width REAL NOT NULL,
    height REAL NOT NULL,
    priority TEXT DEFAULT 'medium',
    color TEXT DEFAULT 'red',
    difficulty INTEGER DEFAULT 3,
    readiness_level TEXT DEFAULT 'new',
    created_at TEXT,
    last_practiced TEXT,
    next_due TEXT,
    recommended_minutes INTEGER,
    active INTEGER DEFAULT 1,
    notes TEXT DEFAULT ''
);

CREATE TABLE IF NOT EXISTS spot_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    spot_id TEXT NOT NULL REFERENCES spots(id),
    practiced_at TEXT NOT NULL,
    duration_minutes INTEGER NOT NULL,
    result TEXT NOT NULL,
    notes TEXT DEFAULT ''
);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    concert_date TEXT,
    daily_goal_minutes INTEGER DEFAULT 30,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS project_pieces (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id TEXT NOT NULL REFERENCES projects(id),
    piece_id TEXT NOT NULL REFERENCES pieces(id),
    position INTEGER NOT NULL,
    UNIQUE(project_id, piece_id)
);

CREATE TABLE IF NOT EXISTS user_settings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT NOT NULL UNIQUE,
    value TEXT
);
"""


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Return a SQLite connection with row factory and foreign keys enabled."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize the database, creating all tables if they don't exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()
