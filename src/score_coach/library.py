"""Pieces, spots and projects stored in SQLite, plus recording practice results."""
import json
import logging
import uuid
from datetime import datetime

from score_coach.config import Settings
from score_coach.db import get_connection
from score_coach.models import (
    Piece,
    PracticeAttempt,
    PracticeResult,
    Priority,
    Project,
    ReadinessLevel,
    Spot,
    SpotColor,
    ValidationError,
)
from score_coach.srs import ScheduleUpdate, record_outcome

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _spot_from_row(row, history_rows) -> Spot:
    history = tuple(
        PracticeAttempt(
            timestamp=_dt(h["practiced_at"]),
            duration_minutes=h["duration_minutes"],
            result=PracticeResult(h["result"]),
            notes=h["notes"] or "",
        )
        for h in history_rows
    )
    return Spot(
        id=row["id"],
        piece_id=row["piece_id"],
        title=row["title"],
        page=row["page"],
        x=row["x"],
        y=row["y"],
        width=row["width"],
        height=row["height"],
        priority=Priority(row["priority"]),
        color=SpotColor(row["color"]),
        difficulty=row["difficulty"],
        readiness_level=ReadinessLevel(row["readiness_level"]),
        created_at=_dt(row["created_at"]),
        last_practiced=_dt(row["last_practiced"]),
        next_due=_dt(row["next_due"]),
        recommended_minutes=row["recommended_minutes"],
        history=history,
        active=bool(row["active"]),
        notes=row["notes"] or "",
    )


def _load_spots(conn, piece_id: str, include_inactive: bool = False) -> tuple:
    query = "SELECT * FROM spots WHERE piece_id = ?"
    if not include_inactive:
        query += " AND active = 1"
    rows = conn.execute(query + " ORDER BY page, y, x, id", (piece_id,)).fetchall()
    spots = []
    for row in rows:
        history = conn.execute(
            "SELECT * FROM spot_history WHERE spot_id = ? ORDER BY practiced_at, id", (row["id"],)
        ).fetchall()
        spots.append(_spot_from_row(row, history))
    return tuple(spots)


def _piece_from_row(conn, row, include_inactive: bool = False) -> Piece:
    return Piece(
        id=row["id"],
        title=row["title"],
        composer=row["composer"] or "",
        difficulty=row["difficulty"],
        spots=_load_spots(conn, row["id"], include_inactive),
        target_tempo=row["target_tempo"],
        current_tempo=row["current_tempo"],
        total_minutes=row["total_minutes"] or 0,
        tags=tuple(json.loads(row["tags"] or "[]")),
        pdf_path=row["pdf_path"] or "",
        total_pages=row["total_pages"] or 0,
    )


# -- pieces -----------------------------------------------------------------


def _insert_piece(conn, piece: Piece) -> None:
    if conn.execute("SELECT 1 FROM pieces WHERE id = ?", (piece.id,)).fetchone():
        raise ValidationError(f"Piece {piece.id!r} already exists")
    conn.execute(
        """INSERT INTO pieces (id, title, composer, difficulty, target_tempo, current_tempo, tags,
            pdf_path, total_pages, total_minutes, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (piece.id, piece.title, piece.composer, piece.difficulty, piece.target_tempo, piece.current_tempo,
         json.dumps(list(piece.tags)), piece.pdf_path, piece.total_pages, piece.total_minutes,
         datetime.now().isoformat()),
    )
    for spot in piece.spots:
        _insert_spot(conn, spot)


def add_piece(db_path: str, title: str, composer: str = "", difficulty: int = 3,
              target_tempo: float | None = None, tags=(), pdf_path: str = "", total_pages: int = 0,
              total_minutes: int = 0, piece_id: str | None = None) -> Piece:
    if total_pages < 0:
        raise ValidationError(f"Page count cannot be negative: {total_pages}")
    piece = Piece(id=piece_id or _new_id(), title=title, composer=composer, difficulty=difficulty,
                  target_tempo=target_tempo, tags=tuple(tags), pdf_path=pdf_path, total_pages=total_pages,
                  total_minutes=total_minutes)
    conn = get_connection(db_path)
    _insert_piece(conn, piece)
    conn.commit()
    conn.close()
    logger.info("Added piece %s (%s)", piece.id, piece.title)
    return piece


def get_piece(db_path: str, piece_id: str, include_inactive: bool = False) -> Piece:
    conn = get_connection(db_path)
    row = conn.execute("SELECT * FROM pieces WHERE id = ?", (piece_id,)).fetchone()
    if row is None:
        conn.close()
        raise ValidationError(f"No piece with id {piece_id!r}")
    piece = _piece_from_row(conn, row, include_inactive)
    conn.close()
    return piece


def list_pieces(db_path: str, include_inactive: bool = False) -> list[Piece]:
    conn = get_connection(db_path)
    rows = conn.execute("SELECT * FROM pieces ORDER BY title, id").fetchall()
    pieces = [_piece_from_row(conn, row, include_inactive) for row in rows]
    conn.close()
    return pieces


# -- spots ------------------------------------------------------------------


def _write_spot(conn, spot: Spot) -> None:
    conn.execute(
        """INSERT INTO spots (id, piece_id, title, page, x, y, width, height, priority, color,
            difficulty, readiness_level, created_at, last_practiced, next_due,
            recommended_minutes, active, notes)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            title=excluded.title, page=excluded.page, x=excluded.x, y=excluded.y,
            width=excluded.width, height=excluded.height, priority=excluded.priority,
            color=excluded.color, difficulty=excluded.difficulty,
            readiness_level=excluded.readiness_level, last_practiced=excluded.last_practiced,
            next_due=excluded.next_due, recommended_minutes=excluded.recommended_minutes,
            active=excluded.active, notes=excluded.notes""",
        (spot.id, spot.piece_id, spot.title, spot.page, spot.x, spot.y, spot.width, spot.height,
         spot.priority.value, spot.color.value, spot.difficulty, spot.readiness_level.value,
         _ts(spot.created_at), _ts(spot.last_practiced), _ts(spot.next_due),
         spot.recommended_minutes, int(spot.active), spot.notes),
    )


def _insert_attempt(conn, spot_id: str, attempt: PracticeAttempt) -> None:
    conn.execute(
        "INSERT INTO spot_history (spot_id, practiced_at, duration_minutes, result, notes) VALUES (?, ?, ?, ?, ?)",
        (spot_id, attempt.timestamp.isoformat(), attempt.duration_minutes, attempt.result.value, attempt.notes),
    )


def _insert_spot(conn, spot: Spot) -> None:
    if conn.execute("SELECT 1 FROM spots WHERE id = ?", (spot.id,)).fetchone():
        raise ValidationError(f"Spot {spot.id!r} already exists")
    _write_spot(conn, spot)
    for attempt in spot.history:
        _insert_attempt(conn, spot.id, attempt)


def add_spot(db_path: str, piece_id: str, title: str, page: int = 1,
             bbox: tuple = (0.0, 0.0, 1.0, 1.0), priority=Priority.MEDIUM,
             color=SpotColor.RED, difficulty: int = 3, recommended_minutes: int | None = None,
             notes: str = "", spot_id: str | None = None) -> Spot:
    """Place a new spot on a piece. New spots start at level "new" and are due immediately."""
    piece = get_piece(db_path, piece_id)
    if piece.total_pages and page > piece.total_pages:
        raise ValidationError(f"{piece.title} has {piece.total_pages} pages, got page {page}")
    x, y, width, height = bbox
    spot = Spot(
        id=spot_id or _new_id(),
        piece_id=piece_id,
        title=title,
        page=page,
        x=x, y=y, width=width, height=height,
        priority=Priority(priority),
        color=SpotColor(color),
        difficulty=difficulty,
        created_at=datetime.now(),
        recommended_minutes=recommended_minutes,
        notes=notes,
    )
    conn = get_connection(db_path)
    _write_spot(conn, spot)
    conn.commit()
    conn.close()
    logger.info("Added spot %s to piece %s", spot.id, piece_id)
    return spot


def get_spot(db_path: str, spot_id: str) -> Spot:
    conn = get_connection(db_path)
    row = conn.execute("SELECT * FROM spots WHERE id = ?", (spot_id,)).fetchone()
    if row is None:
        conn.close()
        raise ValidationError(f"No spot with id {spot_id!r}")
    history = conn.execute(
        "SELECT * FROM spot_history WHERE spot_id = ? ORDER BY practiced_at, id", (spot_id,)
    ).fetchall()
    conn.close()
    return _spot_from_row(row, history)


def edit_spot(db_path: str, spot_id: str, **changes) -> Spot:
    """Change geometry or metadata. Scheduling state only changes through practice."""
    if "bbox" in changes:
        changes["x"], changes["y"], changes["width"], changes["height"] = changes.pop("bbox")
    for key, enum_cls in (("priority", Priority), ("color", SpotColor)):
        if key in changes:
            changes[key] = enum_cls(changes[key])
    spot = get_spot(db_path, spot_id).edit(**changes)
    conn = get_connection(db_path)
    _write_spot(conn, spot)
    conn.commit()
    conn.close()
    return spot


def deactivate_spot(db_path: str, spot_id: str) -> Spot:
    spot = get_spot(db_path, spot_id).deactivate()
    conn = get_connection(db_path)
    _write_spot(conn, spot)
    conn.commit()
    conn.close()
    logger.info("Deactivated spot %s (history kept)", spot_id)
    return spot


def concert_date_for_piece(db_path: str, piece_id: str, now: datetime | None = None) -> datetime | None:
    """Earliest upcoming concert among the projects holding this piece."""
    conn = get_connection(db_path)
    row = conn.execute(
        """SELECT MIN(p.concert_date) AS concert_date FROM projects p
        JOIN project_pieces pp ON pp.project_id = p.id
        WHERE pp.piece_id = ? AND p.concert_date IS NOT NULL AND p.concert_date >= ?""",
        (piece_id, (now or datetime.now()).isoformat()),
    ).fetchone()
    conn.close()
    return _dt(row["concert_date"]) if row else None


def record_practice(db_path: str, spot_id: str, result, duration_minutes: int = 0,
                    now: datetime | None = None, settings: Settings | None = None,
                    notes: str = "") -> ScheduleUpdate:
    """Schedule a spot from one practice result and persist the outcome."""
    settings = settings or Settings.load(db_path)
    spot = get_spot(db_path, spot_id)
    if not spot.active:
        raise ValidationError(f"Spot {spot_id!r} is inactive")
    update = record_outcome(
        spot,
        result,
        now=now,
        duration_minutes=duration_minutes,
        concert_date=concert_date_for_piece(db_path, spot.piece_id, now),
        settings=settings,
        notes=notes,
    )
    conn = get_connection(db_path)
    _write_spot(conn, update.spot)
    _insert_attempt(conn, spot_id, update.spot.history[-1])
    conn.execute(
        "UPDATE pieces SET total_minutes = total_minutes + ? WHERE id = ?",
        (duration_minutes, spot.piece_id),
    )
    conn.commit()
    conn.close()
    logger.info("Recorded %s for spot %s, next due %s", update.spot.history[-1].result.value, spot_id, update.next_due)
    return update


# -- projects ---------------------------------------------------------------


def _insert_project(conn, project: Project) -> None:
    if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project.id,)).fetchone():
        raise ValidationError(f"Project {project.id!r} already exists")
    conn.execute(
        "INSERT INTO projects (id, name, concert_date, daily_goal_minutes, created_at) VALUES (?, ?, ?, ?, ?)",
        (project.id, project.name, _ts(project.concert_date), project.daily_goal_minutes,
         datetime.now().isoformat()),
    )
    for position, piece_id in enumerate(dict.fromkeys(project.piece_ids)):
        conn.execute(
            "INSERT INTO project_pieces (project_id, piece_id, position) VALUES (?, ?, ?)",
            (project.id, piece_id, position),
        )


def add_project(db_path: str, name: str, concert_date: datetime | None = None,
                daily_goal_minutes: int = 30, project_id: str | None = None) -> Project:
    project = Project(id=project_id or _new_id(), name=name, concert_date=concert_date,
                      daily_goal_minutes=daily_goal_minutes)
    conn = get_connection(db_path)
    _insert_project(conn, project)
    conn.commit()
    conn.close()
    logger.info("Added project %s (%s)", project.id, project.name)
    return project


def assign_piece(db_path: str, project_id: str, piece_id: str) -> None:
    get_project(db_path, project_id)
    get_piece(db_path, piece_id)
    conn = get_connection(db_path)
    position = conn.execute(
        "SELECT COUNT(*) FROM project_pieces WHERE project_id = ?", (project_id,)
    ).fetchone()[0]
    conn.execute(
        "INSERT OR IGNORE INTO project_pieces (project_id, piece_id, position) VALUES (?, ?, ?)",
        (project_id, piece_id, position),
    )
    conn.commit()
    conn.close()


def _project_from_row(conn, row) -> Project:
    piece_ids = conn.execute(
        "SELECT piece_id FROM project_pieces WHERE project_id = ? ORDER BY position", (row["id"],)
    ).fetchall()
    return Project(
        id=row["id"],
        name=row["name"],
        piece_ids=tuple(r["piece_id"] for r in piece_ids),
        concert_date=_dt(row["concert_date"]),
        daily_goal_minutes=row["daily_goal_minutes"],
    )


def get_project(db_path: str, project_id: str) -> Project:
    conn = get_connection(db_path)
    row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    if row is None:
        conn.close()
        raise ValidationError(f"No project with id {project_id!r}")
    project = _project_from_row(conn, row)
    conn.close()
    return project


def list_projects(db_path: str) -> list[Project]:
    conn = get_connection(db_path)
    rows = conn.execute("SELECT * FROM projects ORDER BY concert_date IS NULL, concert_date, name").fetchall()
    projects = [_project_from_row(conn, row) for row in rows]
    conn.close()
    return projects


def store_library(db_path: str, pieces, projects) -> dict:
    """Write complete pieces (spots and history included) and projects in one transaction.

    Nothing is kept if any record fails: an id already in use, a project
    naming a piece that exists neither here nor in the store.
    """
    conn = get_connection(db_path)
    try:
        for piece in pieces:
            _insert_piece(conn, piece)
        for project in projects:
            _insert_project(conn, project)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    counts = {
        "pieces": len(pieces),
        "spots": sum(len(p.spots) for p in pieces),
        "projects": len(projects),
    }
    logger.info("Stored %s", counts)
    return counts
