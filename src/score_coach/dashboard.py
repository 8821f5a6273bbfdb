"""Readiness dashboard scores and practice statistics."""
from datetime import datetime

from score_coach.config import Settings
from score_coach.db import get_connection
from score_coach.library import get_project, list_pieces
from score_coach.readiness import piece_readiness, project_readiness, readiness_level


def get_piece_scores(db_path: str, now: datetime | None = None) -> list[dict]:
    now = now or datetime.now()
    thresholds = Settings.load(db_path).readiness_thresholds
    results = []
    for piece in list_pieces(db_path):
        score = piece_readiness(piece, now)
        results.append({
            "piece_id": piece.id,
            "title": piece.title,
            "composer": piece.composer,
            "score": score,
            "label": readiness_level(score, thresholds).label,
            "spots": len(piece.active_spots),
            "critical": len(piece.critical_spots),
            "due": len(piece.spots_due(now)),
        })
    return results


def get_project_report(db_path: str, project_id: str, now: datetime | None = None):
    project = get_project(db_path, project_id)
    return project, project_readiness(project, list_pieces(db_path), now, Settings.load(db_path))


def get_practice_stats(db_path: str, now: datetime | None = None) -> dict:
    now = now or datetime.now()
    conn = get_connection(db_path)
    attempts = conn.execute(
        "SELECT COUNT(*) AS n, COALESCE(SUM(duration_minutes), 0) AS minutes FROM spot_history"
    ).fetchone()
    active = conn.execute("SELECT COUNT(*) FROM spots WHERE active = 1").fetchone()[0]
    due = conn.execute(
        "SELECT COUNT(*) FROM spots WHERE active = 1 AND (next_due IS NULL OR next_due <= ?)",
        (now.isoformat(),),
    ).fetchone()[0]
    success = conn.execute(
        "SELECT COUNT(*) FROM spot_history WHERE result IN ('good', 'excellent')"
    ).fetchone()[0]
    conn.close()
    return {
        "attempts": attempts["n"],
        "minutes_practiced": attempts["minutes"],
        "active_spots": active,
        "spots_due": due,
        "success_rate": round(success / attempts["n"] * 100, 1) if attempts["n"] else 0.0,
    }
