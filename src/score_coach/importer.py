"""Library import/export (JSON or YAML) and PDF score intake."""
import json
import logging
from datetime import datetime
from pathlib import Path

from score_coach import library
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

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


def pdf_page_count(file_path: str) -> int:
    from PyPDF2 import PdfReader
    reader = PdfReader(file_path)
    return len(reader.pages)


def add_piece_from_pdf(db_path: str, file_path: str, title: str | None = None, composer: str = "",
                       difficulty: int = 3):
    """Register a PDF score as a piece, reading its page count."""
    path = Path(file_path)
    if path.suffix.lower() != ".pdf":
        raise ValidationError(f"Not a PDF file: {path.name}")
    pages = pdf_page_count(str(path))
    return library.add_piece(
        db_path,
        title or path.stem.replace("_", " "),
        composer=composer,
        difficulty=difficulty,
        pdf_path=str(path),
        total_pages=pages,
    )


def _ts(value):
    return value.isoformat() if value else None


def _dt(value):
    return datetime.fromisoformat(value) if value else None


def spot_to_dict(spot: Spot) -> dict:
    return {
        "id": spot.id,
        "piece_id": spot.piece_id,
        "title": spot.title,
        "page": spot.page,
        "bbox": [spot.x, spot.y, spot.width, spot.height],
        "priority": spot.priority.value,
        "color": spot.color.value,
        "difficulty": spot.difficulty,
        "readiness_level": spot.readiness_level.value,
        "created_at": _ts(spot.created_at),
        "last_practiced": _ts(spot.last_practiced),
        "next_due": _ts(spot.next_due),
        "recommended_minutes": spot.recommended_minutes,
        "active": spot.active,
        "notes": spot.notes,
        "history": [
            {
                "timestamp": a.timestamp.isoformat(),
                "duration_minutes": a.duration_minutes,
                "result": a.result.value,
                "notes": a.notes,
            }
            for a in spot.history
        ],
    }


def spot_from_dict(data: dict) -> Spot:
    try:
        x, y, width, height = data.get("bbox", (0.0, 0.0, 1.0, 1.0))
        history = tuple(
            PracticeAttempt(
                timestamp=_dt(h["timestamp"]),
                duration_minutes=int(h["duration_minutes"]),
                result=PracticeResult.parse(h["result"]),
                notes=h.get("notes", ""),
            )
            for h in data.get("history", [])
        )
        return Spot(
            id=data["id"],
            piece_id=data["piece_id"],
            title=data["title"],
            page=int(data.get("page", 1)),
            x=x, y=y, width=width, height=height,
            priority=Priority(data.get("priority", "medium")),
            color=SpotColor(data.get("color", "red")),
            difficulty=int(data.get("difficulty", 3)),
            readiness_level=ReadinessLevel(data.get("readiness_level", "new")),
            created_at=_dt(data.get("created_at")),
            last_practiced=_dt(data.get("last_practiced")),
            next_due=_dt(data.get("next_due")),
            recommended_minutes=data.get("recommended_minutes"),
            history=history,
            active=bool(data.get("active", True)),
            notes=data.get("notes", ""),
        )
    except KeyError as e:
        raise ValidationError(f"Spot record is missing {e.args[0]!r}") from None
    except (TypeError, ValueError) as e:
        if isinstance(e, ValidationError):
            raise
        raise ValidationError(f"Malformed spot record {data.get('id')!r}: {e}") from None


def export_library(db_path: str, file_path: str) -> dict:
    pieces = library.list_pieces(db_path, include_inactive=True)
    projects = library.list_projects(db_path)
    document = {
        "version": FORMAT_VERSION,
        "exported_at": datetime.now().isoformat(),
        "pieces": [
            {
                "id": p.id,
                "title": p.title,
                "composer": p.composer,
                "difficulty": p.difficulty,
                "target_tempo": p.target_tempo,
                "current_tempo": p.current_tempo,
                "total_minutes": p.total_minutes,
                "tags": list(p.tags),
                "pdf_path": p.pdf_path,
                "total_pages": p.total_pages,
                "spots": [spot_to_dict(s) for s in p.spots],
            }
            for p in pieces
        ],
        "projects": [
            {
                "id": pr.id,
                "name": pr.name,
                "concert_date": _ts(pr.concert_date),
                "daily_goal_minutes": pr.daily_goal_minutes,
                "piece_ids": list(pr.piece_ids),
            }
            for pr in projects
        ],
    }
    path = Path(file_path)
    if path.suffix.lower() in (".yaml", ".yml"):
        import yaml
        path.write_text(yaml.safe_dump(document, sort_keys=False))
    else:
        path.write_text(json.dumps(document, indent=2))
    spot_count = sum(len(p["spots"]) for p in document["pieces"])
    logger.info("Exported %d pieces, %d spots to %s", len(pieces), spot_count, path.name)
    return {"pieces": len(pieces), "spots": spot_count, "projects": len(projects)}


def read_library_file(file_path: str) -> dict:
    path = Path(file_path)
    suffix = path.suffix.lower()
    if suffix == ".json":
        data = json.loads(path.read_text())
    elif suffix in (".yaml", ".yml"):
        import yaml
        data = yaml.safe_load(path.read_text())
    else:
        raise ValidationError(f"Unsupported library format: {suffix or path.name}")
    if not isinstance(data, dict) or "pieces" not in data:
        raise ValidationError(f"{path.name} is not a library export")
    if data.get("version", FORMAT_VERSION) != FORMAT_VERSION:
        raise ValidationError(f"Unsupported library version {data.get('version')!r}")
    return data


def piece_from_dict(data: dict) -> Piece:
    try:
        spots = tuple(spot_from_dict(s) for s in data.get("spots", []))
        piece = Piece(
            id=data["id"],
            title=data["title"],
            composer=data.get("composer", ""),
            difficulty=int(data.get("difficulty", 3)),
            spots=spots,
            target_tempo=data.get("target_tempo"),
            current_tempo=data.get("current_tempo"),
            total_minutes=int(data.get("total_minutes", 0)),
            tags=tuple(data.get("tags", [])),
            pdf_path=data.get("pdf_path", ""),
            total_pages=int(data.get("total_pages", 0)),
        )
    except KeyError as e:
        raise ValidationError(f"Piece record is missing {e.args[0]!r}") from None
    except (TypeError, ValueError) as e:
        if isinstance(e, ValidationError):
            raise
        raise ValidationError(f"Malformed piece record {data.get('id')!r}: {e}") from None
    if piece.total_pages < 0:
        raise ValidationError(f"Piece {piece.id!r} has a negative page count")
    for spot in piece.spots:
        if spot.piece_id != piece.id:
            raise ValidationError(f"Spot {spot.id!r} belongs to {spot.piece_id!r}, not to piece {piece.id!r}")
    return piece


def project_from_dict(data: dict) -> Project:
    try:
        return Project(
            id=data["id"],
            name=data["name"],
            piece_ids=tuple(data.get("piece_ids", [])),
            concert_date=_dt(data.get("concert_date")),
            daily_goal_minutes=int(data.get("daily_goal_minutes", 30)),
        )
    except KeyError as e:
        raise ValidationError(f"Project record is missing {e.args[0]!r}") from None
    except (TypeError, ValueError) as e:
        if isinstance(e, ValidationError):
            raise
        raise ValidationError(f"Malformed project record {data.get('id')!r}: {e}") from None


def _check_unique(kind: str, ids) -> None:
    seen = set()
    for record_id in ids:
        if record_id in seen:
            raise ValidationError(f"Duplicate {kind} id {record_id!r} in library file")
        seen.add(record_id)


def import_library(db_path: str, file_path: str) -> dict:
    """Load pieces, spots and projects from an export.

    Every record is validated first and the whole file is written in one
    transaction, so a bad record leaves the store untouched.
    """
    data = read_library_file(file_path)
    pieces = [piece_from_dict(p) for p in data["pieces"]]
    projects = [project_from_dict(pr) for pr in data.get("projects") or []]

    _check_unique("piece", [p.id for p in pieces])
    _check_unique("spot", [s.id for p in pieces for s in p.spots])
    _check_unique("project", [pr.id for pr in projects])
    known = {p.id for p in pieces} | {p.id for p in library.list_pieces(db_path)}
    for project in projects:
        missing = [pid for pid in project.piece_ids if pid not in known]
        if missing:
            raise ValidationError(f"Project {project.name!r} names unknown pieces: {', '.join(missing)}")

    counts = library.store_library(db_path, pieces, projects)
    logger.info("Imported %s from %s", counts, Path(file_path).name)
    return counts
