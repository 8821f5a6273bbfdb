import json
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from score_coach.db import init_db
from score_coach.importer import (
    add_piece_from_pdf, export_library, import_library, pdf_page_count, read_library_file,
    spot_from_dict, spot_to_dict,
)
from score_coach.library import (
    add_piece, add_project, add_spot, assign_piece, deactivate_spot, get_piece, get_project,
    list_pieces, list_projects, record_practice,
)
from score_coach.models import PracticeResult, ReadinessLevel, SpotColor, ValidationError

NOW = datetime(2024, 3, 4, 10, 0)


def build_library(db_path):
    init_db(db_path)
    piece = add_piece(db_path, "Clair de Lune", composer="Debussy", difficulty=4, tags=["impressionist"])
    spot = add_spot(db_path, piece.id, "arpeggios", page=2, bbox=(0.0, 0.4, 1.0, 0.2), color="yellow")
    record_practice(db_path, spot.id, "good", duration_minutes=8, now=NOW)
    add_spot(db_path, piece.id, "ending", page=3)
    project = add_project(db_path, "Recital", concert_date=NOW + timedelta(days=30))
    assign_piece(db_path, project.id, piece.id)
    return piece, spot, project


def test_export_import_round_trip(tmp_path):
    source = str(tmp_path / "source.db")
    piece, spot, project = build_library(source)
    out = tmp_path / "library.json"
    counts = export_library(source, str(out))
    assert counts == {"pieces": 1, "spots": 2, "projects": 1}
    assert json.loads(out.read_text())["version"] == 1

    target = str(tmp_path / "target.db")
    init_db(target)
    assert import_library(target, str(out)) == counts
    loaded = get_piece(target, piece.id)
    assert loaded.title == "Clair de Lune"
    assert loaded.tags == ("impressionist",)
    assert loaded.total_minutes == 8
    restored = {s.id: s for s in loaded.spots}[spot.id]
    assert restored.color == SpotColor.YELLOW
    assert restored.readiness_level == ReadinessLevel.LEARNING
    assert restored.next_due == NOW + timedelta(days=1)
    assert [a.result for a in restored.history] == [PracticeResult.GOOD]
    assert get_project(target, project.id).piece_ids == (piece.id,)


def test_yaml_export(tmp_path):
    source = str(tmp_path / "source.db")
    build_library(source)
    out = tmp_path / "library.yaml"
    export_library(source, str(out))
    data = read_library_file(str(out))
    assert data["pieces"][0]["composer"] == "Debussy"
    assert len(data["pieces"][0]["spots"]) == 2


def test_inactive_spots_are_exported(tmp_path):
    source = str(tmp_path / "source.db")
    _, spot, _ = build_library(source)
    deactivate_spot(source, spot.id)
    counts = export_library(source, str(tmp_path / "out.json"))
    assert counts["spots"] == 2


def test_spot_dict_rejects_bad_records():
    with pytest.raises(ValidationError):
        spot_from_dict({"id": "s1", "piece_id": "p1"})
    with pytest.raises(ValidationError):
        spot_from_dict({"id": "s1", "piece_id": "p1", "title": "x", "color": "purple"})
    with pytest.raises(ValidationError):
        spot_from_dict({"id": "s1", "piece_id": "p1", "title": "x",
                        "history": [{"timestamp": NOW.isoformat(), "duration_minutes": -2, "result": "good"}]})


def test_spot_dict_round_trip(tmp_db):
    piece, _, _ = build_library(tmp_db)
    for spot in get_piece(tmp_db, piece.id).spots:
        assert spot_from_dict(spot_to_dict(spot)) == spot


def test_import_validates_before_writing(tmp_db, tmp_path):
    init_db(tmp_db)
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({
        "version": 1,
        "pieces": [{"id": "p1", "title": "Etude", "spots": [{"id": "s1", "piece_id": "p1", "page": 0, "title": "x"}]}],
    }))
    with pytest.raises(ValidationError):
        import_library(tmp_db, str(bad))
    with pytest.raises(ValidationError):
        get_piece(tmp_db, "p1")


def write_library(path, pieces, projects=()):
    path.write_text(json.dumps({"version": 1, "pieces": pieces, "projects": list(projects)}))
    return str(path)


def test_bad_second_piece_leaves_nothing_behind(tmp_db, tmp_path):
    init_db(tmp_db)
    path = write_library(tmp_path / "lib.json", [
        {"id": "p1", "title": "Etude", "spots": [{"id": "s1", "piece_id": "p1", "title": "x"}]},
        {"id": "p2", "title": "Sonata", "difficulty": 9},
    ])
    with pytest.raises(ValidationError):
        import_library(tmp_db, path)
    assert list_pieces(tmp_db) == []


def test_spot_filed_under_the_wrong_piece_is_rejected(tmp_db, tmp_path):
    init_db(tmp_db)
    path = write_library(tmp_path / "lib.json", [
        {"id": "p1", "title": "Etude", "spots": [{"id": "s1", "piece_id": "elsewhere", "title": "x"}]},
    ])
    with pytest.raises(ValidationError, match="belongs to"):
        import_library(tmp_db, path)
    assert list_pieces(tmp_db) == []


def test_project_with_unknown_piece_is_rejected(tmp_db, tmp_path):
    init_db(tmp_db)
    path = write_library(
        tmp_path / "lib.json",
        [{"id": "p1", "title": "Etude"}],
        [{"id": "r1", "name": "Recital", "piece_ids": ["p1", "ghost"]}],
    )
    with pytest.raises(ValidationError, match="ghost"):
        import_library(tmp_db, path)
    assert list_pieces(tmp_db) == []
    assert list_projects(tmp_db) == []


def test_project_may_name_pieces_already_in_the_store(tmp_db, tmp_path):
    init_db(tmp_db)
    existing = add_piece(tmp_db, "Nocturne")
    path = write_library(tmp_path / "lib.json", [], [{"id": "r1", "name": "Recital", "piece_ids": [existing.id]}])
    assert import_library(tmp_db, path)["projects"] == 1
    assert get_project(tmp_db, "r1").piece_ids == (existing.id,)


def test_duplicate_ids_in_file_are_rejected(tmp_db, tmp_path):
    init_db(tmp_db)
    spot = {"id": "s1", "piece_id": "p1", "title": "x"}
    path = write_library(tmp_path / "lib.json", [{"id": "p1", "title": "Etude", "spots": [spot, spot]}])
    with pytest.raises(ValidationError, match="Duplicate spot"):
        import_library(tmp_db, path)
    assert list_pieces(tmp_db) == []


def test_importing_twice_keeps_the_first_copy_only(tmp_path):
    source = str(tmp_path / "source.db")
    build_library(source)
    out = str(tmp_path / "library.json")
    export_library(source, out)
    target = str(tmp_path / "target.db")
    init_db(target)
    import_library(target, out)
    with pytest.raises(ValidationError, match="already exists"):
        import_library(target, out)
    assert len(list_pieces(target)) == 1
    assert len(list_projects(target)) == 1


def test_concert_date_with_utc_offset_is_rejected(tmp_db, tmp_path):
    init_db(tmp_db)
    path = write_library(
        tmp_path / "lib.json",
        [{"id": "p1", "title": "Etude"}],
        [{"id": "r1", "name": "Recital", "concert_date": "2099-11-01T19:00:00+01:00", "piece_ids": ["p1"]}],
    )
    with pytest.raises(ValidationError, match="UTC offset"):
        import_library(tmp_db, path)
    assert list_pieces(tmp_db) == []


def test_read_library_file_rejects_other_files(tmp_path):
    txt = tmp_path / "notes.txt"
    txt.write_text("hello")
    with pytest.raises(ValidationError):
        read_library_file(str(txt))
    wrong = tmp_path / "other.json"
    wrong.write_text(json.dumps({"cards": []}))
    with pytest.raises(ValidationError):
        read_library_file(str(wrong))
    future = tmp_path / "future.json"
    future.write_text(json.dumps({"version": 99, "pieces": []}))
    with pytest.raises(ValidationError):
        read_library_file(str(future))


def test_pdf_page_count(tmp_path):
    from PyPDF2 import PdfWriter
    writer = PdfWriter()
    for _ in range(3):
        writer.add_blank_page(width=612, height=792)
    pdf = tmp_path / "score.pdf"
    with open(pdf, "wb") as f:
        writer.write(f)
    assert pdf_page_count(str(pdf)) == 3


def test_add_piece_from_pdf(tmp_db, tmp_path):
    init_db(tmp_db)
    pdf = tmp_path / "moonlight_sonata.pdf"
    pdf.write_bytes(b"%PDF-1.4")
    with patch("score_coach.importer.pdf_page_count", return_value=12):
        piece = add_piece_from_pdf(tmp_db, str(pdf), composer="Beethoven")
    assert piece.title == "moonlight sonata"
    assert piece.total_pages == 12
    assert get_piece(tmp_db, piece.id).pdf_path == str(pdf)
    with pytest.raises(ValidationError):
        add_spot(tmp_db, piece.id, "coda", page=13)


def test_add_piece_from_pdf_requires_pdf(tmp_db, tmp_path):
    init_db(tmp_db)
    with pytest.raises(ValidationError):
        add_piece_from_pdf(tmp_db, str(tmp_path / "score.docx"))
