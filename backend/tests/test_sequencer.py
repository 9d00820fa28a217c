# backend/tests/test_sequencer.py
import pytest
from db import SessionLocal
from errors import Conflict
from models import User, SurveyDesign, Question
import sequencer


@pytest.fixture
def design(db_session):
    user = User(name="owner", password_hash="x")
    db_session.add(user)
    db_session.flush()
    d = SurveyDesign(user_id=user.id, name="design")
    db_session.add(d)
    db_session.commit()
    return d

def _add(db_session, design, numbers):
    rows = [Question(survey_design_id=design.id, number=n, text=f"q{n}") for n in numbers]
    db_session.add_all(rows)
    db_session.commit()
    return rows

def _fresh_numbers(design_id):
    with SessionLocal() as other:
        return [(q.text, q.number) for q in sequencer.ordered_questions(other, design_id)]


def test_renumber_closes_gaps(db_session, design):
    _add(db_session, design, [2, 5, 9])
    sequencer.renumber(db_session, design.id)
    db_session.commit()
    assert _fresh_numbers(design.id) == [("q2", 1), ("q5", 2), ("q9", 3)]

def test_renumber_handles_numbers_above_offset(db_session, design):
    _add(db_session, design, [1, 1500, 3000])
    sequencer.renumber(db_session, design.id, offset=1000)
    db_session.commit()
    assert [n for _, n in _fresh_numbers(design.id)] == [1, 2, 3]

def test_renumber_dense_is_noop(db_session, design):
    rows = _add(db_session, design, [1, 2, 3])
    result = sequencer.renumber(db_session, design.id)
    assert [q.id for q in result] == [q.id for q in rows]
    assert not db_session.dirty

def test_renumber_empty_design(db_session, design):
    assert sequencer.renumber(db_session, design.id) == []

def test_append_numbers_after_max(db_session, design):
    _add(db_session, design, [1, 4])
    q = sequencer.append_question(db_session, design)
    assert q.number == 5

def test_append_retries_on_collision(db_session, design, monkeypatch):
    _add(db_session, design, [1, 2])
    calls = []
    real_next = sequencer.next_number

    def racing_next(db, design_id):
        calls.append(design_id)
        # first attempt loses the race to a number someone else already holds
        return 2 if len(calls) == 1 else real_next(db, design_id)

    monkeypatch.setattr(sequencer, "next_number", racing_next)
    q = sequencer.append_question(db_session, design)
    assert len(calls) == 2
    assert q.number == 3
    assert [n for _, n in _fresh_numbers(design.id)] == [1, 2, 3]

def test_append_gives_up_after_attempts(db_session, design, monkeypatch):
    _add(db_session, design, [1])
    monkeypatch.setattr(sequencer, "next_number", lambda db, design_id: 1)
    with pytest.raises(Conflict):
        sequencer.append_question(db_session, design)
    assert len(_fresh_numbers(design.id)) == 1

def test_delete_rolls_back_on_failure(db_session, design, monkeypatch):
    q1, q2, q3 = _add(db_session, design, [1, 2, 3])

    def boom(design):
        raise RuntimeError("touch failed")

    monkeypatch.setattr(sequencer, "touch", boom)
    with pytest.raises(RuntimeError):
        sequencer.delete_question(db_session, q1)
    assert _fresh_numbers(design.id) == [("q1", 1), ("q2", 2), ("q3", 3)]

def test_move_swaps_and_reports(db_session, design):
    q1, q2, q3 = _add(db_session, design, [1, 2, 3])
    assert sequencer.move_down(db_session, q1) is True
    assert _fresh_numbers(design.id) == [("q2", 1), ("q1", 2), ("q3", 3)]
    assert sequencer.move_up(db_session, q1) is True
    assert _fresh_numbers(design.id) == [("q1", 1), ("q2", 2), ("q3", 3)]

def test_move_at_edges_returns_false(db_session, design):
    q1, q2 = _add(db_session, design, [1, 2])
    assert sequencer.move_up(db_session, q1) is False
    assert sequencer.move_down(db_session, q2) is False
    assert _fresh_numbers(design.id) == [("q1", 1), ("q2", 2)]

def test_build_snapshot_skips_blank_text(db_session, design):
    rows = _add(db_session, design, [1, 2, 3])
    rows[1].text = "   "
    snapshot = sequencer.build_snapshot(rows)
    assert [(q["number"], q["text"]) for q in snapshot] == [(1, "q1"), (2, "q3")]
    assert {"id", "surveyDesignId", "allowComment", "visualizationContentId"} <= set(snapshot[0])
    # live rows are untouched
    assert [q.number for q in rows] == [1, 2, 3]

def test_publish_stores_design_header(db_session, design):
    design.title = "Title"
    _add(db_session, design, [1])
    pub = sequencer.publish(db_session, design, name="pub", open_date_time=None, close_date_time=None)
    assert pub.survey_design == {
        "id": design.id, "name": "design", "title": "Title", "introText": None, "conclusionText": None,
    }
    assert pub.status == "in-progress"
