import pytest

import raid_reservation as rr
from conftest import DAY, submit


def test_set_code_overwrites_previous(db):
    rr.set_code(db, "dirige", DAY, "1111")
    rr.set_code(db, "dirige", DAY, "2222")

    rows = db.execute("SELECT * FROM day_codes WHERE raid_key='dirige' AND date_kst=?", (DAY,)).fetchall()
    assert len(rows) == 1
    assert rr.check_code(db, "dirige", DAY, "2222")
    assert not rr.check_code(db, "dirige", DAY, "1111")


def test_code_is_not_stored_in_plaintext(db):
    rr.set_code(db, "dirige", DAY, "1234")
    row = db.execute("SELECT code_hash FROM day_codes").fetchone()
    assert row["code_hash"] != "1234"


def test_check_code_scoped_to_raid_and_day(db):
    rr.set_code(db, "narbel", DAY, "1234")

    assert rr.check_code(db, "narbel", DAY, "1234")
    assert not rr.check_code(db, "narbel", DAY, "0000")
    assert not rr.check_code(db, "dirige", DAY, "1234")
    assert not rr.check_code(db, "narbel", "2026-10-19", "1234")


def test_check_code_without_code_set(db):
    assert not rr.check_code(db, "dirige", DAY, "")
    assert not rr.check_code(db, "dirige", DAY, "anything")


@pytest.mark.parametrize("raid, code, field", [
    ("nope", "1234", "raid"),
    ("dirige", "   ", "code"),
])
def test_set_code_rejects_bad_input(db, raid, code, field):
    with pytest.raises(rr.ValidationError) as exc:
        rr.set_code(db, raid, DAY, code)
    assert exc.value.field == field


def test_verify_access_raises_auth_error(db):
    rr.set_code(db, "dirige", DAY, "1234")
    with pytest.raises(rr.AuthError):
        rr.verify_access(db, "dirige", DAY, "0000")
    rr.verify_access(db, "dirige", DAY, " 1234 ")


@pytest.mark.parametrize("grade", [key for key, _ in rr.GRADE_OPTIONS])
def test_submit_accepts_every_grade(db, grade):
    assert submit(db, grade=grade) > 0


@pytest.mark.parametrize("grade", ["", "gold", "BURNING", None])
def test_submit_rejects_unknown_grade(db, grade):
    with pytest.raises(rr.ValidationError) as exc:
        submit(db, grade=grade)
    assert exc.value.field == "viewer_grade"


@pytest.mark.parametrize("value", [-1, rr.COUNT_MAX + 1, "3.5", "abc", "", None, "9_9", "\u0663", "+3"])
def test_submit_rejects_bad_counts(db, value):
    with pytest.raises(rr.ValidationError) as exc:
        submit(db, dealers=value)
    assert exc.value.field == "dealer_count"
    with pytest.raises(rr.ValidationError) as exc:
        submit(db, buffers=value)
    assert exc.value.field == "buffer_count"
    assert rr.list_today(db, "dirige", DAY) == []


@pytest.mark.parametrize("value", [0, rr.COUNT_MAX, "7"])
def test_submit_accepts_boundary_counts(db, value):
    app_id = submit(db, dealers=value, buffers=value)
    row = rr.list_today(db, "dirige", DAY)[0]
    assert row["id"] == app_id
    assert row["dealer_count"] == int(value)
    assert row["buffer_count"] == int(value)


@pytest.mark.parametrize("kwargs, field", [
    ({"nickname": "   "}, "nickname"),
    ({"group": ""}, "group_name"),
    ({"raid": "unknown"}, "raid"),
])
def test_submit_rejects_missing_fields(db, kwargs, field):
    with pytest.raises(rr.ValidationError) as exc:
        submit(db, **kwargs)
    assert exc.value.field == field


def test_submit_adds_pending_row(db):
    before = len(rr.list_today(db, "dirige", DAY))
    submit(db, nickname="  spaced  ")
    rows = rr.list_today(db, "dirige", DAY)

    assert len(rows) == before + 1
    assert rows[-1]["confirmed"] == 0
    assert rows[-1]["comment"] == ""
    assert rows[-1]["status"] == "pending"
    assert rows[-1]["nickname"] == "spaced"


def test_toggle_confirm_changes_status(db):
    app_id = submit(db)

    rr.toggle_confirm(db, app_id, True)
    assert rr.list_today(db, "dirige", DAY)[0]["status"] == "confirmed"

    rr.toggle_confirm(db, app_id, False)
    assert rr.list_today(db, "dirige", DAY)[0]["status"] == "pending"


def test_mutations_on_missing_id_are_noops(db):
    app_id = submit(db)
    rr.toggle_confirm(db, 9999, True)
    rr.set_comment(db, 9999, "hello")
    rr.delete_one(db, 9999)

    rows = rr.list_today(db, "dirige", DAY)
    assert [r["id"] for r in rows] == [app_id]
    assert rows[0]["status"] == "pending"


def test_set_comment_truncates(db):
    app_id = submit(db)
    rr.set_comment(db, app_id, "x" * 500)
    assert rr.list_today(db, "dirige", DAY)[0]["comment"] == "x" * rr.COMMENT_MAX


def test_sort_by_grade_then_time(db):
    for grade in ("normal", "burning", "pink"):
        submit(db, grade=grade, nickname=grade)

    by_grade = rr.list_applications(db, "dirige", DAY, "grade")
    by_time = rr.list_applications(db, "dirige", DAY, "time")

    assert [r["viewer_grade"] for r in by_grade] == ["burning", "pink", "normal"]
    assert [r["viewer_grade"] for r in by_time] == ["normal", "burning", "pink"]
    assert [r["viewer_grade"] for r in rr.list_today(db, "dirige", DAY)] == ["normal", "burning", "pink"]


def test_sort_ties_keep_submission_order(db):
    submit(db, grade="pink", nickname="first")
    submit(db, grade="burning", nickname="second")
    submit(db, grade="pink", nickname="third")

    rows = rr.list_applications(db, "dirige", DAY, "grade")
    assert [r["nickname"] for r in rows] == ["second", "first", "third"]


def test_unknown_grade_sorts_last(db):
    submit(db, grade="normal", nickname="known")
    db.execute(
        "INSERT INTO applications (date_kst, raid_key, viewer_grade, nickname, group_name, dealer_count, buffer_count, created_at)"
        " VALUES (?, 'dirige', 'legacy', 'old', 'g', 0, 0, '2000-01-01T00:00:00.000000+00:00')",
        (DAY,),
    )
    db.commit()

    rows = rr.list_applications(db, "dirige", DAY, "grade")
    assert [r["nickname"] for r in rows] == ["known", "old"]
    assert rr.grade_priority("legacy") == rr.UNKNOWN_GRADE_PRIORITY


def test_unknown_sort_falls_back_to_time(db):
    submit(db, grade="normal", nickname="a")
    submit(db, grade="burning", nickname="b")
    rows = rr.list_applications(db, "dirige", DAY, "bogus")
    assert [r["nickname"] for r in rows] == ["a", "b"]


def test_delete_all_only_touches_raid_and_day(db):
    submit(db, raid="dirige")
    submit(db, raid="dirige")
    submit(db, raid="narbel")
    submit(db, raid="dirige", day="2026-10-17")

    assert rr.delete_all_for_raid_today(db, "dirige", DAY) == 2

    assert rr.list_today(db, "dirige", DAY) == []
    assert len(rr.list_today(db, "narbel", DAY)) == 1
    assert len(rr.list_today(db, "dirige", "2026-10-17")) == 1


def test_delete_one(db):
    keep = submit(db, nickname="keep")
    drop = submit(db, nickname="drop")
    rr.delete_one(db, drop)
    assert [r["id"] for r in rr.list_today(db, "dirige", DAY)] == [keep]
