from danceclub.extensions import db
from danceclub.models import AttendanceRecord, Course, Profile, TransferRequest
from danceclub.services.enrollment import enroll_in_course


def test_register_logs_in_as_guest(client):
    resp = client.post("/auth/register", data={"email": "new@example.com", "name": "Newbie",
                                               "password": "secret1"})
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/me/")
    assert Profile.query.filter_by(email="new@example.com").one().role == "guest"


def test_register_rejects_short_password(client):
    resp = client.post("/auth/register", data={"email": "x@example.com", "name": "X",
                                               "password": "123"})
    assert resp.status_code == 400
    assert b"at least 6 characters" in resp.data


def test_login_failure_and_anonymous_redirect(client, make_profile):
    user = make_profile()
    resp = client.post("/auth/login", data={"email": user.email, "password": "nope"})
    assert b"Incorrect email or password" in resp.data

    resp = client.get("/me/")
    assert resp.status_code == 302
    assert "/auth/login" in resp.headers["Location"]


def test_leaders_land_on_rollcall(client, make_profile, login):
    resp = login(make_profile(role="leader"))
    assert resp.headers["Location"].endswith("/leader/rollcall")


def test_member_pages_render(client, make_profile, make_course, login):
    member = make_profile(balance=10, name="Dancer")
    course = make_course()
    enroll_in_course(member, course.id)
    login(member)

    for url in ("/courses/", f"/courses/groups/{course.group_id}", f"/courses/{course.id}",
                "/me/", "/me/courses", "/me/cards", "/me/account"):
        assert client.get(url).status_code == 200, url


def test_enroll_through_the_web(client, make_profile, make_course, login):
    member = make_profile(balance=10)
    course = make_course()
    login(member)

    resp = client.post(f"/courses/{course.id}/enroll", data={"type": "full"}, follow_redirects=True)

    assert b"Enrolled! 4 cards deducted, 6 remaining." in resp.data
    assert db.session.get(Profile, member.id).card_balance == 6


def test_enroll_error_is_flashed(client, make_profile, make_course, login):
    course = make_course()
    login(make_profile(balance=0))

    resp = client.post(f"/courses/{course.id}/enroll", data={"type": "full"}, follow_redirects=True)

    assert b"Insufficient card balance" in resp.data


def test_draft_course_hidden_from_members(client, make_profile, make_course, login):
    course = make_course(status="draft")
    login(make_profile())
    assert client.get(f"/courses/{course.id}").status_code == 404


def test_member_transfer_and_makeup_forms(client, make_profile, make_course, login):
    member = make_profile(balance=10)
    friend = make_profile(name="Friend")
    course = make_course()
    sibling = make_course(group=course.group, name="Sibling")
    enroll_in_course(member, course.id)
    login(member)

    client.post(f"/me/courses/{course.id}/transfer",
                data={"session_id": course.sessions[1].id, "to_user_id": friend.id})
    assert TransferRequest.query.one().to_user_id == friend.id

    resp = client.get(f"/me/courses/{course.id}/transfer-candidates")
    assert friend.id in {m["id"] for m in resp.get_json()["all_members"]}

    # quota is spent by the transfer, so the makeup is refused
    resp = client.post(f"/me/courses/{course.id}/makeup",
                       data={"original_session_id": course.sessions[0].id,
                             "target_session_id": sibling.sessions[0].id},
                       follow_redirects=True)
    assert b"quota used up" in resp.data


def test_admin_only_pages(client, make_profile, login):
    login(make_profile(role="member"))
    assert client.get("/admin/members").status_code == 403
    assert client.get("/leader/rollcall").status_code == 403


def test_admin_pages_render(client, admin, make_course, login):
    make_course()
    login(admin)
    for url in ("/admin/courses", "/admin/courses/new", "/admin/members", "/admin/settings",
                "/admin/cards", "/leader/rollcall", "/leader/approvals"):
        assert client.get(url).status_code == 200, url


def test_admin_creates_course_from_form(client, admin, make_group, login):
    group = make_group()
    login(admin)

    resp = client.post("/admin/courses/new", data={
        "group_id": group.id, "name": "Tango", "type": "normal", "teacher": "Lu", "room": "C",
        "start_time": "19:30", "end_time": "21:00", "capacity": "12", "cards_per_session": "2",
        "status": "published", "leader_id": "",
        "session_id": ["", ""], "session_date": ["2026-11-02", "2026-11-09"],
    })

    course = Course.query.filter_by(name="Tango").one()
    assert resp.headers["Location"].endswith(f"/courses/{course.id}")
    assert [s.session_number for s in course.sessions] == [1, 2]
    assert client.get(f"/admin/courses/{course.id}/edit").status_code == 200


def test_admin_settings_form(client, admin, login):
    login(admin)
    client.post("/admin/settings", data={"cfg-card_purchase_open": "true"})
    resp = client.get("/admin/settings")
    assert b'value="true"' in resp.data


def test_leader_saves_rollcall_form(client, make_profile, make_course, login):
    leader = make_profile(role="leader")
    course = make_course(leader=leader)
    student = make_profile(balance=10)
    enroll_in_course(student, course.id)
    session = course.sessions[0]
    login(leader)

    url = f"/leader/sessions/{session.id}/rollcall"
    assert client.get(url).status_code == 200
    client.post(url, data={f"status-{student.id}": "present", f"note-{student.id}": "early"})

    rec = AttendanceRecord.query.one()
    assert (rec.user_id, rec.status, rec.note) == (student.id, "present", "early")


def test_leader_cannot_open_other_rollcall(client, make_profile, make_course, login):
    course = make_course()
    login(make_profile(role="leader"))
    assert client.get(f"/leader/sessions/{course.sessions[0].id}/rollcall").status_code == 403


def test_cli_commands(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["init-db"])
    assert "8 settings seeded" in result.output

    result = runner.invoke(args=["create-admin", "boss@example.com", "Boss", "secret1"])
    assert "Admin boss@example.com created" in result.output
    assert Profile.query.filter_by(email="boss@example.com").one().role == "admin"


def test_admin_creates_free_course(client, admin, make_group, login):
    group = make_group()
    login(admin)

    client.post("/admin/courses/new", data={
        "group_id": group.id, "name": "Open rehearsal", "type": "rehearsal", "start_time": "18:00",
        "end_time": "19:00", "capacity": "30", "cards_per_session": "0", "status": "published",
        "session_id": [""], "session_date": ["2026-11-02"],
    })

    assert Course.query.filter_by(name="Open rehearsal").one().cards_per_session == 0


def test_course_form_defaults_cards_per_session(client, admin, make_group, login):
    group = make_group()
    login(admin)

    client.post("/admin/courses/new", data={
        "group_id": group.id, "name": "Waltz", "type": "normal", "start_time": "18:00",
        "end_time": "19:00", "capacity": "30", "status": "draft",
    })

    assert Course.query.filter_by(name="Waltz").one().cards_per_session == 1
