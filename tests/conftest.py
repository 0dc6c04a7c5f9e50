import itertools
from datetime import date, time, timedelta

import pytest

from danceclub import create_app
from danceclub.extensions import db
from danceclub.models import Course, CourseGroup, CourseLeader, CourseSession, Profile


@pytest.fixture
def app():
    app = create_app("config.TestConfig")
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_profile(app):
    counter = itertools.count(1)

    def _make(role="member", balance=0, name=None, password="secret1", valid_until=None):
        n = next(counter)
        p = Profile(email=f"user{n}@example.com", name=name or f"User {n}", role=role,
                    card_balance=balance, member_valid_until=valid_until)
        p.set_password(password)
        db.session.add(p)
        db.session.commit()
        return p

    return _make


@pytest.fixture
def admin(make_profile):
    return make_profile(role="admin", name="Admin")


@pytest.fixture
def make_group(app):
    def _make(title="2026 Autumn"):
        g = CourseGroup(title=title, period_start=date.today())
        db.session.add(g)
        db.session.commit()
        return g

    return _make


@pytest.fixture
def make_course(app, make_group):
    """Published course with weekly sessions starting a week from today."""

    def _make(group=None, name="Salsa Basics", capacity=10, cards_per_session=1, n_sessions=4,
              type="normal", status="published", start_time=time(19, 0), first_date=None,
              leader=None):
        group = group or make_group()
        first = first_date or date.today() + timedelta(days=7)
        c = Course(group_id=group.id, name=name, type=type, teacher="Ana", room="A",
                   start_time=start_time, end_time=time(start_time.hour + 1, 0),
                   capacity=capacity, cards_per_session=cards_per_session, status=status)
        db.session.add(c)
        db.session.flush()
        for i in range(n_sessions):
            db.session.add(CourseSession(course_id=c.id, session_number=i + 1,
                                         session_date=first + timedelta(days=7 * i)))
        if leader is not None:
            db.session.add(CourseLeader(course_id=c.id, user_id=leader.id))
        db.session.commit()
        return c

    return _make


@pytest.fixture
def login(client):
    def _login(profile, password="secret1"):
        return client.post("/auth/login", data={"email": profile.email, "password": password})

    return _login
