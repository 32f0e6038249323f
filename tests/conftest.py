"""
Shared pytest fixtures for the CSI Portal test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / login: user factory and Bearer-header helper
    - attempt_login: raw login response for a username/password
    - super_admin / admin_event / it_lead / dept_head: headers per role
    - org: BU → division → department, function, applications, mappings
    - survey: Active survey with Rating / Text / MatrixLikert questions
    - submitted: one submitted response for the survey
"""

import functools
from datetime import timedelta

import pytest

from csi_portal import create_app
from csi_portal.middleware.csrf import clear_csrf_tokens
from csi_portal.models import db as _db
from csi_portal.models.auth import (
    ROLE_ADMIN_EVENT,
    ROLE_DEPARTMENT_HEAD,
    ROLE_IT_LEAD,
    ROLE_SUPER_ADMIN,
    User,
)
from csi_portal.models.org import (
    Application,
    ApplicationDepartmentMapping,
    BusinessUnit,
    Department,
    Division,
    Function,
    FunctionApplicationMapping,
)
from csi_portal.models.survey import Question, Survey
from csi_portal.utils.crypto import hash_password
from csi_portal.utils.helpers import utcnow

TEST_PASSWORD = "Secret-pass-123"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    application = create_app("testing")
    application.config["UPLOAD_FOLDER"] = str(tmp_path_factory.mktemp("uploads"))
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        clear_csrf_tokens()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users & tokens ───────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: insert an active local user with TEST_PASSWORD."""

    def _make(username, role, **fields):
        user = User(
            username=username,
            display_name=fields.pop("display_name", username.title()),
            email=fields.pop("email", f"{username}@example.com"),
            role=role,
            use_ldap=fields.pop("use_ldap", False),
            password_hash=hash_password(TEST_PASSWORD),
            is_active=fields.pop("is_active", True),
            **fields,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def attempt_login(client):
    """Post credentials and return the raw login response."""

    def _attempt(username, password=TEST_PASSWORD):
        return client.post("/api/v1/auth/login", json={"username": username, "password": password})

    return _attempt


@pytest.fixture()
def login(client):
    """Log *username* in and return Authorization headers."""

    def _login(username, password=TEST_PASSWORD):
        res = client.post("/api/v1/auth/login", json={"username": username, "password": password})
        assert res.status_code == 200, res.get_json()
        return {"Authorization": f"Bearer {res.get_json()['data']['token']}"}

    return _login


@pytest.fixture()
def super_admin(make_user, login):
    make_user("root", ROLE_SUPER_ADMIN)
    return login("root")


@pytest.fixture()
def admin_event(make_user, login):
    make_user("eventadmin", ROLE_ADMIN_EVENT)
    return login("eventadmin")


@pytest.fixture()
def it_lead_user(make_user):
    return make_user("itlead", ROLE_IT_LEAD, display_name="IT Lead")


@pytest.fixture()
def it_lead(it_lead_user, login):
    return login(it_lead_user.username)


@pytest.fixture()
def dept_head(make_user, login, org):
    make_user("depthead", ROLE_DEPARTMENT_HEAD, department_id=org["department_id"])
    return login("depthead")


# ── Domain data ──────────────────────────────────────────────────────────


@pytest.fixture()
def org(it_lead_user):
    """One BU/division/department, a function led by the IT lead, two mapped apps."""
    bu = BusinessUnit(code="BU1", name="Corporate")
    _db.session.add(bu)
    _db.session.flush()
    division = Division(business_unit_id=bu.id, code="DIV1", name="Operations")
    _db.session.add(division)
    _db.session.flush()
    department = Department(division_id=division.id, code="DEP1", name="Finance")
    other_department = Department(division_id=division.id, code="DEP2", name="Logistics")
    _db.session.add_all([department, other_department])
    function = Function(code="FN1", name="ERP Services", it_dept_head_user_id=it_lead_user.id)
    erp = Application(code="ERP", name="ERP Suite")
    crm = Application(code="CRM", name="CRM Portal")
    unmapped = Application(code="BI", name="BI Reports")
    _db.session.add_all([function, erp, crm, unmapped])
    _db.session.flush()
    _db.session.add_all([
        FunctionApplicationMapping(function_id=function.id, application_id=erp.id),
        FunctionApplicationMapping(function_id=function.id, application_id=crm.id),
        ApplicationDepartmentMapping(application_id=erp.id, department_id=department.id),
        ApplicationDepartmentMapping(application_id=crm.id, department_id=department.id),
    ])
    _db.session.commit()
    return {
        "business_unit_id": bu.id,
        "division_id": division.id,
        "department_id": department.id,
        "other_department_id": other_department.id,
        "function_id": function.id,
        "erp_id": erp.id,
        "crm_id": crm.id,
        "unmapped_app_id": unmapped.id,
    }


@pytest.fixture()
def survey():
    """Active survey open from yesterday for a week, with three questions."""
    now = utcnow()
    s = Survey(
        title="IT Satisfaction 2026",
        description="Annual survey",
        start_date=now - timedelta(days=1),
        end_date=now + timedelta(days=7),
        status="Active",
        target_score=7.5,
    )
    s.questions = [
        Question(type="Rating", prompt_text="Overall satisfaction", is_mandatory=True,
                 display_order=1, options={"min": 1, "max": 10},
                 comment_required_below_rating=5),
        Question(type="Text", prompt_text="What should we improve?", display_order=2),
        Question(type="MatrixLikert", prompt_text="Service quality", display_order=3,
                 options={"rows": ["Speed", "Quality"], "columns": [1, 2, 3, 4, 5]}),
    ]
    _db.session.add(s)
    _db.session.commit()
    return s


@pytest.fixture()
def question_ids(survey):
    return {q.type: q.id for q in survey.questions}


def submission_payload(survey_id, org, question_ids, *, email="jane@example.com",
                       rating=8, comment=None, app_ids=None):
    """Build a public submission body."""
    return {
        "survey_id": survey_id,
        "respondent": {
            "email": email,
            "name": "Jane Doe",
            "business_unit_id": org["business_unit_id"],
            "division_id": org["division_id"],
            "department_id": org["department_id"],
        },
        "selected_application_ids": app_ids or [org["erp_id"]],
        "responses": [
            {"question_id": question_ids["Rating"],
             "value": {"numeric_value": rating, "comment_value": comment}},
            {"question_id": question_ids["Text"], "value": {"text_value": "Faster tickets"}},
            {"question_id": question_ids["MatrixLikert"],
             "value": {"matrix_values": {"Speed": 4, "Quality": 5}}},
        ],
    }


@pytest.fixture()
def submitted(client, survey, org, question_ids):
    """Submit one response (ERP only) and return its id."""
    res = client.post("/api/v1/responses", json=submission_payload(survey.id, org, question_ids))
    assert res.status_code == 201, res.get_json()
    return res.get_json()["data"]["response_ids"][0]


@pytest.fixture()
def payload(survey, org, question_ids):
    """``payload(**overrides)`` → submission body for the survey fixture."""
    return functools.partial(submission_payload, survey.id, org, question_ids)
