import os
import tempfile
from pathlib import Path

import pytest

# Point the app at a throwaway SQLite file before it reads its settings.
_TMP_DIR = Path(tempfile.mkdtemp(prefix="academic-api-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR / 'test.db'}"
os.environ["SUPER_ADMIN_PASSWORD"] = "admin12345"
os.environ["LOGIN_RATE_LIMIT_PER_MIN"] = "100000"

from fastapi.testclient import TestClient  # noqa: E402

from app import models, services  # noqa: E402
from app.config import settings  # noqa: E402
from app.main import app  # noqa: E402


@pytest.fixture(scope="session")
def client():
    """TestClient with the app lifespan running (database opened)."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def database(client):
    """A freshly reset database holding only the seeded super admin."""
    db = app.state.db
    db.reset()
    with db.start_session() as session:
        services.UserService(session, db).seed_super_admin()
    return db


@pytest.fixture
def session(database):
    with database.start_session() as s:
        yield s


@pytest.fixture
def admin_headers(client, database):
    r = client.post('/auth/login', json={'id': settings.SUPER_ADMIN_ID, 'password': settings.SUPER_ADMIN_PASSWORD})
    assert r.status_code == 200
    return {'Authorization': f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def academic(session):
    """One semester, faculty and department to admit students into."""
    svc = services.AcademicService(session)
    semester = svc.create_semester({
        'name': 'Autumn', 'code': '01', 'year': '2030',
        'start_month': 'January', 'end_month': 'April',
    })
    faculty = svc.create_faculty({'name': 'Faculty of Engineering'})
    department = svc.create_department({'name': 'Department of Computer Science', 'academic_faculty_id': faculty.id})
    return {'semester_id': semester.id, 'faculty_id': faculty.id, 'department_id': department.id}


@pytest.fixture
def student_payload(academic):
    def build(n: int = 1, **overrides) -> dict:
        payload = {
            'name': {'first_name': f'Student{n}', 'middle_name': None, 'last_name': 'Doe'},
            'gender': 'female',
            'date_of_birth': None,
            'email': f'student{n}@example.com',
            'contact_no': '0100000000',
            'emergency_contact_no': '0100000001',
            'blood_group': 'A+',
            'present_address': f'{n} Main Street',
            'permanent_address': 'Hometown',
            'guardian': {
                'father_name': 'John', 'father_occupation': 'Engineer', 'father_contact_no': '0111',
                'mother_name': 'Jane', 'mother_occupation': 'Teacher', 'mother_contact_no': '0112',
            },
            'local_guardian': {'name': 'Mark', 'occupation': 'Clerk', 'contact_no': '0113', 'address': 'Town'},
            'admission_semester_id': academic['semester_id'],
            'academic_department_id': academic['department_id'],
            'profile_img': None,
        }
        payload.update(overrides)
        return payload
    return build


@pytest.fixture
def admit(session, database, student_payload):
    """Admit a student through the service and return it."""
    def _admit(n: int = 1, **overrides) -> models.Student:
        svc = services.UserService(session, database)
        return svc.create_student(None, student_payload(n, **overrides))
    return _admit


def read_flags(database, student_id: str, user_id: str):
    """Return (student.is_deleted, user.is_deleted) from a fresh session."""
    with database.start_session() as s:
        student = s.get(models.Student, student_id)
        user = s.get(models.User, user_id)
        return (
            student.is_deleted if student else None,
            user.is_deleted if user else None,
        )


@pytest.fixture
def flags(database):
    return lambda student_id, user_id: read_flags(database, student_id, user_id)
