from datetime import date

import pydantic
import pytest

from app import models, services
from app.errors import AppError, NotFoundError, TransactionError


def _ghost_student(session, academic, student_id='2030019999'):
    """A student whose user does not exist."""
    student = models.Student(
        id=student_id,
        user_id='ghost-user',
        name={'first_name': 'Ghost', 'last_name': 'Doe'},
        gender='male',
        email='ghost@example.com',
        contact_no='1',
        emergency_contact_no='2',
        present_address='x',
        permanent_address='y',
        guardian={},
        local_guardian={},
        admission_semester_id=academic['semester_id'],
        academic_department_id=academic['department_id'],
        academic_faculty_id=academic['faculty_id'],
    )
    session.add(student)
    session.commit()
    return student


def test_admission_generates_sequential_ids(admit):
    first = admit(1)
    second = admit(2)
    assert first.id == '2030010001'
    assert second.id == '2030010002'
    assert first.user_id == first.id


def test_admission_creates_student_user(admit, session):
    student = admit(1)
    user = session.get(models.User, student.user_id)
    assert user.role == models.UserRole.student
    assert user.needs_password_change is True
    assert user.email == student.email


def test_admission_rejects_unknown_semester(admit):
    with pytest.raises(NotFoundError):
        admit(1, admission_semester_id=999)


def test_delete_flags_student_and_user(admit, session, database, flags):
    student = admit(1)
    deleted = services.StudentService(session, database).delete_student(student.id)
    assert deleted.is_deleted is True
    assert flags(student.id, student.user_id) == (True, True)


def test_delete_twice_is_idempotent(admit, session, database, flags):
    student = admit(1)
    svc = services.StudentService(session, database)
    svc.delete_student(student.id)
    again = svc.delete_student(student.id)
    assert again.is_deleted is True
    assert flags(student.id, student.user_id) == (True, True)


def test_delete_missing_student_fails_with_not_found_cause(session, database, admit, flags):
    student = admit(1)
    svc = services.StudentService(session, database)
    with pytest.raises(TransactionError) as excinfo:
        svc.delete_student('nonexistent-id')
    err = excinfo.value
    assert err.message == 'Failed to delete student'
    assert isinstance(err.__cause__, NotFoundError)
    assert err.details['cause_type'] == 'NotFoundError'
    assert flags(student.id, student.user_id) == (False, False)


def test_delete_rolls_back_student_when_user_missing(session, database, academic, flags):
    ghost = _ghost_student(session, academic)
    svc = services.StudentService(session, database)
    with pytest.raises(TransactionError) as excinfo:
        svc.delete_student(ghost.id)
    assert isinstance(excinfo.value.__cause__, NotFoundError)
    assert excinfo.value.details['cause'] == 'User not found'
    assert flags(ghost.id, 'ghost-user') == (False, None)


def test_update_merges_groups(admit, session):
    student = admit(1)
    svc = services.StudentService(session)
    updated = svc.update_student(student.id, {
        'name': {'first_name': 'Grace'},
        'guardian': {'father_name': 'Bob'},
        'student': {'blood_group': 'O+'},
    })
    assert updated.name['first_name'] == 'Grace'
    assert updated.name['last_name'] == 'Doe'
    assert updated.guardian['father_name'] == 'Bob'
    assert updated.guardian['mother_name'] == 'Jane'
    assert updated.blood_group == 'O+'


def test_update_missing_student(session, database):
    with pytest.raises(NotFoundError):
        services.StudentService(session).update_student('nope', {'blood_group': 'O+'})


def test_update_runs_validators(admit, session):
    student = admit(1)
    with pytest.raises(pydantic.ValidationError):
        services.StudentService(session).update_student(student.id, {'email': 'not-an-email'})


def test_update_logs_patch_when_enabled(admit, session, monkeypatch, caplog):
    student = admit(1)
    monkeypatch.setattr(services.settings, 'LOG_UPDATE_PATCHES', True)
    with caplog.at_level('DEBUG', logger='app.services'):
        services.StudentService(session).update_student(student.id, {'name': {'last_name': 'Smith'}})
    assert any('name.last_name' in r.getMessage() for r in caplog.records)


def test_list_paginates(admit, session):
    for n in range(1, 26):
        admit(n)
    out = services.StudentService(session).list_students({'page': '2', 'limit': '10'})
    assert len(out['result']) == 10
    assert out['meta'] == {'page': 2, 'limit': 10, 'total': 25, 'total_page': 3}


def test_list_expands_references_and_hides_password(admit, session):
    admit(1)
    row = services.StudentService(session).list_students({})['result'][0]
    assert row['user']['role'] == 'student'
    assert 'password_hash' not in row['user']
    assert row['admission_semester']['year'] == '2030'
    assert row['academic_department']['name'] == 'Department of Computer Science'
    assert row['academic_faculty']['name'] == 'Faculty of Engineering'


def test_list_search_filter_sort_and_fields(admit, session, database):
    for n in range(1, 4):
        admit(n)
    svc = services.StudentService(session)
    found = svc.list_students({'searchTerm': 'student2'})
    assert [r['email'] for r in found['result']] == ['student2@example.com']

    by_name = svc.list_students({'name.first_name': 'Student3'})
    assert by_name['meta']['total'] == 1

    assert svc.list_students({'no_such_field': 'x'})['meta']['total'] == 0

    ordered = svc.list_students({'sort': 'email'})
    emails = [r['email'] for r in ordered['result']]
    assert emails == sorted(emails)

    projected = svc.list_students({'fields': 'email'})['result'][0]
    assert set(projected) == {'id', 'email'}
    excluded = svc.list_students({'fields': '-guardian,-local_guardian'})['result'][0]
    assert 'guardian' not in excluded and 'email' in excluded


def test_deleted_students_are_hidden_from_reads(admit, session, database):
    keep = admit(1)
    gone = admit(2)
    svc = services.StudentService(session, database)
    svc.delete_student(gone.id)
    out = svc.list_students({})
    assert [r['id'] for r in out['result']] == [keep.id]
    with pytest.raises(NotFoundError):
        svc.get_student(gone.id)


def test_list_filters_on_date_columns(admit, session):
    admit(1, date_of_birth=date(2001, 5, 4))
    admit(2)
    svc = services.StudentService(session)
    assert svc.list_students({'created_at': '2030-01-01'})['meta']['total'] == 0
    born = svc.list_students({'date_of_birth': '2001-05-04'})
    assert [r['email'] for r in born['result']] == ['student1@example.com']
    with pytest.raises(AppError) as err:
        svc.list_students({'created_at': 'yesterday'})
    assert err.value.status_code == 400


def test_search_term_wildcards_are_literal(admit, session):
    admit(1)
    svc = services.StudentService(session)
    assert svc.list_students({'searchTerm': '%'})['meta']['total'] == 0
    assert svc.list_students({'searchTerm': '_'})['meta']['total'] == 0
    assert svc.list_students({'searchTerm': 'STUDENT1'})['meta']['total'] == 1
