from app import models
from app.config import settings
from app.utils.rate_limit import InMemoryRateLimiter


def _login(client, user_id, password):
    r = client.post('/auth/login', json={'id': user_id, 'password': password})
    assert r.status_code == 200, r.text
    return {'Authorization': f"Bearer {r.json()['access_token']}"}


def _api_payload(student_payload, n=1):
    data = student_payload(n)
    data.pop('profile_img')
    return {'student': data}


def test_health_and_request_id(client):
    r = client.get('/health')
    assert r.status_code == 200
    assert r.json() == {'status': 'ok'}
    assert 'X-Request-ID' in r.headers


def test_login_rejects_bad_credentials(client, database):
    r = client.post('/auth/login', json={'id': settings.SUPER_ADMIN_ID, 'password': 'wrong'})
    assert r.status_code == 401
    r = client.post('/auth/login', json={'id': 'nobody', 'password': 'wrong'})
    assert r.status_code == 401
    assert r.json()['message'] == 'invalid credentials'


def test_protected_routes_require_token(client, database):
    assert client.get('/students').status_code == 401
    r = client.get('/students', headers={'Authorization': 'Bearer garbage'})
    assert r.status_code == 401


def test_admission_and_student_login(client, admin_headers, student_payload):
    r = client.post('/users/create-student', json=_api_payload(student_payload), headers=admin_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body['id'] == '2030010001'
    assert body['academic_faculty_id'] is not None

    r = client.post('/auth/login', json={'id': body['id'], 'password': settings.DEFAULT_PASSWORD})
    assert r.status_code == 200
    assert r.json()['needs_password_change'] is True
    headers = {'Authorization': f"Bearer {r.json()['access_token']}"}

    me = client.get('/users/me', headers=headers)
    assert me.status_code == 200
    assert me.json()['email'] == 'student1@example.com'
    assert me.json()['user']['id'] == body['id']

    # students may not manage other students
    assert client.get('/students', headers=headers).status_code == 403
    assert client.delete(f"/students/{body['id']}", headers=headers).status_code == 403


def test_admission_rejects_invalid_payload(client, admin_headers, student_payload):
    payload = _api_payload(student_payload)
    payload['student']['gender'] = 'unknown'
    r = client.post('/users/create-student', json=payload, headers=admin_headers)
    assert r.status_code == 422

    payload = _api_payload(student_payload)
    payload['student']['name']['first_name'] = 'lowercase'
    r = client.post('/users/create-student', json=payload, headers=admin_headers)
    assert r.status_code == 400
    assert r.json()['message'] == 'Validation Error'


def test_duplicate_admission_email_conflicts(client, admin_headers, student_payload):
    assert client.post('/users/create-student', json=_api_payload(student_payload), headers=admin_headers).status_code == 200
    r = client.post('/users/create-student', json=_api_payload(student_payload), headers=admin_headers)
    assert r.status_code == 409


def test_update_and_get_student(client, admin_headers, admit):
    student = admit(1)
    r = client.patch(
        f'/students/{student.id}',
        json={'name': {'first_name': 'Grace'}, 'local_guardian': {'address': 'Uptown'}, 'student': {'blood_group': 'O+'}},
        headers=admin_headers,
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body['name'] == {'first_name': 'Grace', 'middle_name': None, 'last_name': 'Doe'}
    assert body['local_guardian']['address'] == 'Uptown'
    assert body['local_guardian']['name'] == 'Mark'
    assert body['blood_group'] == 'O+'

    got = client.get(f'/students/{student.id}', headers=admin_headers).json()
    assert got['name']['first_name'] == 'Grace'
    assert got['admission_semester']['name'] == 'Autumn'


def test_update_validation_and_not_found(client, admin_headers, admit):
    student = admit(1)
    r = client.patch(f'/students/{student.id}', json={'name': {'first_name': 'grace'}}, headers=admin_headers)
    assert r.status_code == 400
    r = client.patch(f'/students/{student.id}', json={'nickname': 'x'}, headers=admin_headers)
    assert r.status_code == 422
    r = client.patch('/students/missing', json={'blood_group': 'O+'}, headers=admin_headers)
    assert r.status_code == 404
    assert r.json()['success'] is False


def test_delete_student_endpoint(client, admin_headers, admit, flags):
    student = admit(1)
    r = client.delete(f'/students/{student.id}', headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['is_deleted'] is True
    assert flags(student.id, student.user_id) == (True, True)
    assert client.get(f'/students/{student.id}', headers=admin_headers).status_code == 404

    r = client.post('/auth/login', json={'id': student.id, 'password': settings.DEFAULT_PASSWORD})
    assert r.status_code == 403


def test_delete_missing_student_reports_cause(client, admin_headers, database):
    r = client.delete('/students/nonexistent-id', headers=admin_headers)
    assert r.status_code == 400
    body = r.json()
    assert body['message'] == 'Failed to delete student'
    assert body['details']['cause_type'] == 'NotFoundError'


def test_list_students_endpoint(client, admin_headers, admit):
    for n in range(1, 26):
        admit(n)
    r = client.get('/students', params={'page': 2, 'limit': 10}, headers=admin_headers)
    assert r.status_code == 200
    body = r.json()
    assert len(body['result']) == 10
    assert body['meta']['total'] == 25


def test_change_status_blocks_user(client, admin_headers, admit):
    student = admit(1)
    headers = _login(client, student.id, settings.DEFAULT_PASSWORD)
    r = client.post(f'/users/change-status/{student.user_id}', json={'status': 'blocked'}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['status'] == 'blocked'
    assert client.get('/users/me', headers=headers).status_code == 403
    r = client.post('/auth/login', json={'id': student.id, 'password': settings.DEFAULT_PASSWORD})
    assert r.status_code == 403


def test_get_user_id_by_email(client, admit):
    student = admit(1)
    r = client.post('/users/get-user-id', json={'email': 'student1@example.com'})
    assert r.status_code == 200
    assert r.json() == {'success': True, 'user_id': student.user_id}
    r = client.post('/users/get-user-id', json={'email': 'nobody@example.com'})
    assert r.status_code == 404
    assert r.json()['message'] == 'User not found'


def test_change_password(client, admit, session):
    student = admit(1)
    headers = _login(client, student.id, settings.DEFAULT_PASSWORD)
    r = client.post('/auth/change-password', json={'old_password': 'wrong', 'new_password': 'secret99'}, headers=headers)
    assert r.status_code == 401
    r = client.post('/auth/change-password', json={'old_password': settings.DEFAULT_PASSWORD, 'new_password': 'secret99'}, headers=headers)
    assert r.status_code == 200
    r = client.post('/auth/login', json={'id': student.id, 'password': 'secret99'})
    assert r.status_code == 200
    assert r.json()['needs_password_change'] is False
    user = session.get(models.User, student.user_id)
    session.refresh(user)
    assert user.password_changed_at is not None


def test_academic_reference_routes(client, admin_headers):
    r = client.post('/academic-faculties', json={'name': 'Faculty of Arts'}, headers=admin_headers)
    assert r.status_code == 200
    faculty_id = r.json()['id']
    assert client.post('/academic-faculties', json={'name': 'Faculty of Arts'}, headers=admin_headers).status_code == 409

    r = client.post('/academic-departments', json={'name': 'History', 'academic_faculty_id': faculty_id}, headers=admin_headers)
    assert r.status_code == 200
    r = client.post('/academic-departments', json={'name': 'Music', 'academic_faculty_id': 999}, headers=admin_headers)
    assert r.status_code == 404
    departments = client.get('/academic-departments', headers=admin_headers).json()
    assert departments[0]['academic_faculty']['name'] == 'Faculty of Arts'

    bad = {'name': 'Autumn', 'code': '02', 'year': '2031', 'start_month': 'January', 'end_month': 'April'}
    assert client.post('/academic-semesters', json=bad, headers=admin_headers).status_code == 400
    good = dict(bad, code='01')
    assert client.post('/academic-semesters', json=good, headers=admin_headers).status_code == 200
    assert client.post('/academic-semesters', json=good, headers=admin_headers).status_code == 409
    assert len(client.get('/academic-semesters', headers=admin_headers).json()) == 1


def test_login_rate_limit(client, database, monkeypatch):
    monkeypatch.setattr("app.main._login_rate_limiter", InMemoryRateLimiter())
    monkeypatch.setattr(settings, "LOGIN_RATE_LIMIT_PER_MIN", 1)
    first = client.post('/auth/login', json={'id': 'nobody', 'password': 'x'})
    assert first.status_code == 401
    second = client.post('/auth/login', json={'id': 'nobody', 'password': 'x'})
    assert second.status_code == 429
    assert 'Retry-After' in second.headers


def test_list_students_date_filter(client, admin_headers, admit):
    admit(1)
    r = client.get('/students', params={'created_at': '2030-01-01'}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['meta']['total'] == 0
    r = client.get('/students', params={'created_at': 'not-a-date'}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json()['success'] is False
