"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the academic management
backend. Controllers are intentionally thin: they accept requests, check
roles, delegate to services, and return JSON responses.

Endpoints implemented:
- GET /health
- POST /auth/login
- POST /auth/change-password
- POST /users/create-student
- POST /users/create-faculty
- POST /users/create-admin
- POST /users/change-status/{user_id}
- POST /users/get-user-id
- GET /users/me
- GET /students
- GET /students/{student_id}
- PATCH /students/{student_id}
- DELETE /students/{student_id}
- POST, GET /academic-semesters
- POST, GET /academic-faculties
- POST, GET /academic-departments
"""

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager

import pydantic
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlmodel import Session

from . import models, services
from .auth import get_current_user, require_roles
from .config import settings
from .database import Database, get_database, get_session
from .errors import AppError
from .schemas import (
    AcademicDepartmentIn,
    AcademicFacultyIn,
    AcademicSemesterIn,
    ChangePasswordIn,
    ChangeStatusIn,
    CreateAdminIn,
    CreateFacultyIn,
    CreateStudentIn,
    EmailIn,
    LoginIn,
    StudentUpdateIn,
)
from .utils.rate_limit import InMemoryRateLimiter

logger = logging.getLogger("app.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)
_login_rate_limiter = InMemoryRateLimiter()

ADMINS = (models.UserRole.super_admin, models.UserRole.admin)
STAFF = ADMINS + (models.UserRole.faculty,)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = Database(settings.DATABASE_URL).open()
    app.state.db = db
    with db.start_session() as session:
        services.UserService(session, db).seed_super_admin()
    try:
        yield
    finally:
        db.close()


app = FastAPI(title="Academic Management API", lifespan=lifespan)

# Wide-open CORS keeps local frontends working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path != "/health":
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(pydantic.ValidationError)
async def document_validation_handler(request: Request, exc: pydantic.ValidationError):
    """Field validators rejected a document write."""
    errors = [
        {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation Error", "errors": errors},
    )


def _enforce_login_rate_limit(request: Request) -> None:
    window = 60
    key = f"{request.client.host if request.client else 'unknown'}:{request.url.path}"
    allowed, retry_after = _login_rate_limiter.allow(key, settings.LOGIN_RATE_LIMIT_PER_MIN, window)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"rate limit exceeded; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}


@app.post('/auth/login')
def login(payload: LoginIn, request: Request, db: Session = Depends(get_session)):
    """Authenticate a user and return a short-lived JWT token.

    The token carries `user_id` and `role`; `needs_password_change` tells
    freshly admitted students to set their own password.
    """
    _enforce_login_rate_limit(request)
    return services.AuthService(db).login(payload.id, payload.password)


@app.post('/auth/change-password')
def change_password(payload: ChangePasswordIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.AuthService(db).change_password(user, payload.old_password, payload.new_password)
    return {'message': 'Password is updated successfully'}


@app.post('/users/create-student')
def create_student(
    payload: CreateStudentIn,
    db: Session = Depends(get_session),
    database: Database = Depends(get_database),
    user: models.User = Depends(require_roles(*ADMINS)),
):
    """Admit a student: creates the login user and the student profile."""
    svc = services.UserService(db, database)
    student = svc.create_student(payload.password, payload.student.model_dump())
    return services.student_to_dict(student)


@app.post('/users/create-faculty')
def create_faculty_member(
    payload: CreateFacultyIn,
    db: Session = Depends(get_session),
    database: Database = Depends(get_database),
    user: models.User = Depends(require_roles(*ADMINS)),
):
    """Create a faculty member and its login user."""
    faculty = services.UserService(db, database).create_faculty(payload.password, payload.faculty.model_dump())
    return services.staff_to_dict(faculty)


@app.post('/users/create-admin')
def create_admin(
    payload: CreateAdminIn,
    db: Session = Depends(get_session),
    database: Database = Depends(get_database),
    user: models.User = Depends(require_roles(*ADMINS)),
):
    admin = services.UserService(db, database).create_admin(payload.password, payload.admin.model_dump())
    return services.staff_to_dict(admin)


@app.post('/users/change-status/{user_id}')
def change_status(
    user_id: str,
    payload: ChangeStatusIn,
    db: Session = Depends(get_session),
    user: models.User = Depends(require_roles(*ADMINS)),
):
    updated = services.UserService(db).change_status(user_id, payload.status)
    return services.user_to_dict(updated)


@app.post('/users/get-user-id')
def get_user_id(payload: EmailIn, db: Session = Depends(get_session)):
    """Resolve a user id from an email address."""
    user_id = services.UserService(db).get_user_id_by_email(payload.email)
    return {'success': True, 'user_id': user_id}


@app.get('/users/me')
def get_me(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.UserService(db).get_me(user)


@app.get('/students')
def list_students(request: Request, db: Session = Depends(get_session), user: models.User = Depends(require_roles(*STAFF))):
    """List students.

    Query parameters: `searchTerm`, `sort` (e.g. `-created_at,email`),
    `page`, `limit`, `fields` (e.g. `name,email` or `-guardian`), and any
    student field (dotted for sub-records) as an equality filter.
    """
    return services.StudentService(db).list_students(dict(request.query_params))


@app.get('/students/{student_id}')
def get_student(student_id: str, db: Session = Depends(get_session), user: models.User = Depends(require_roles(*STAFF))):
    return services.StudentService(db).get_student(student_id)


@app.patch('/students/{student_id}')
def update_student(
    student_id: str,
    payload: StudentUpdateIn,
    db: Session = Depends(get_session),
    user: models.User = Depends(require_roles(*ADMINS)),
):
    """Partially update a student; nested groups update only the keys sent."""
    student = services.StudentService(db).update_student(student_id, payload.model_dump(exclude_unset=True))
    return services.student_to_dict(student, expand=services.DETAIL_EXPAND)


@app.delete('/students/{student_id}')
def delete_student(
    student_id: str,
    db: Session = Depends(get_session),
    database: Database = Depends(get_database),
    user: models.User = Depends(require_roles(*ADMINS)),
):
    """Soft-delete a student together with its user."""
    student = services.StudentService(db, database).delete_student(student_id)
    return services.student_to_dict(student)


@app.post('/academic-semesters')
def create_semester(payload: AcademicSemesterIn, db: Session = Depends(get_session), user: models.User = Depends(require_roles(*ADMINS))):
    semester = services.AcademicService(db).create_semester(payload.model_dump())
    return services.semester_to_dict(semester)


@app.get('/academic-semesters')
def list_semesters(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.AcademicService(db).list_semesters()


@app.post('/academic-faculties')
def create_faculty(payload: AcademicFacultyIn, db: Session = Depends(get_session), user: models.User = Depends(require_roles(*ADMINS))):
    faculty = services.AcademicService(db).create_faculty(payload.model_dump())
    return services.faculty_to_dict(faculty)


@app.get('/academic-faculties')
def list_faculties(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.AcademicService(db).list_faculties()


@app.post('/academic-departments')
def create_department(payload: AcademicDepartmentIn, db: Session = Depends(get_session), user: models.User = Depends(require_roles(*ADMINS))):
    department = services.AcademicService(db).create_department(payload.model_dump())
    return services.department_to_dict(department)


@app.get('/academic-departments')
def list_departments(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.AcademicService(db).list_departments()
