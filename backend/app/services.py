"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and auxiliary logic. Services are intentionally thin: they validate,
execute domain logic and persist documents via repositories. They raise
`app.errors` exceptions rather than HTTP errors.

Multi-document writes (account creation, soft delete) open their own
session on the injected `Database` so they commit or roll back as one unit.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional, Sequence

import jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import models, repositories
from .config import settings
from .database import Database
from .errors import (
    AppError,
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TransactionError,
)
from .merger import flatten_student_update
from .utils.query_builder import QueryBuilder

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
STUDENT_SEARCHABLE_FIELDS = ("email", "name.first_name", "present_address")
LIST_EXPAND = ("user", "admission_semester", "academic_department", "academic_faculty")
DETAIL_EXPAND = ("admission_semester", "academic_department", "academic_faculty")
SEMESTER_CODES = {"Autumn": "01", "Summer": "02", "Fall": "03"}

logger = logging.getLogger("app.services")


def _iso(value):
    return value.isoformat() if value is not None else None


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def user_to_dict(user: models.User) -> Dict[str, Any]:
    """Serialise a user without any password material."""
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role.value,
        "status": user.status.value,
        "needs_password_change": user.needs_password_change,
        "is_deleted": user.is_deleted,
        "created_at": _iso(user.created_at),
        "updated_at": _iso(user.updated_at),
    }


def semester_to_dict(semester: models.AcademicSemester) -> Dict[str, Any]:
    return semester.model_dump()


def faculty_to_dict(faculty: models.AcademicFaculty) -> Dict[str, Any]:
    return faculty.model_dump()


def department_to_dict(department: models.AcademicDepartment, expand: bool = False) -> Dict[str, Any]:
    out = department.model_dump()
    if expand:
        faculty = department.academic_faculty
        out["academic_faculty"] = faculty_to_dict(faculty) if faculty else None
    return out


_REFERENCE_SERIALIZERS = {
    "user": user_to_dict,
    "admission_semester": semester_to_dict,
    "academic_department": department_to_dict,
    "academic_faculty": faculty_to_dict,
}


def student_to_dict(student: models.Student, expand: Sequence[str] = ()) -> Dict[str, Any]:
    """Serialise a student; `expand` names references to inline.

    Only listed references are touched, so detached students (returned
    from a closed transaction session) serialise with `expand=()`.
    """
    out = {
        "id": student.id,
        "user_id": student.user_id,
        "name": student.name,
        "gender": student.gender,
        "date_of_birth": _iso(student.date_of_birth),
        "email": student.email,
        "contact_no": student.contact_no,
        "emergency_contact_no": student.emergency_contact_no,
        "blood_group": student.blood_group,
        "present_address": student.present_address,
        "permanent_address": student.permanent_address,
        "guardian": student.guardian,
        "local_guardian": student.local_guardian,
        "profile_img": student.profile_img,
        "admission_semester_id": student.admission_semester_id,
        "academic_department_id": student.academic_department_id,
        "academic_faculty_id": student.academic_faculty_id,
        "is_deleted": student.is_deleted,
        "created_at": _iso(student.created_at),
        "updated_at": _iso(student.updated_at),
    }
    for ref in expand:
        related = getattr(student, ref)
        out[ref] = _REFERENCE_SERIALIZERS[ref](related) if related is not None else None
    return out


def staff_to_dict(profile, user: Optional[models.User] = None) -> Dict[str, Any]:
    """Serialise a faculty or admin profile, optionally with its user."""
    out = profile.model_dump()
    for key in ("date_of_birth", "created_at", "updated_at"):
        out[key] = _iso(out[key])
    if user is not None:
        out["user"] = user_to_dict(user)
    return out


STAFF_REPOSITORIES = {
    models.UserRole.faculty: repositories.FacultyRepository,
    models.UserRole.admin: repositories.AdminRepository,
}


class AuthService:
    """Login, token issuing and password changes."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    @staticmethod
    def hash_password(password: str) -> str:
        return PWD_CTX.hash(password)

    @staticmethod
    def check_user_usable(user: models.User) -> None:
        """Raise if a user may not sign in or call the API."""
        if user.is_deleted:
            raise PermissionDeniedError("This user is deleted")
        if user.status == models.UserStatus.blocked:
            raise PermissionDeniedError("This user is blocked")

    def issue_token(self, user: models.User) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "user_id": user.id,
            "role": user.role.value,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(hours=settings.JWT_EXPIRE_HOURS)).timestamp()),
        }
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    def login(self, user_id: str, password: str) -> Dict[str, Any]:
        """Verify credentials and return a signed JWT token on success."""
        user = self.user_repo.find_by_id(user_id)
        if not user:
            raise AuthenticationError("invalid credentials")
        self.check_user_usable(user)
        if not PWD_CTX.verify(password, user.password_hash):
            raise AuthenticationError("invalid credentials")
        return {
            "access_token": self.issue_token(user),
            "needs_password_change": user.needs_password_change,
        }

    @staticmethod
    def token_predates_password_change(user: models.User, issued_at: int) -> bool:
        if user.password_changed_at is None:
            return False
        return int(_as_utc(user.password_changed_at).timestamp()) > issued_at

    def change_password(self, user: models.User, old_password: str, new_password: str) -> models.User:
        if not PWD_CTX.verify(old_password, user.password_hash):
            raise AuthenticationError("old password does not match")
        patch = {
            "password_hash": self.hash_password(new_password),
            "needs_password_change": False,
            "password_changed_at": datetime.now(timezone.utc),
        }
        updated = self.user_repo.find_by_id_and_update(user.id, patch, run_validators=True)
        if updated is None:
            raise NotFoundError("User not found")
        return updated


class StudentService:
    """Student reads, partial updates and the soft-delete transaction."""
    def __init__(self, session: Session, database: Optional[Database] = None):
        self.session = session
        self.database = database
        self.student_repo = repositories.StudentRepository(session)

    def list_students(self, query: Mapping[str, Any]) -> Dict[str, Any]:
        """Return `{meta, result}` for a filtered, paginated student list."""
        qb = (
            QueryBuilder(self.student_repo.base_query(), models.Student, query)
            .search(STUDENT_SEARCHABLE_FIELDS)
            .filter()
            .sort()
            .paginate()
            .fields()
        )
        meta = qb.count_total(self.session)
        rows = self.session.exec(self.student_repo.with_references(qb.model_query)).all()
        result = [qb.project(student_to_dict(s, expand=LIST_EXPAND)) for s in rows]
        return {"meta": meta, "result": result}

    def get_student(self, student_id: str) -> Dict[str, Any]:
        student = self.student_repo.get_active(student_id)
        if student is None:
            raise NotFoundError("Student not found", details={"student_id": student_id})
        return student_to_dict(student, expand=DETAIL_EXPAND)

    def update_student(self, student_id: str, payload: Mapping[str, Any]) -> models.Student:
        """Merge a partial payload into the stored student document.

        Validation failures from the document validators propagate as
        pydantic `ValidationError`.
        """
        patch = flatten_student_update(payload)
        if settings.LOG_UPDATE_PATCHES:
            logger.debug(
                "student_update %s",
                json.dumps({"student_id": student_id, "patch": patch}, default=str, ensure_ascii=True),
            )
        try:
            result = self.student_repo.find_by_id_and_update(student_id, patch, new=True, run_validators=True)
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Student update conflicts with an existing record") from exc
        if result is None:
            raise NotFoundError("Student not found", details={"student_id": student_id})
        return result

    def delete_student(self, student_id: str) -> models.Student:
        """Soft-delete a student and its user in one transaction.

        Both `is_deleted` flags are written or neither is. Any failure
        aborts the transaction and surfaces as `TransactionError` chained
        to the original error.
        """
        session = self.database.start_session()
        try:
            session.begin()
            deleted_student = repositories.StudentRepository(session).find_by_id_and_update(
                student_id, {"is_deleted": True}, new=True, session=session,
            )
            if deleted_student is None:
                raise NotFoundError("Student not found", details={"student_id": student_id})

            user_id = deleted_student.user_id
            deleted_user = repositories.UserRepository(session).find_by_id_and_update(
                user_id, {"is_deleted": True}, new=True, session=session,
            )
            if deleted_user is None:
                raise NotFoundError("User not found", details={"user_id": user_id})

            session.commit()
            return deleted_student
        except Exception as exc:
            session.rollback()
            logger.warning(
                "student_delete_aborted %s",
                json.dumps({"student_id": student_id, "cause": str(exc), "cause_type": type(exc).__name__}),
            )
            raise TransactionError("Failed to delete student", cause=exc) from exc
        finally:
            session.close()


class UserService:
    """Admission, account status and profile lookups."""
    def __init__(self, session: Session, database: Optional[Database] = None):
        self.session = session
        self.database = database
        self.user_repo = repositories.UserRepository(session)
        self.student_repo = repositories.StudentRepository(session)

    def generate_student_id(self, semester: models.AcademicSemester) -> str:
        """Return `<year><code><4-digit sequence>` for the next admission."""
        prefix = f"{semester.year}{semester.code}"
        last = self.student_repo.last_id_for_semester(semester.id)
        seq = int(last[-4:]) + 1 if last and last.startswith(prefix) else 1
        return f"{prefix}{seq:04d}"

    @staticmethod
    def generate_staff_id(repo: repositories.StaffRepository, prefix: str) -> str:
        """Return `<prefix>-<4-digit sequence>`, e.g. `F-0001`."""
        last = repo.last_id()
        seq = int(last.rsplit("-", 1)[-1]) + 1 if last else 1
        return f"{prefix}-{seq:04d}"

    def _department(self, department_id: int) -> models.AcademicDepartment:
        department = repositories.AcademicDepartmentRepository(self.session).find_by_id(department_id)
        if department is None:
            raise NotFoundError("Academic department not found")
        return department

    def _ensure_email_free(self, email: str) -> None:
        if self.user_repo.get_by_email(email) or self.student_repo.get_by_email(email):
            raise ConflictError("A user with this email already exists")

    def _create_account(self, profile, role: models.UserRole, password: Optional[str], label: str):
        """Create `profile` and its login user in one transaction.

        The user takes the profile's id and email. Any failure rolls both
        back and raises `TransactionError`.
        """
        session = self.database.start_session()
        try:
            session.begin()
            user = models.User(
                id=profile.id,
                email=profile.email,
                password_hash=AuthService.hash_password(password or settings.DEFAULT_PASSWORD),
                role=role,
            )
            repositories.UserRepository(session).add(user, session=session)
            repositories.DocumentRepository(session).add(profile, session=session)
            session.commit()
            logger.info("%s_created %s", label, json.dumps({"id": profile.id, "role": role.value}))
            return profile
        except Exception as exc:
            session.rollback()
            raise TransactionError(f"Failed to create {label}", cause=exc) from exc
        finally:
            session.close()

    def create_student(self, password: Optional[str], payload: Mapping[str, Any]) -> models.Student:
        """Admit a student: create its user and student documents together."""
        semester = repositories.AcademicSemesterRepository(self.session).find_by_id(payload["admission_semester_id"])
        if semester is None:
            raise NotFoundError("Admission semester not found")
        department = self._department(payload["academic_department_id"])
        self._ensure_email_free(payload["email"])
        models.StudentDocument.model_validate(payload)

        student_id = self.generate_student_id(semester)
        student = models.Student(
            **{k: v for k, v in payload.items() if k != "academic_faculty_id"},
            id=student_id,
            user_id=student_id,
            academic_faculty_id=department.academic_faculty_id,
        )
        return self._create_account(student, models.UserRole.student, password, "student")

    def create_faculty(self, password: Optional[str], payload: Mapping[str, Any]) -> models.Faculty:
        """Create a faculty member in the given department, with its user."""
        department = self._department(payload["academic_department_id"])
        self._ensure_email_free(payload["email"])
        models.StaffDocument.model_validate(payload)

        faculty_id = self.generate_staff_id(repositories.FacultyRepository(self.session), "F")
        faculty = models.Faculty(
            **{k: v for k, v in payload.items() if k != "academic_faculty_id"},
            id=faculty_id,
            user_id=faculty_id,
            academic_faculty_id=department.academic_faculty_id,
        )
        return self._create_account(faculty, models.UserRole.faculty, password, "faculty")

    def create_admin(self, password: Optional[str], payload: Mapping[str, Any]) -> models.Admin:
        self._ensure_email_free(payload["email"])
        models.StaffDocument.model_validate(payload)

        admin_id = self.generate_staff_id(repositories.AdminRepository(self.session), "A")
        admin = models.Admin(**payload, id=admin_id, user_id=admin_id)
        return self._create_account(admin, models.UserRole.admin, password, "admin")

    def change_status(self, user_id: str, status: models.UserStatus) -> models.User:
        updated = self.user_repo.find_by_id_and_update(user_id, {"status": status}, run_validators=True)
        if updated is None:
            raise NotFoundError("User not found", details={"user_id": user_id})
        return updated

    def get_user_id_by_email(self, email: str) -> str:
        user = self.user_repo.get_by_email(email)
        if user is None:
            raise NotFoundError("User not found")
        return user.id

    def get_me(self, user: models.User) -> Dict[str, Any]:
        """Return the caller's own profile.

        Students get their student document; faculty and admins their staff
        profile when one exists; anyone else (the super admin) the user.
        """
        if user.role == models.UserRole.student:
            stmt = self.student_repo.with_references(
                self.student_repo.base_query().where(models.Student.user_id == user.id)
            )
            student = self.session.exec(stmt).first()
            if student is None:
                raise NotFoundError("Student profile not found")
            return student_to_dict(student, expand=LIST_EXPAND)
        repo_cls = STAFF_REPOSITORIES.get(user.role)
        profile = repo_cls(self.session).get_by_user_id(user.id) if repo_cls else None
        if profile is not None:
            return staff_to_dict(profile, user)
        return user_to_dict(user)

    def seed_super_admin(self) -> Optional[models.User]:
        """Create the configured super admin unless one already exists."""
        stmt = select(models.User).where(models.User.role == models.UserRole.super_admin)
        if self.session.exec(stmt).first() is not None:
            return None
        if not settings.SUPER_ADMIN_PASSWORD:
            logger.warning("SUPER_ADMIN_PASSWORD is not set; skipping super admin seed")
            return None
        user = models.User(
            id=settings.SUPER_ADMIN_ID,
            email=settings.SUPER_ADMIN_EMAIL,
            password_hash=AuthService.hash_password(settings.SUPER_ADMIN_PASSWORD),
            role=models.UserRole.super_admin,
            needs_password_change=False,
        )
        return self.user_repo.create(user)


class AcademicService:
    """Semesters, faculties and departments referenced by students."""
    def __init__(self, session: Session):
        self.session = session
        self.semester_repo = repositories.AcademicSemesterRepository(session)
        self.faculty_repo = repositories.AcademicFacultyRepository(session)
        self.department_repo = repositories.AcademicDepartmentRepository(session)

    def create_semester(self, payload: Mapping[str, Any]) -> models.AcademicSemester:
        if SEMESTER_CODES[payload["name"]] != payload["code"]:
            raise AppError("Invalid semester code", status_code=400)
        if self.semester_repo.exists(payload["name"], payload["year"]):
            raise ConflictError("Semester already exists")
        return self.semester_repo.create(models.AcademicSemester(**payload))

    def list_semesters(self):
        return [semester_to_dict(s) for s in self.semester_repo.list()]

    def create_faculty(self, payload: Mapping[str, Any]) -> models.AcademicFaculty:
        if self.faculty_repo.get_by_name(payload["name"]):
            raise ConflictError("Academic faculty already exists")
        return self.faculty_repo.create(models.AcademicFaculty(**payload))

    def list_faculties(self):
        return [faculty_to_dict(f) for f in self.faculty_repo.list()]

    def create_department(self, payload: Mapping[str, Any]) -> models.AcademicDepartment:
        if self.faculty_repo.find_by_id(payload["academic_faculty_id"]) is None:
            raise NotFoundError("Academic faculty not found")
        if self.department_repo.get_by_name(payload["name"]):
            raise ConflictError("Academic department already exists")
        return self.department_repo.create(models.AcademicDepartment(**payload))

    def list_departments(self):
        return [department_to_dict(d, expand=True) for d in self.department_repo.list()]
