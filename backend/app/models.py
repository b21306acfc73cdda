"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Students are stored document-style: the nested `name`, `guardian` and
`local_guardian` sub-records live in JSON columns and are updated through
dotted paths (see `repositories.apply_patch`).

The `*Document` pydantic models at the bottom are the field validators the
repositories run when an update asks for `run_validators`.
"""

import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column
from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    super_admin = "super_admin"
    admin = "admin"
    faculty = "faculty"
    student = "student"


class UserStatus(str, Enum):
    in_progress = "in-progress"
    blocked = "blocked"


class User(SQLModel, table=True):
    """Authentication identity.

    A student's user shares the student's generated id. Users are never
    removed; `is_deleted` marks them as gone.
    """
    id: str = Field(primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    needs_password_change: bool = True
    password_changed_at: Optional[datetime] = None
    role: UserRole = Field(index=True)
    status: UserStatus = UserStatus.in_progress
    is_deleted: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AcademicSemester(SQLModel, table=True):
    """An admission semester, e.g. Autumn 2030 (code 01)."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    code: str
    year: str = Field(index=True)
    start_month: str
    end_month: str


class AcademicFaculty(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True)


class AcademicDepartment(SQLModel, table=True):
    """A department belongs to exactly one faculty."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True)
    academic_faculty_id: int = Field(foreign_key='academicfaculty.id')
    academic_faculty: Optional[AcademicFaculty] = Relationship()


class Student(SQLModel, table=True):
    """Student profile linked 1:1 to a `User` through `user_id`.

    The user holds no back-reference; deleting a student means flagging
    both records (see `services.StudentService.delete_student`).
    """
    id: str = Field(primary_key=True)
    user_id: str = Field(foreign_key='user.id', index=True, unique=True)
    name: Dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    gender: str
    date_of_birth: Optional[date] = None
    email: str = Field(index=True, unique=True)
    contact_no: str
    emergency_contact_no: str
    blood_group: Optional[str] = None
    present_address: str
    permanent_address: str
    guardian: Dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    local_guardian: Dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    profile_img: Optional[str] = None
    admission_semester_id: int = Field(foreign_key='academicsemester.id')
    academic_department_id: int = Field(foreign_key='academicdepartment.id')
    academic_faculty_id: int = Field(foreign_key='academicfaculty.id')
    is_deleted: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)

    user: Optional[User] = Relationship()
    admission_semester: Optional[AcademicSemester] = Relationship()
    academic_department: Optional[AcademicDepartment] = Relationship()
    academic_faculty: Optional[AcademicFaculty] = Relationship()


class Faculty(SQLModel, table=True):
    """Teaching staff profile, linked 1:1 to a `User` with role faculty."""
    id: str = Field(primary_key=True)
    user_id: str = Field(foreign_key='user.id', index=True, unique=True)
    designation: str
    name: Dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    gender: str
    date_of_birth: Optional[date] = None
    email: str = Field(index=True, unique=True)
    contact_no: str
    emergency_contact_no: str
    blood_group: Optional[str] = None
    present_address: str
    permanent_address: str
    profile_img: Optional[str] = None
    academic_department_id: int = Field(foreign_key='academicdepartment.id')
    academic_faculty_id: int = Field(foreign_key='academicfaculty.id')
    is_deleted: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Admin(SQLModel, table=True):
    """Administrator profile, linked 1:1 to a `User` with role admin."""
    id: str = Field(primary_key=True)
    user_id: str = Field(foreign_key='user.id', index=True, unique=True)
    designation: str
    name: Dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    gender: str
    date_of_birth: Optional[date] = None
    email: str = Field(index=True, unique=True)
    contact_no: str
    emergency_contact_no: str
    blood_group: Optional[str] = None
    present_address: str
    permanent_address: str
    profile_img: Optional[str] = None
    is_deleted: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ---- field validators) -------------------------------------------------------

Gender = Literal['male', 'female', 'other']
BloodGroup = Literal['A+', 'A-', 'B+', 'B-', 'AB+', 'AB-', 'O+', 'O-']
EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def _check_email(value: str) -> str:
    if not EMAIL_RE.match(value):
        raise ValueError(f'{value} is not a valid email')
    return value


class UserName(BaseModel):
    first_name: str = PydanticField(min_length=1, max_length=20)
    middle_name: Optional[str] = None
    last_name: str = PydanticField(min_length=1)

    @field_validator('first_name')
    @classmethod
    def capitalized(cls, value: str) -> str:
        if value != value[:1].upper() + value[1:].lower():
            raise ValueError(f'{value} is not in capitalize format')
        return value


class Guardian(BaseModel):
    father_name: str
    father_occupation: str
    father_contact_no: str
    mother_name: str
    mother_occupation: str
    mother_contact_no: str


class LocalGuardian(BaseModel):
    name: str
    occupation: str
    contact_no: str
    address: str


class StudentDocument(BaseModel):
    """Validation view of a whole student document."""
    model_config = ConfigDict(extra='ignore')

    name: UserName
    gender: Gender
    date_of_birth: Optional[date] = None
    email: str
    contact_no: str = PydanticField(min_length=1)
    emergency_contact_no: str = PydanticField(min_length=1)
    blood_group: Optional[BloodGroup] = None
    present_address: str = PydanticField(min_length=1)
    permanent_address: str = PydanticField(min_length=1)
    guardian: Guardian
    local_guardian: LocalGuardian
    profile_img: Optional[str] = None
    is_deleted: bool = False

    @field_validator('email')
    @classmethod
    def valid_email(cls, value: str) -> str:
        return _check_email(value)


class UserDocument(BaseModel):
    model_config = ConfigDict(extra='ignore')

    email: str
    role: UserRole
    status: UserStatus
    needs_password_change: bool
    is_deleted: bool = False

    @field_validator('email')
    @classmethod
    def valid_email(cls, value: str) -> str:
        return _check_email(value)


class StaffDocument(BaseModel):
    """Validation view of a faculty or admin profile."""
    model_config = ConfigDict(extra='ignore')

    designation: str = PydanticField(min_length=1)
    name: UserName
    gender: Gender
    date_of_birth: Optional[date] = None
    email: str
    contact_no: str = PydanticField(min_length=1)
    emergency_contact_no: str = PydanticField(min_length=1)
    blood_group: Optional[BloodGroup] = None
    present_address: str = PydanticField(min_length=1)
    permanent_address: str = PydanticField(min_length=1)
    profile_img: Optional[str] = None
    is_deleted: bool = False

    @field_validator('email')
    @classmethod
    def valid_email(cls, value: str) -> str:
        return _check_email(value)
