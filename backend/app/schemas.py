"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and reject malformed payloads before
they reach the services. Update schemas make every field optional; the
services only see the fields a client actually sent
(`model_dump(exclude_unset=True)`).
"""

from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import BloodGroup, Gender, UserStatus

Month = Literal[
    'January', 'February', 'March', 'April', 'May', 'June',
    'July', 'August', 'September', 'October', 'November', 'December',
]


class StrictModel(BaseModel):
    model_config = ConfigDict(extra='forbid')


class LoginIn(StrictModel):
    """Credentials for the login endpoint."""
    id: str
    password: str


class ChangePasswordIn(StrictModel):
    old_password: str
    new_password: str = Field(min_length=6)


class UserNameIn(StrictModel):
    first_name: str = Field(max_length=20)
    middle_name: Optional[str] = None
    last_name: str


class GuardianIn(StrictModel):
    father_name: str
    father_occupation: str
    father_contact_no: str
    mother_name: str
    mother_occupation: str
    mother_contact_no: str


class LocalGuardianIn(StrictModel):
    name: str
    occupation: str
    contact_no: str
    address: str


class StudentIn(StrictModel):
    """Student fields supplied at admission."""
    name: UserNameIn
    gender: Gender
    date_of_birth: Optional[date] = None
    email: str
    contact_no: str
    emergency_contact_no: str
    blood_group: Optional[BloodGroup] = None
    present_address: str
    permanent_address: str
    guardian: GuardianIn
    local_guardian: LocalGuardianIn
    admission_semester_id: int
    academic_department_id: int
    profile_img: Optional[str] = None


class CreateStudentIn(StrictModel):
    password: Optional[str] = None
    student: StudentIn


class StaffIn(StrictModel):
    """Profile fields shared by faculty members and admins."""
    designation: str
    name: UserNameIn
    gender: Gender
    date_of_birth: Optional[date] = None
    email: str
    contact_no: str
    emergency_contact_no: str
    blood_group: Optional[BloodGroup] = None
    present_address: str
    permanent_address: str
    profile_img: Optional[str] = None


class FacultyIn(StaffIn):
    academic_department_id: int


class CreateFacultyIn(StrictModel):
    password: Optional[str] = None
    faculty: FacultyIn


class CreateAdminIn(StrictModel):
    password: Optional[str] = None
    admin: StaffIn


# ---- partial updates ---------------------------------------------------------

class UserNameUpdate(StrictModel):
    first_name: Optional[str] = Field(default=None, max_length=20)
    middle_name: Optional[str] = None
    last_name: Optional[str] = None


class GuardianUpdate(StrictModel):
    father_name: Optional[str] = None
    father_occupation: Optional[str] = None
    father_contact_no: Optional[str] = None
    mother_name: Optional[str] = None
    mother_occupation: Optional[str] = None
    mother_contact_no: Optional[str] = None


class LocalGuardianUpdate(StrictModel):
    name: Optional[str] = None
    occupation: Optional[str] = None
    contact_no: Optional[str] = None
    address: Optional[str] = None


class StudentCoreUpdate(StrictModel):
    """Top-level student fields that may be changed after admission."""
    gender: Optional[Gender] = None
    date_of_birth: Optional[date] = None
    email: Optional[str] = None
    contact_no: Optional[str] = None
    emergency_contact_no: Optional[str] = None
    blood_group: Optional[BloodGroup] = None
    present_address: Optional[str] = None
    permanent_address: Optional[str] = None
    profile_img: Optional[str] = None


class StudentUpdateIn(StudentCoreUpdate):
    """Partial update: core fields directly or grouped under `student`."""
    name: Optional[UserNameUpdate] = None
    guardian: Optional[GuardianUpdate] = None
    local_guardian: Optional[LocalGuardianUpdate] = None
    student: Optional[StudentCoreUpdate] = None


class ChangeStatusIn(StrictModel):
    status: UserStatus


class EmailIn(BaseModel):
    email: str


# ---- academic reference data ------------------------------------------------

class AcademicSemesterIn(StrictModel):
    name: Literal['Autumn', 'Summer', 'Fall']
    code: Literal['01', '02', '03']
    year: str = Field(pattern=r'^\d{4}$')
    start_month: Month
    end_month: Month


class AcademicFacultyIn(StrictModel):
    name: str = Field(min_length=1)


class AcademicDepartmentIn(StrictModel):
    name: str = Field(min_length=1)
    academic_faculty_id: int
