"""Repository classes encapsulating database operations.

Each repository is small and focused on a single collection (students,
users, faculty and admin profiles, academic semesters, faculties,
departments). Repositories return SQLModel objects. Updates take a flat
*patch*: a mapping of dotted field path to new value, e.g.
``{"name.first_name": "Ada", "blood_group": "O+"}``.

Writes made through a repository commit on their own unless an explicit
`session` is passed, in which case they are only flushed and the caller
owns the transaction.
"""

import copy
import logging
from typing import Any, List, Mapping, Optional, Set, Type

from pydantic import BaseModel
from sqlalchemy import desc
from sqlalchemy.orm import selectinload
from sqlmodel import Session, SQLModel, select

from . import models

logger = logging.getLogger("app.repositories")


def apply_patch(state: dict, patch: Mapping[str, Any]) -> Set[str]:
    """Apply dotted-path updates to a plain document dict in place.

    Nested containers are copied before being written so the original
    objects (and the ORM's view of them) stay untouched. Paths whose first
    segment is not a field of the document are skipped, matching how a
    strict document store drops unknown paths. Returns the set of
    top-level fields that changed.
    """
    touched: Set[str] = set()
    for path, value in patch.items():
        head, _, rest = path.partition('.')
        if head not in state:
            logger.debug("skipping unknown path %s", path)
            continue
        if not rest:
            state[head] = value
        else:
            container = copy.deepcopy(state.get(head) or {})
            target = container
            *parents, leaf = rest.split('.')
            for key in parents:
                target = target.setdefault(key, {})
            target[leaf] = value
            state[head] = container
        touched.add(head)
    return touched


class DocumentRepository:
    """Shared find/update operations for one table."""
    model: Type[SQLModel]
    validator: Optional[Type[BaseModel]] = None

    def __init__(self, session: Session):
        self.session = session

    def find_by_id(self, doc_id) -> Optional[Any]:
        """Return the document with primary key `doc_id`, deleted or not."""
        return self.session.get(self.model, doc_id)

    def find_by_id_and_update(
        self,
        doc_id,
        patch: Mapping[str, Any],
        *,
        new: bool = True,
        run_validators: bool = False,
        session: Optional[Session] = None,
    ):
        """Apply `patch` to one document and return it, or `None` if missing.

        With `new=False` a detached snapshot of the pre-update document is
        returned instead. `run_validators` validates the patched document
        against `validator` before anything is written; a failure raises
        pydantic's `ValidationError` and leaves the stored document as is.
        """
        db = session if session is not None else self.session
        doc = db.get(self.model, doc_id)
        if doc is None:
            return None
        before = None if new else self.model.model_validate(doc.model_dump())
        state = doc.model_dump()
        touched = apply_patch(state, patch)
        if run_validators and self.validator is not None:
            self.validator.model_validate(state)
        for field in touched:
            setattr(doc, field, state[field])
        if touched and 'updated_at' in state:
            doc.updated_at = models.utcnow()
        db.add(doc)
        if session is None:
            db.commit()
            db.refresh(doc)
        else:
            db.flush()
        return doc if new else before

    def add(self, doc, session: Optional[Session] = None):
        """Stage a new document inside an open transaction."""
        db = session if session is not None else self.session
        db.add(doc)
        db.flush()
        return doc

    def create(self, doc):
        """Persist a new document and return the managed instance."""
        self.session.add(doc)
        self.session.commit()
        self.session.refresh(doc)
        return doc


class UserRepository(DocumentRepository):
    """CRUD operations for `User` objects."""
    model = models.User
    validator = models.UserDocument

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()


class StudentRepository(DocumentRepository):
    """Reads and partial updates over `Student` documents."""
    model = models.Student
    validator = models.StudentDocument

    def base_query(self):
        """Select non-deleted students."""
        return select(models.Student).where(models.Student.is_deleted == False)  # noqa: E712

    @staticmethod
    def with_references(stmt):
        """Eager-load the user and academic references of selected students."""
        return (
            stmt.options(
                selectinload(models.Student.user),
                selectinload(models.Student.admission_semester),
                selectinload(models.Student.academic_department),
                selectinload(models.Student.academic_faculty),
            )
        )

    def get_active(self, student_id: str) -> Optional[models.Student]:
        """Return a student unless it is missing or soft-deleted."""
        stmt = self.with_references(self.base_query().where(models.Student.id == student_id))
        return self.session.exec(stmt).first()

    def get_by_email(self, email: str) -> Optional[models.Student]:
        stmt = select(models.Student).where(models.Student.email == email)
        return self.session.exec(stmt).first()

    def last_id_for_semester(self, semester_id: int) -> Optional[str]:
        """Return the most recently admitted student id of a semester."""
        stmt = (
            select(models.Student.id)
            .where(models.Student.admission_semester_id == semester_id)
            .order_by(desc(models.Student.id))
            .limit(1)
        )
        return self.session.exec(stmt).first()


class StaffRepository(DocumentRepository):
    """Faculty and admin profiles; ids are `<prefix>-<4-digit sequence>`."""
    validator = models.StaffDocument

    def last_id(self) -> Optional[str]:
        stmt = select(self.model.id).order_by(desc(self.model.id)).limit(1)
        return self.session.exec(stmt).first()

    def get_by_user_id(self, user_id: str):
        stmt = select(self.model).where(self.model.user_id == user_id, self.model.is_deleted == False)  # noqa: E712
        return self.session.exec(stmt).first()


class FacultyRepository(StaffRepository):
    model = models.Faculty


class AdminRepository(StaffRepository):
    model = models.Admin


class AcademicSemesterRepository(DocumentRepository):
    model = models.AcademicSemester

    def list(self) -> List[models.AcademicSemester]:
        stmt = select(models.AcademicSemester).order_by(models.AcademicSemester.year, models.AcademicSemester.code)
        return self.session.exec(stmt).all()

    def exists(self, name: str, year: str) -> bool:
        """Return True if the semester name is already used in `year`."""
        stmt = select(models.AcademicSemester.id).where(
            models.AcademicSemester.name == name,
            models.AcademicSemester.year == year,
        )
        return self.session.exec(stmt).first() is not None


class AcademicFacultyRepository(DocumentRepository):
    model = models.AcademicFaculty

    def list(self) -> List[models.AcademicFaculty]:
        return self.session.exec(select(models.AcademicFaculty).order_by(models.AcademicFaculty.name)).all()

    def get_by_name(self, name: str) -> Optional[models.AcademicFaculty]:
        stmt = select(models.AcademicFaculty).where(models.AcademicFaculty.name == name)
        return self.session.exec(stmt).first()


class AcademicDepartmentRepository(DocumentRepository):
    model = models.AcademicDepartment

    def list(self) -> List[models.AcademicDepartment]:
        stmt = (
            select(models.AcademicDepartment)
            .options(selectinload(models.AcademicDepartment.academic_faculty))
            .order_by(models.AcademicDepartment.name)
        )
        return self.session.exec(stmt).all()

    def get_by_name(self, name: str) -> Optional[models.AcademicDepartment]:
        stmt = select(models.AcademicDepartment).where(models.AcademicDepartment.name == name)
        return self.session.exec(stmt).first()
