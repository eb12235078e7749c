from sqlalchemy.orm import Session

from .errors import NotFound
from .models import Course


def fetch_course(db: Session, course_id: str) -> Course:
    course = db.get(Course, course_id)
    if course is None:
        raise NotFound("course not found", context={"course_id": course_id})
    return course
