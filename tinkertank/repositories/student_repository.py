"""Repository for students."""

from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.booking import Booking, BookingStatus
from ..models.student import Student
from .base_repository import BaseRepository


class StudentRepository(BaseRepository[Student]):
    def __init__(self, db: Session):
        super().__init__(db, Student)

    def list_with_booking_counts(
        self,
        *,
        parent_email: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Tuple[Student, int]]:
        """Newest students first, each with its number of active bookings."""
        active_count = (
            self.db.query(Booking.student_id, func.count(Booking.id).label("active_bookings"))
            .filter(Booking.status != BookingStatus.CANCELLED.value)
            .group_by(Booking.student_id)
            .subquery()
        )
        query = self.db.query(
            Student, func.coalesce(active_count.c.active_bookings, 0)
        ).outerjoin(active_count, active_count.c.student_id == Student.id)
        if parent_email is not None:
            query = query.filter(func.lower(Student.parent_email) == parent_email.lower())
        query = (
            query.order_by(Student.created_at.desc(), Student.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return [(student, int(count)) for student, count in self._execute_query(query)]
