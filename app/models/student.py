from sqlalchemy import Column, DateTime, Integer, String, func

from app.db.base import Base


class Student(Base):
    """
    A meeting attendee. The (normalized) email address is the natural key.
    """

    __tablename__ = "students"

    id = Column(Integer, primary_key=True, index=True)

    email = Column(String(320), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)

    # External roster number and identity-provider object id.
    student_number = Column(String(64), nullable=True, index=True)
    azure_ad_id = Column(String(64), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Student id={self.id} email={self.email!r}>"
