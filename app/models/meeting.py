from sqlalchemy import Column, DateTime, Integer, String, func

from app.db.base import Base


class Meeting(Base):
    """
    A single scheduled online meeting, identified by the id it carries in
    its ingestion source (Graph online-meeting id or CSV `meeting_id`).
    """

    __tablename__ = "meetings"

    id = Column(Integer, primary_key=True, index=True)

    external_id = Column(String(512), nullable=False, unique=True, index=True)

    title = Column(String(512), nullable=True)

    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=False)

    organizer_email = Column(String(320), nullable=True, index=True)
    meeting_url = Column(String(2048), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return (
            f"<Meeting id={self.id} external_id={self.external_id!r} "
            f"start={self.start_time}>"
        )
