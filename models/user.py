import uuid

from sqlalchemy import Column, ForeignKey, String, Uuid

from database import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = {"extend_existing": True}

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True, index=True)
    email = Column(String(320), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    @property
    def full_name(self) -> str:
        parts = [part.strip() for part in (self.first_name, self.last_name) if part and part.strip()]
        return " ".join(parts)
