"""Institution model - a remote Open Finance participant."""

from sqlalchemy import Boolean, Column, DateTime, String

from database import Base
from models.utils import generate_uuid, utcnow


class Institution(Base):
    """A bank or provider reachable through the Open Finance APIs.

    Reference data: the aggregation core only reads these rows.
    """

    __tablename__ = "open_finance_institutions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String, nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    api_base_url = Column(String, nullable=False)
    authorization_url = Column(String, nullable=False)
    token_url = Column(String, nullable=False)
    revocation_url = Column(String, nullable=True)  # derived from token_url when empty
    certificate_required = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    @property
    def effective_revocation_url(self) -> str:
        if self.revocation_url:
            return self.revocation_url
        if self.token_url.endswith("/token"):
            return self.token_url[: -len("/token")] + "/revoke"
        return self.token_url.replace("/token", "/revoke")
