from datetime import datetime
from typing import Optional

from pydantic import Field

from tradedesk.models.domain import RoleName
from tradedesk.schemas.common import ApiModel


class CompanyAccess(ApiModel):
    company_id: str
    company_name: str
    role: RoleName


class User(ApiModel):
    id: str
    email: str  # plain str: company domains are not always valid EmailStr
    name: str
    avatar_url: Optional[str] = None
    role: Optional[RoleName] = None
    companies: list[CompanyAccess] = Field(default_factory=list)
    active_company_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def find_company(self, company_id: str) -> Optional[CompanyAccess]:
        for company in self.companies:
            if company.company_id == company_id:
                return company
        return None


class UserInfo(ApiModel):
    """User block returned by the auth endpoints (no memberships)."""

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    email_verified: bool = False
    created_at: Optional[datetime] = None
    companies: list[CompanyAccess] = Field(default_factory=list)

    def to_user(self) -> User:
        return User(
            id=self.id,
            name=self.name or "",
            email=self.email or "",
            avatar_url=self.avatar_url,
            companies=list(self.companies),
            created_at=self.created_at,
        )
