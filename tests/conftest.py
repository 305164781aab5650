import os

# Set environment variables BEFORE any tradedesk imports:
# tradedesk.config.settings is built at import time.
os.environ["ENVIRONMENT"] = "test"
os.environ["API_BASE_URL"] = "http://tradedesk.test"
os.environ["API_PREFIX"] = "/api"
os.environ["SESSION_DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["STORAGE_KEY_PREFIX"] = "forexsaarthi"

import pytest

from tradedesk.core.session_state import SessionState
from tradedesk.core.session_store import MemoryBackend, SessionStore
from tradedesk.models.domain import RoleName, TradeStage, TradeType
from tradedesk.schemas.trades import Trade
from tradedesk.schemas.users import CompanyAccess, User

ACME = CompanyAccess(company_id="c-acme", company_name="Acme Exports", role=RoleName.FINANCE)
GLOBEX = CompanyAccess(company_id="c-globex", company_name="Globex Imports", role=RoleName.ADMIN)
INITECH = CompanyAccess(company_id="c-initech", company_name="Initech", role=RoleName.AUDITOR)


def make_user(*companies: CompanyAccess, user_id: str = "u-1") -> User:
    return User(
        id=user_id,
        email=f"{user_id}@example.com",
        name="Priya Shah",
        companies=list(companies or (ACME, GLOBEX, INITECH)),
    )


def make_trade(stage: TradeStage = TradeStage.DRAFT, **overrides) -> Trade:
    data = dict(
        id="t-1",
        company_id=ACME.company_id,
        party_id="p-1",
        party_name="Sunrise Textiles",
        trade_number="TRD-0001",
        trade_type=TradeType.EXPORT,
        trade_stage=stage,
        created_by="u-1",
        created_by_name="Priya Shah",
        created_at="2024-03-01T09:00:00Z",
    )
    data.update(overrides)
    return Trade.model_validate(data)


@pytest.fixture
def store():
    return SessionStore(MemoryBackend())


@pytest.fixture
def session(store):
    return SessionState(store)


@pytest.fixture
def logged_in(session):
    """Session logged in as a FINANCE member of Acme, with both tokens stored."""

    session.set_credentials(make_user(), "access-1", "refresh-1")
    session.select_known_company(ACME.company_id)
    return session
