import pytest

from app.models.domain.account_domain import MailAccount, WhatsAppAccount
from app.models.domain.meeting_domain import CalendarIntegration
from tests.fakes import (
    FakeAccountRepository,
    FakeActivityLogger,
    FakeCalendar,
    FakeIngestedMessageRepository,
    FakeInteractionRepository,
    FakeLeaseRedis,
    FakeMeetingRepository,
    FakeOutboundMessageRepository,
    FakeProfileRepository,
    FakeTokens,
)


@pytest.fixture
def activity():
    return FakeActivityLogger()


@pytest.fixture
def profile_repo():
    return FakeProfileRepository()


@pytest.fixture
def interaction_repo():
    return FakeInteractionRepository()


@pytest.fixture
def meeting_repo():
    return FakeMeetingRepository()


@pytest.fixture
def ingested_repo():
    return FakeIngestedMessageRepository()


@pytest.fixture
def outbound_repo():
    return FakeOutboundMessageRepository()


@pytest.fixture
def mail_account():
    return MailAccount(id="mail-1", owner_id="acct-1", address="desk@business.com", refresh_token="refresh-1")


@pytest.fixture
def whatsapp_account():
    return WhatsAppAccount(owner_id="acct-1", phone_number_id="pn-123", access_token="wa-token")


@pytest.fixture
def account_repo(mail_account, whatsapp_account):
    return FakeAccountRepository([mail_account], whatsapp_account)


@pytest.fixture
def integration():
    return CalendarIntegration(owner_id="acct-1", refresh_token="cal-refresh")


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def tokens():
    return FakeTokens()


@pytest.fixture
def fake_redis():
    return FakeLeaseRedis()
