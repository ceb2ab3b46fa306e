"""Pytest fixtures for the underwriting engine tests."""

from datetime import datetime, timedelta

import pytest

from src.database.postgres import ProposalDB
from src.engine import UnderwritingEngine
from src.integrations.clients.mocks.payments import MockPaymentLinkProvider
from src.integrations.contracts.underwriting import DecisionInput
from src.utils.config_loader import EngineConfig


class FakeClock:
    """Settable clock so expiry and date defaults are deterministic."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 1, 9, 30, 0))


@pytest.fixture
def db():
    """In-memory proposal store for tests."""
    return ProposalDB()


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def link_provider():
    return MockPaymentLinkProvider()


@pytest.fixture
def engine(db, config, link_provider, clock):
    return UnderwritingEngine(db, config, link_provider, clock=clock)


@pytest.fixture
def application():
    """A submitted application: two selected lines (800 x 1.0 and 200 x 1.1) and one unselected."""
    return {
        "vehicle": {
            "plate_number": "京A12345",
            "vin_chassis_number": "LSVAU2180N2183294",
            "engine_number": "EA211-778812",
            "brand_model": "大众 朗逸 1.5L",
            "vehicle_type": "轿车",
            "usage_nature": "家庭自用",
            "energy_type": "FUEL",
            "registration_date": "2021-06-18",
            "curb_weight": "1295",
            "approved_passenger_count": 5,
        },
        "owner": {
            "name": "张伟",
            "idType": "身份证",
            "idCard": "110101199003074219",
            "mobile": "13800138000",
            "address": "北京市朝阳区建国路88号",
        },
        "coverages": [
            {
                "code": "DAMAGE",
                "name": "机动车损失保险",
                "sum_insured": "150000",
                "base_premium": "800",
                "rate": "1.0",
                "policy_effective_date": "2024-03-10",
            },
            {"code": "THIRD_PARTY", "name": "第三者责任保险", "sum_insured": "1000000", "base_premium": "200", "rate": "1.1"},
            {"code": "GLASS", "name": "玻璃单独破碎险", "base_premium": "90", "rate": "1.0", "selected": False},
        ],
    }


@pytest.fixture
def proposal(engine, application):
    return engine.create_proposal(application)


@pytest.fixture
def accept_input():
    return DecisionInput(
        acceptance="ACCEPT",
        risk_level="LOW",
        risk_reason="Clean claims history",
        policy_effective_date="2024-03-10",
        policy_expiry_date="2025-03-09",
        underwriter="li.na",
    )
