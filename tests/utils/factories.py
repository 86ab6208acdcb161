"""Test data factories using Faker."""

from faker import Faker
from typing import Optional
from datetime import datetime, timedelta, timezone

from src.models.agreement import AgreementStatus, GlobalBrbcAgreement
from src.models.property import Property, PropertyStatus
from src.models.user import User, UserRole, VerificationStatus
from src.models.viewing_request import TimeWindow
from src.utils.ids import generate_id

fake = Faker()

# Smallest well-formed signature payload; the fake renderer never decodes it
SIGNATURE = "data:image/png;base64,iVBORw0KGgo="


def make_user(role: UserRole, **overrides) -> User:
    """Create a test user."""
    data = {
        "id": generate_id(),
        "role": role,
        "email": fake.email(),
        "first_name": fake.first_name(),
        "last_name": fake.last_name(),
        "state": "CA",
        "city": fake.city(),
    }
    data.update(overrides)
    return User(**data)


def make_buyer(**overrides) -> User:
    overrides.setdefault("verification_status", VerificationStatus.VERIFIED)
    return make_user(UserRole.BUYER, **overrides)


def make_seller(**overrides) -> User:
    overrides.setdefault("verification_status", VerificationStatus.VERIFIED)
    return make_user(UserRole.SELLER, **overrides)


def make_admin(**overrides) -> User:
    overrides.setdefault("verification_status", VerificationStatus.VERIFIED)
    return make_user(UserRole.ADMIN, **overrides)


def make_agent(
    state: Optional[str] = "CA",
    verified: bool = True,
    blocked: bool = False,
    **overrides,
) -> User:
    """Create a test agent, verified by default."""
    overrides.setdefault("expertise", fake.sentence(nb_words=5))
    overrides.setdefault("license_number", f"LIC{fake.random_int(min=100000, max=999999)}")
    return make_user(
        UserRole.AGENT,
        state=state,
        verification_status=VerificationStatus.VERIFIED if verified else VerificationStatus.PENDING,
        is_blocked=blocked,
        **overrides,
    )


def make_property(
    created_by: str,
    state: str = "CA",
    agent_id: Optional[str] = None,
    seller_id: Optional[str] = None,
    status: PropertyStatus = PropertyStatus.ACTIVE,
    **overrides,
) -> Property:
    """Create a test property."""
    now = datetime.now(timezone.utc)
    data = {
        "id": generate_id(),
        "address": fake.street_address(),
        "city": fake.city(),
        "state": state,
        "zip": fake.postcode(),
        "status": status,
        "created_by": created_by,
        "seller_id": seller_id,
        "agent_id": agent_id,
        "price": fake.random_int(min=100000, max=2000000),
        "created_at": now,
        "updated_at": now,
    }
    data.update(overrides)
    return Property(**data)


def make_window(days_ahead: int = 3, hours: int = 1) -> TimeWindow:
    """A viewing window a few days out."""
    start = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=days_ahead)
    return TimeWindow(start=start, end=start + timedelta(hours=hours))


def make_brbc(
    buyer_id: str,
    agent_id: str,
    status: AgreementStatus = AgreementStatus.COMPLETED,
) -> GlobalBrbcAgreement:
    """A BRBC between a buyer and an agent."""
    now = datetime.now(timezone.utc)
    return GlobalBrbcAgreement(
        id=generate_id(),
        buyer_id=buyer_id,
        agent_id=agent_id,
        status=status,
        buyer_signature=SIGNATURE,
        agent_signature=SIGNATURE if status == AgreementStatus.COMPLETED else None,
        created_at=now,
        updated_at=now,
    )
