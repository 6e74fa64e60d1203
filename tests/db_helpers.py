from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import onprez.models  # noqa: F401
from onprez.core.database import Base
from onprez.models.appointment import Appointment
from onprez.models.business import Business, BusinessMember
from onprez.models.customer import Customer
from onprez.models.opening_hours import BusinessHours, SpecialDate
from onprez.models.service import Service
from onprez.models.user import User
from onprez.services.passwords import hash_password
from tests.fixtures_data import (
    HAPPY_PATH_BUSINESS,
    HAPPY_PATH_CUSTOMER,
    HAPPY_PATH_SERVICE,
    OTHER_BUSINESS,
    OTHER_CUSTOMER,
    OTHER_OWNER_USER,
    OTHER_SERVICE,
    OWNER_PASSWORD,
    OWNER_USER,
    STAFF_PASSWORD,
    STAFF_USER,
    STUDIO_LUZ_HOURS,
    STUDIO_LUZ_SPECIAL_DATES,
)


def build_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def seed(db, *, with_passwords: bool = False) -> None:
    owner_hash = hash_password(OWNER_PASSWORD) if with_passwords else "unused"
    staff_hash = hash_password(STAFF_PASSWORD) if with_passwords else "unused"
    db.add(User(password_hash=owner_hash, **OWNER_USER))
    db.add(User(password_hash=staff_hash, **STAFF_USER))
    db.add(User(password_hash="unused", **OTHER_OWNER_USER))
    db.add(Business(**HAPPY_PATH_BUSINESS))
    db.add(Business(**OTHER_BUSINESS))
    db.add(BusinessMember(business_id=1, user_id=STAFF_USER["id"], role="staff"))
    db.add(Service(**HAPPY_PATH_SERVICE))
    db.add(Service(**OTHER_SERVICE))
    db.add(Customer(**HAPPY_PATH_CUSTOMER))
    db.add(Customer(**OTHER_CUSTOMER))
    db.commit()


def build_db(*, with_passwords: bool = False):
    session_factory = build_session_factory()
    db = session_factory()
    seed(db, with_passwords=with_passwords)
    return session_factory, db


def make_appointment(
    db,
    start: datetime,
    *,
    status: str = "CONFIRMED",
    business_id: int = 1,
    service_id: int = 1,
    customer_id: int = 1,
    duration: timedelta = timedelta(minutes=60),
    **extra,
) -> Appointment:
    appointment = Appointment(
        business_id=business_id,
        service_id=service_id,
        customer_id=customer_id,
        start_time=start,
        end_time=start + duration,
        status=status,
        reminder_count=extra.pop("reminder_count", 0),
        **extra,
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment


def seed_opening_hours(db) -> None:
    for row in STUDIO_LUZ_HOURS:
        db.add(BusinessHours(**row))
    for row in STUDIO_LUZ_SPECIAL_DATES:
        db.add(SpecialDate(**row))
    db.commit()
