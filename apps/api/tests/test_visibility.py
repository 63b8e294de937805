from __future__ import annotations

import asyncio
from collections.abc import Generator
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from crm_analytics.analytics.repository import Entity, SqlAlchemyAnalyticsRepository, eq, in_, not_null
from crm_analytics.core.auth import AuthUser
from crm_analytics.core.database import Base
from crm_analytics.crm.models import Company, Contact, Deal, DealStageHistory
from crm_analytics.platform.security import AuthenticationError, RecordAction, VisibilityFilter, get_visibility_filter


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_reps_only_see_their_own_records() -> None:
    visibility = get_visibility_filter(AuthUser(sub="rep-1", roles=["rep"]), RecordAction.READ)

    assert visibility == VisibilityFilter(owner_id="rep-1")
    assert not visibility.is_unrestricted


def test_admins_see_everything() -> None:
    visibility = get_visibility_filter(AuthUser(sub="root", roles=["Admin"]))

    assert visibility.is_unrestricted


def test_managers_read_everything_but_write_their_own() -> None:
    manager = AuthUser(sub="mgr-1", roles=["manager"])

    assert get_visibility_filter(manager, RecordAction.READ).is_unrestricted
    assert get_visibility_filter(manager, RecordAction.UPDATE) == VisibilityFilter(owner_id="mgr-1")


def test_anonymous_callers_are_rejected() -> None:
    with pytest.raises(AuthenticationError):
        get_visibility_filter(AuthUser.anonymous())


def test_claims_without_roles_default_to_rep() -> None:
    user = AuthUser.from_claims({"sub": "rep-9"})

    assert user.roles == ["rep"]
    assert AuthUser.from_claims({"roles": ["admin"]}).is_anonymous


@pytest.fixture()
def session_factory(tmp_path: Path) -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'visibility.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    with factory() as session:
        shared = Company(name="Shared Co")
        session.add(shared)
        session.flush()
        for owner, value in (("rep-1", "100"), ("rep-1", "40"), ("rep-2", "900")):
            contact = Contact(first_name=owner, last_name="Owner", status="lead", user_id=owner)
            session.add(contact)
            session.flush()
            deal = Deal(
                name=f"{owner} deal",
                value=Decimal(value),
                stage="proposal",
                status="open",
                contact_id=contact.id,
                company_id=shared.id,
                user_id=owner,
                expected_close_date=_utc(2024, 6, 1),
            )
            session.add(deal)
            session.flush()
            session.add(DealStageHistory(deal_id=deal.id, to_stage="proposal", user_id=owner, changed_at=_utc(2024, 3, 1)))
        session.commit()
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def test_repository_scopes_owner_bearing_entities(session_factory: sessionmaker[Session]) -> None:
    repository = SqlAlchemyAnalyticsRepository(session_factory, VisibilityFilter(owner_id="rep-1"))

    async def run() -> None:
        assert await repository.count(Entity.CONTACT) == 2
        assert await repository.count(Entity.DEAL) == 2
        assert await repository.count(Entity.DEAL_STAGE_HISTORY) == 2
        totals = await repository.aggregate(Entity.DEAL, [eq("status", "open")], sum_field="value")
        assert totals.sum == Decimal("140")
        groups = await repository.group_by(Entity.DEAL, "stage", sum_field="value")
        assert [(row.key, row.count) for row in groups] == [("proposal", 2)]
        # Companies carry no owner.
        assert await repository.count(Entity.COMPANY) == 1

    asyncio.run(run())


def test_unrestricted_repository_sees_every_owner(session_factory: sessionmaker[Session]) -> None:
    repository = SqlAlchemyAnalyticsRepository(session_factory, VisibilityFilter())

    async def run() -> None:
        assert await repository.count(Entity.DEAL) == 3
        assert await repository.count(Entity.DEAL_STAGE_HISTORY) == 3
        rows = await repository.find_many(Entity.DEAL, [not_null("company_id")], fields=("name", "value"), order_by=("-value",))
        assert [row["name"] for row in rows] == ["rep-2 deal", "rep-1 deal", "rep-1 deal"]

    asyncio.run(run())


def test_lookups_by_id_cannot_escape_the_scope(session_factory: sessionmaker[Session]) -> None:
    everyone = SqlAlchemyAnalyticsRepository(session_factory, VisibilityFilter())
    scoped = SqlAlchemyAnalyticsRepository(session_factory, VisibilityFilter(owner_id="rep-1"))

    async def run() -> None:
        contacts = await everyone.find_many(Entity.CONTACT, fields=("id",))
        ids = [row["id"] for row in contacts]
        visible = await scoped.find_many(Entity.CONTACT, [in_("id", ids)], fields=("first_name",))
        assert {row["first_name"] for row in visible} == {"rep-1"}
        assert len(visible) == 2

    asyncio.run(run())
