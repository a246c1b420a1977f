from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from errors import InvalidState, NotFound
from models import InvitationStatus, MemberRole
from schemas import BudgetIn, InvitationIn
from services import BudgetService, InvitationService, MembershipService
from tokens import generate_invitation_token, read_invitation_token


def _budget(session: Session):
    return BudgetService(session, user_id=1).create(
        BudgetIn(name="Flat", total_amount_cents=80_000)
    )


def test_token_round_trip_and_tampering():
    token = generate_invitation_token(42)
    assert read_invitation_token(token) == 42
    assert read_invitation_token(token + "x") is None
    assert read_invitation_token("not-a-token") is None


def test_owner_role_cannot_be_invited():
    with pytest.raises(ValidationError):
        InvitationIn(email="sam@example.com", role=MemberRole.owner)


def test_accept_invitation_adds_member():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget = _budget(session)
        invitation, token = InvitationService(session, user_id=1).create(
            budget.id, InvitationIn(email="Sam@Example.com", role=MemberRole.viewer)
        )
        assert invitation.email == "sam@example.com"
        assert invitation.status == InvitationStatus.pending

        member = InvitationService(session, user_id=2).accept(token)

        assert member.budget_id == budget.id
        assert member.role == MemberRole.viewer
        assert member.added_by_id == 1
        session.refresh(invitation)
        assert invitation.status == InvitationStatus.accepted
        assert MembershipService(session).get(budget.id, 2) is not None

        with pytest.raises(InvalidState, match="already used"):
            InvitationService(session, user_id=3).accept(token)


def test_duplicate_pending_invitation_is_rejected():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget = _budget(session)
        service = InvitationService(session, user_id=1)
        service.create(budget.id, InvitationIn(email="sam@example.com"))

        with pytest.raises(InvalidState):
            service.create(budget.id, InvitationIn(email="SAM@example.com"))


def test_expired_invitation_is_marked_expired():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget = _budget(session)
        invitation, token = InvitationService(session, user_id=1).create(
            budget.id, InvitationIn(email="sam@example.com", expires_in_days=1)
        )
        invitation.expires_at = datetime.utcnow() - timedelta(minutes=5)
        session.commit()

        with pytest.raises(InvalidState, match="expired"):
            InvitationService(session, user_id=2).accept(token)

        session.refresh(invitation)
        assert invitation.status == InvitationStatus.expired
        assert MembershipService(session).get(budget.id, 2) is None


def test_accept_rejects_unknown_tokens_and_existing_members():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget = _budget(session)

        with pytest.raises(NotFound):
            InvitationService(session, user_id=2).accept(generate_invitation_token(999))
        with pytest.raises(NotFound):
            InvitationService(session, user_id=2).accept("garbage")

        _, token = InvitationService(session, user_id=1).create(
            budget.id, InvitationIn(email="me@example.com")
        )
        with pytest.raises(InvalidState, match="Already a member"):
            InvitationService(session, user_id=1).accept(token)


def test_membership_roles():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget = _budget(session)
        _, token = InvitationService(session, user_id=1).create(
            budget.id, InvitationIn(email="kid@example.com", role=MemberRole.viewer)
        )
        InvitationService(session, user_id=5).accept(token)
        memberships = MembershipService(session)

        assert memberships.require(budget.id, 1, (MemberRole.owner,)).role == MemberRole.owner
        assert memberships.require(budget.id, 5).role == MemberRole.viewer
        with pytest.raises(ValueError, match="Permission denied"):
            memberships.require(budget.id, 5, (MemberRole.owner, MemberRole.editor))
        with pytest.raises(NotFound):
            memberships.require(budget.id, 77)


def test_invitations_are_listed_newest_first():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget = _budget(session)
        other = _budget(session)
        service = InvitationService(session, user_id=1)
        first, _ = service.create(
            budget.id, InvitationIn(email="ana@example.com", role=MemberRole.viewer)
        )
        second, token = service.create(
            budget.id, InvitationIn(email="ben@example.com", role=MemberRole.editor)
        )
        service.create(
            other.id, InvitationIn(email="cy@example.com", role=MemberRole.viewer)
        )
        InvitationService(session, user_id=2).accept(token)

        listed = service.list_for_budget(budget.id)

        assert [i.id for i in listed] == [second.id, first.id]
        assert [i.status for i in listed] == [
            InvitationStatus.accepted,
            InvitationStatus.pending,
        ]
        with pytest.raises(NotFound):
            service.list_for_budget(9_999)
