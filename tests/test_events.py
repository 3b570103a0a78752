import pytest

from pointsledger import crud, ledger, schemas
from pointsledger.errors import Forbidden, InsufficientFunds, InvalidTransaction, NotFound


@pytest.fixture
def event(db_session):
    return crud.create_event(db_session, schemas.EventCreate(name="Hackathon", points=100))


def test_award_single_guest(db_session, event, make_user, manager, actor):
    guest = make_user()
    crud.add_guest(db_session, event.id, guest.id)

    rows = ledger.award_event_points(db_session, actor(manager), event.id, guest.id, 30, remark="winner")
    assert len(rows) == 1
    assert rows[0].related_id == event.id
    assert ledger.get_balance(db_session, guest.id).credited == 30
    db_session.refresh(event)
    assert event.points_remain == 70
    assert event.points_awarded == 30


def test_award_all_guests_is_all_or_nothing(db_session, event, make_user, manager, actor):
    guests = [make_user() for _ in range(3)]
    for g in guests:
        crud.add_guest(db_session, event.id, g.id)

    with pytest.raises(InsufficientFunds):
        ledger.award_event_points(db_session, actor(manager), event.id, None, 40)
    for g in guests:
        assert ledger.get_balance(db_session, g.id).credited == 0
    db_session.refresh(event)
    assert event.points_remain == 100

    rows = ledger.award_event_points(db_session, actor(manager), event.id, None, 30)
    assert sorted(r.user_id for r in rows) == sorted(g.id for g in guests)
    db_session.refresh(event)
    assert event.points_remain == 10
    assert event.points_awarded == 90


def test_organizer_can_award(db_session, event, make_user, actor):
    organizer, guest = make_user(), make_user()
    crud.add_organizer(db_session, event.id, organizer.id)
    crud.add_guest(db_session, event.id, guest.id)
    rows = ledger.award_event_points(db_session, actor(organizer), event.id, guest.id, 10)
    assert rows[0].created_by == organizer.id


def test_stranger_cannot_award(db_session, event, make_user, actor):
    stranger, guest = make_user(), make_user()
    crud.add_guest(db_session, event.id, guest.id)
    with pytest.raises(Forbidden):
        ledger.award_event_points(db_session, actor(stranger), event.id, guest.id, 10)


def test_award_requires_guest(db_session, event, make_user, manager, actor):
    outsider = make_user()
    with pytest.raises(InvalidTransaction):
        ledger.award_event_points(db_session, actor(manager), event.id, None, 10)
    with pytest.raises(InvalidTransaction):
        ledger.award_event_points(db_session, actor(manager), event.id, outsider.id, 10)
    with pytest.raises(NotFound):
        ledger.award_event_points(db_session, actor(manager), 999, outsider.id, 10)


def test_award_amount_must_be_positive(db_session, event, make_user, manager, actor):
    guest = make_user()
    crud.add_guest(db_session, event.id, guest.id)
    with pytest.raises(InvalidTransaction):
        ledger.award_event_points(db_session, actor(manager), event.id, guest.id, 0)


def test_organizer_and_guest_are_exclusive(db_session, event, make_user):
    user = make_user()
    crud.add_guest(db_session, event.id, user.id)
    with pytest.raises(ValueError):
        crud.add_organizer(db_session, event.id, user.id)
