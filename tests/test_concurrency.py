import threading
from datetime import timedelta
from decimal import Decimal

from pointsledger import balance, crud, ledger, models, schemas
from pointsledger.errors import AlreadyUsed, Conflict, InsufficientFunds
from pointsledger.utils import utcnow


def _setup(factory):
    db = factory()
    try:
        user = crud.create_user(db, schemas.UserCreate(utorid="racer", name="Racer", verified=True))
        cashier = crud.create_user(db, schemas.UserCreate(utorid="till", name="Till", role="cashier"))
        other = crud.create_user(db, schemas.UserCreate(utorid="friend", name="Friend", verified=True))
        ledger.record_purchase(
            db, schemas.Actor(user_id=cashier.id, role="cashier"), user.id, Decimal("250.00")
        )
        return user.id, other.id
    finally:
        db.close()


def _race(factory, attempt, n=4, expected=(InsufficientFunds, Conflict)):
    barrier = threading.Barrier(n)
    outcomes = []
    lock = threading.Lock()

    def worker():
        db = factory()
        try:
            barrier.wait()
            try:
                attempt(db)
                result = "ok"
            except expected as e:
                result = type(e).__name__
        finally:
            db.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return outcomes


def test_concurrent_redemptions_never_overdraw(session_factory):
    user_id, _ = _setup(session_factory)
    me = schemas.Actor(user_id=user_id, role="regular")

    outcomes = _race(session_factory, lambda db: ledger.create_redemption(db, me, 251))
    ok = outcomes.count("ok")
    assert len(outcomes) == 4
    assert 1 <= ok <= 3

    db = session_factory()
    try:
        user = db.get(models.User, user_id)
        assert user.reserved == 251 * ok
        assert balance.available_balance(user) >= 0
        assert balance.current(user) == balance.project_from_ledger(db, user_id)
    finally:
        db.close()


def test_racing_one_time_promotion_applies_once(session_factory):
    user_id, _ = _setup(session_factory)
    db = session_factory()
    try:
        now = utcnow()
        promo = crud.create_promotion(db, schemas.PromotionCreate(
            name="Welcome", type="one-time", points=100,
            start_time=now - timedelta(days=1), end_time=now + timedelta(days=1),
        ))
        promo_id = promo.id
        till = crud.get_user_by_utorid(db, "till")
        staff = schemas.Actor(user_id=till.id, role="cashier")
    finally:
        db.close()

    outcomes = _race(
        session_factory,
        lambda db: ledger.record_purchase(db, staff, user_id, Decimal("1.00"), [promo_id]),
        n=2,
        expected=(AlreadyUsed, Conflict),
    )
    assert outcomes.count("ok") == 1

    db = session_factory()
    try:
        assert db.query(models.PromotionUsage).count() == 1
        assert db.get(models.User, user_id).points == 1000 + 104
    finally:
        db.close()


def test_concurrent_transfers_never_overdraw(session_factory):
    user_id, other_id = _setup(session_factory)
    me = schemas.Actor(user_id=user_id, role="regular")

    outcomes = _race(session_factory, lambda db: ledger.create_transfer(db, me, other_id, 400))
    ok = outcomes.count("ok")
    assert 1 <= ok <= 2

    db = session_factory()
    try:
        sender = db.get(models.User, user_id)
        recipient = db.get(models.User, other_id)
        assert sender.points == 1000 - 400 * ok
        assert recipient.points == 400 * ok
        assert balance.current(sender) == balance.project_from_ledger(db, user_id)
        assert balance.current(recipient) == balance.project_from_ledger(db, other_id)
    finally:
        db.close()


def test_concurrent_event_batches_respect_budget(session_factory):
    db = session_factory()
    try:
        event = crud.create_event(db, schemas.EventCreate(name="Hackathon", points=100))
        event_id = event.id
        for n in range(2):
            guest = crud.create_user(db, schemas.UserCreate(utorid=f"guest{n}", name=f"Guest {n}"))
            crud.add_guest(db, event_id, guest.id)
        managers = [
            crud.create_user(db, schemas.UserCreate(utorid=f"mgr{n}", name=f"Manager {n}", role="manager"))
            for n in range(4)
        ]
        actors = iter([schemas.Actor(user_id=m.id, role="manager") for m in managers])
    finally:
        db.close()

    # 2 guests x 20 points per batch; the budget covers two batches
    lock = threading.Lock()

    def award(db):
        with lock:
            staff = next(actors)
        ledger.award_event_points(db, staff, event_id, None, 20)

    outcomes = _race(session_factory, award)
    ok = outcomes.count("ok")
    assert len(outcomes) == 4
    assert 1 <= ok <= 100 // 40

    db = session_factory()
    try:
        event = db.get(models.Event, event_id)
        assert event.points_remain == 100 - 40 * ok
        assert event.points_awarded == 40 * ok
        for guest in event.guests:
            assert db.get(models.User, guest.user_id).points == 20 * ok
    finally:
        db.close()


def test_open_sessions_do_not_block_other_writers(session_factory):
    user_id, other_id = _setup(session_factory)
    db = session_factory()
    try:
        till = crud.get_user_by_utorid(db, "till")
        staff = schemas.Actor(user_id=till.id, role="cashier")
    finally:
        db.close()

    first, reader, second = session_factory(), session_factory(), session_factory()
    try:
        # first writer and reader stay open while another session writes
        ledger.record_purchase(first, staff, user_id, Decimal("10.00"))
        assert ledger.get_balance(reader, user_id).credited == 1040

        txn = ledger.record_purchase(second, staff, other_id, Decimal("10.00"))
        assert txn.amount == 40
        assert ledger.get_balance(second, other_id).credited == 40

        ledger.create_redemption(first, schemas.Actor(user_id=user_id, role="regular"), 40)
        assert balance.available_balance(first.get(models.User, user_id)) == 1000
    finally:
        first.close()
        reader.close()
        second.close()
