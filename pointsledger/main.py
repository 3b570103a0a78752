from typing import Optional

import jwt
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import ledger, models, schemas
from .auth import actor_from_token
from .config import configure_logging
from .db import Base, SessionLocal, engine
from .errors import Forbidden, LedgerError
from .permissions import can_view_balance

# Create tables if not existing. In production, use migrations.
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Campus Points Ledger")
configure_logging()


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# Dependency to get DB session per request

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor(
    request: Request,
    x_acting_user_id: int | None = Header(default=None),
    db: Session = Depends(get_db),
) -> schemas.Actor:
    # prefer Authorization bearer token, fall back to X-Acting-User-Id
    auth = request.headers.get("authorization")
    if auth and auth.lower().startswith("bearer "):
        token = auth.split(None, 1)[1]
        try:
            return actor_from_token(token)
        except jwt.PyJWTError:
            raise HTTPException(status_code=401, detail="invalid token")
    if x_acting_user_id is not None:
        acting = db.get(models.User, int(x_acting_user_id))
        if not acting:
            raise HTTPException(status_code=403, detail="acting user not found")
        return schemas.Actor(user_id=acting.id, role=acting.role)
    raise HTTPException(status_code=403, detail="missing acting user header or token")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/transactions", response_model=schemas.TransactionRead, status_code=201)
def create_transaction(
    payload: schemas.TransactionCreate,
    db: Session = Depends(get_db),
    actor: schemas.Actor = Depends(get_actor),
):
    if payload.type == "purchase":
        if payload.spent is None:
            raise HTTPException(status_code=400, detail="spent is required")
        return ledger.record_purchase(
            db, actor, payload.user_id, payload.spent, payload.promotion_ids, payload.remark
        )
    if payload.amount is None or payload.related_id is None:
        raise HTTPException(status_code=400, detail="amount and related_id are required")
    return ledger.record_adjustment(
        db, actor, payload.user_id, payload.amount, payload.related_id, payload.remark
    )


@app.get("/transactions", response_model=schemas.TransactionPage)
def get_transactions(
    kind: Optional[str] = None,
    user_id: Optional[int] = None,
    created_by: Optional[int] = None,
    suspicious: Optional[bool] = None,
    promotion_id: Optional[int] = None,
    related_id: Optional[int] = None,
    amount: Optional[int] = None,
    operator: Optional[str] = Query(default=None, pattern="^(gte|lte)$"),
    page: int = 1,
    limit: int = 10,
    db: Session = Depends(get_db),
    actor: schemas.Actor = Depends(get_actor),
):
    count, results = ledger.list_transactions(
        db, actor, kind=kind, user_id=user_id, created_by=created_by, suspicious=suspicious,
        promotion_id=promotion_id, related_id=related_id, amount=amount, operator=operator,
        page=page, limit=limit,
    )
    return {"count": count, "results": results}


@app.get("/transactions/{transaction_id}", response_model=schemas.TransactionRead)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    actor: schemas.Actor = Depends(get_actor),
):
    return ledger.get_transaction(db, transaction_id, actor=actor)


@app.patch("/transactions/{transaction_id}/suspicious", response_model=schemas.TransactionRead)
def update_suspicious(
    transaction_id: int,
    payload: schemas.SuspiciousUpdate,
    db: Session = Depends(get_db),
    actor: schemas.Actor = Depends(get_actor),
):
    return ledger.set_suspicious(db, actor, transaction_id, payload.suspicious)


@app.patch("/transactions/{transaction_id}/processed", response_model=schemas.TransactionRead)
def process_redemption(
    transaction_id: int,
    payload: schemas.ProcessedUpdate,
    db: Session = Depends(get_db),
    actor: schemas.Actor = Depends(get_actor),
):
    return ledger.process_redemption(db, actor, transaction_id)


@app.post("/users/me/transactions", response_model=schemas.TransactionRead, status_code=201)
def create_redemption(
    payload: schemas.RedemptionCreate,
    db: Session = Depends(get_db),
    actor: schemas.Actor = Depends(get_actor),
):
    return ledger.create_redemption(db, actor, payload.amount, payload.remark)


@app.get("/users/me/transactions", response_model=schemas.TransactionPage)
def get_my_transactions(
    kind: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    db: Session = Depends(get_db),
    actor: schemas.Actor = Depends(get_actor),
):
    count, results = ledger.list_user_transactions(db, actor, kind=kind, page=page, limit=limit)
    return {"count": count, "results": results}


@app.post("/users/{recipient_id}/transactions", response_model=schemas.TransferRead, status_code=201)
def create_transfer(
    recipient_id: int,
    payload: schemas.TransferCreate,
    db: Session = Depends(get_db),
    actor: schemas.Actor = Depends(get_actor),
):
    debit, credit = ledger.create_transfer(db, actor, recipient_id, payload.amount, payload.remark)
    return {"debit": debit, "credit": credit}


@app.get("/users/{user_id}/balance", response_model=schemas.BalanceRead)
def get_balance(
    user_id: int,
    db: Session = Depends(get_db),
    actor: schemas.Actor = Depends(get_actor),
):
    if not can_view_balance(actor, user_id):
        raise Forbidden("not allowed to view this balance")
    balance = ledger.get_balance(db, user_id)
    return schemas.BalanceRead(
        user_id=balance.user_id,
        credited=balance.credited,
        pending_redemption=balance.pending_redemption,
        available=balance.available,
    )


@app.post("/events/{event_id}/transactions", response_model=list[schemas.TransactionRead], status_code=201)
def award_event_points(
    event_id: int,
    payload: schemas.EventAwardCreate,
    db: Session = Depends(get_db),
    actor: schemas.Actor = Depends(get_actor),
):
    return ledger.award_event_points(db, actor, event_id, payload.user_id, payload.amount, payload.remark)
