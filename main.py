import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from csrf import generate_csrf_token, require_csrf
from database import SessionLocal
from errors import (
    ConflictError,
    IntegrityViolation,
    NotFoundError,
    StoreUnavailable,
    ValidationError,
)
from models import BillBucket, BillStatus, TransactionType
from periods import resolve_period
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountOut,
    AccountUpdateIn,
    BillIn,
    BillOut,
    BillUpdateIn,
    CategoryIn,
    CategoryOut,
    PaymentIn,
    PaymentOutcomeOut,
    TransactionIn,
    TransactionOut,
)
from services import (
    AccountService,
    BillService,
    CategoryService,
    DashboardService,
    SettlementService,
    TransactionService,
    seed_defaults,
)

logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="Finance Tracker", version=APP_VERSION)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if get_settings().seed_defaults:
        db = SessionLocal()
        try:
            seed_defaults(db)
        finally:
            db.close()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _error(status_code: int, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), **extra})


@app.exception_handler(ValidationError)
def validation_error_handler(request: Request, exc: ValidationError):
    return _error(422, exc)


@app.exception_handler(NotFoundError)
def not_found_handler(request: Request, exc: NotFoundError):
    return _error(404, exc)


@app.exception_handler(ConflictError)
def conflict_handler(request: Request, exc: ConflictError):
    return _error(409, exc)


@app.exception_handler(IntegrityViolation)
def integrity_handler(request: Request, exc: IntegrityViolation):
    references = [{"kind": kind, "id": ref_id} for kind, ref_id in exc.references]
    return _error(409, exc, references=references)


@app.exception_handler(StoreUnavailable)
def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    logger.error(f"store_unavailable: path={request.url.path} error={exc}")
    return _error(503, exc)


@app.get("/api/csrf-token")
def api_csrf_token():
    return {"token": generate_csrf_token()}


# Accounts


@app.get("/api/accounts", response_model=list[AccountOut])
def api_accounts(db: Session = Depends(get_db)):
    return AccountService(db).list_all()


@app.post(
    "/api/accounts",
    response_model=AccountOut,
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def api_create_account(data: AccountIn, db: Session = Depends(get_db)):
    return AccountService(db).create(data)


@app.put(
    "/api/accounts/{account_id}",
    response_model=AccountOut,
    dependencies=[Depends(require_csrf)],
)
def api_update_account(
    account_id: int, data: AccountUpdateIn, db: Session = Depends(get_db)
):
    return AccountService(db).update(account_id, data)


@app.delete(
    "/api/accounts/{account_id}",
    status_code=204,
    dependencies=[Depends(require_csrf)],
)
def api_delete_account(account_id: int, db: Session = Depends(get_db)):
    AccountService(db).delete(account_id)


# Categories


@app.get("/api/categories", response_model=list[CategoryOut])
def api_categories(
    type: Optional[TransactionType] = None, db: Session = Depends(get_db)
):
    return CategoryService(db).list_all(type)


@app.post(
    "/api/categories",
    response_model=CategoryOut,
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def api_create_category(data: CategoryIn, db: Session = Depends(get_db)):
    return CategoryService(db).create(data)


@app.put(
    "/api/categories/{category_id}",
    response_model=CategoryOut,
    dependencies=[Depends(require_csrf)],
)
def api_update_category(
    category_id: int, data: CategoryIn, db: Session = Depends(get_db)
):
    return CategoryService(db).update(category_id, data)


@app.delete(
    "/api/categories/{category_id}",
    status_code=204,
    dependencies=[Depends(require_csrf)],
)
def api_delete_category(category_id: int, db: Session = Depends(get_db)):
    CategoryService(db).delete(category_id)


# Transactions


@app.get("/api/transactions", response_model=list[TransactionOut])
def api_transactions(
    period: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    type: Optional[TransactionType] = None,
    category_id: Optional[int] = None,
    account_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    resolved = resolve_period(period, start, end, today=local_today())
    return TransactionService(db).list(
        resolved, type=type, category_id=category_id, account_id=account_id
    )


@app.post(
    "/api/transactions",
    response_model=TransactionOut,
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def api_create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    return TransactionService(db).create(data)


@app.put(
    "/api/transactions/{transaction_id}",
    response_model=TransactionOut,
    dependencies=[Depends(require_csrf)],
)
def api_update_transaction(
    transaction_id: int, data: TransactionIn, db: Session = Depends(get_db)
):
    return TransactionService(db).update(transaction_id, data)


@app.delete(
    "/api/transactions/{transaction_id}",
    status_code=204,
    dependencies=[Depends(require_csrf)],
)
def api_delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    TransactionService(db).delete(transaction_id)


# Bills


@app.get("/api/bills", response_model=list[BillOut])
def api_bills(
    bucket: Optional[BillBucket] = None,
    status: Optional[BillStatus] = None,
    db: Session = Depends(get_db),
):
    service = BillService(db)
    if bucket is not None:
        return service.pending(bucket)
    return service.list_all(status)


@app.get("/api/bills/timeline")
def api_bills_timeline(
    bucket: Optional[BillBucket] = None, db: Session = Depends(get_db)
):
    timeline = BillService(db).timeline(bucket)
    return {
        day: [BillOut.model_validate(bill) for bill in bills]
        for day, bills in timeline.items()
    }


@app.get("/api/bills/{bill_id}", response_model=BillOut)
def api_bill(bill_id: int, db: Session = Depends(get_db)):
    return BillService(db).get(bill_id)


@app.get("/api/bills/{bill_id}/chain", response_model=list[BillOut])
def api_bill_chain(bill_id: int, db: Session = Depends(get_db)):
    return BillService(db).chain(bill_id)


@app.post(
    "/api/bills",
    response_model=list[BillOut],
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def api_create_bill(data: BillIn, db: Session = Depends(get_db)):
    return BillService(db).create(data)


@app.put(
    "/api/bills/{bill_id}",
    response_model=BillOut,
    dependencies=[Depends(require_csrf)],
)
def api_update_bill(bill_id: int, data: BillUpdateIn, db: Session = Depends(get_db)):
    return BillService(db).update(bill_id, data)


@app.post(
    "/api/bills/{bill_id}/pay",
    response_model=PaymentOutcomeOut,
    dependencies=[Depends(require_csrf)],
)
def api_pay_bill(bill_id: int, data: PaymentIn, db: Session = Depends(get_db)):
    outcome = SettlementService(db).pay(bill_id, data.account_id)
    return PaymentOutcomeOut.model_validate(outcome)


@app.delete("/api/bills/{bill_id}", dependencies=[Depends(require_csrf)])
def api_delete_bill(bill_id: int, db: Session = Depends(get_db)):
    return {"deleted": BillService(db).delete(bill_id)}


# Dashboard


@app.get("/api/dashboard")
def api_dashboard(window: Optional[int] = None, db: Session = Depends(get_db)):
    snapshot = DashboardService(db).snapshot(window)
    snapshot["timeline"] = {
        day: [BillOut.model_validate(bill) for bill in bills]
        for day, bills in snapshot["timeline"].items()
    }
    return snapshot
