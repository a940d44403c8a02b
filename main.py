import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from sqlalchemy.orm import Session, sessionmaker

from balances import net_of
from config import get_settings
from database import create_db_engine, init_db, make_session_factory
from ledger import LedgerError, NotFoundError, Occurrence
from models import OwnerKind, TransactionType
from periods import Period, resolve_period
from schemas import (
    AccountBalanceOut,
    AggregateBalanceOut,
    BalanceOut,
    CurrentInstallmentOut,
    DeleteInstallmentsIn,
    EditTransactionIn,
    EditTransactionOut,
    OccurrenceOut,
    RepeatSettingsOut,
    TransactionIn,
)
from services import (
    AccountService,
    AggregationService,
    EditTransactionService,
    LedgerService,
    TransactionFilters,
    TransactionService,
)

logger = logging.getLogger(__name__)


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def occurrence_out(occ: Occurrence) -> OccurrenceOut:
    balance = occ.balance
    return OccurrenceOut(
        id=occ.template_id,
        name=occ.name,
        description=occ.description,
        type=occ.type,
        frequency=occ.frequency,
        balance=BalanceOut(
            value=balance.value,
            parts=balance.parts,
            labor=balance.labor,
            discount=balance.discount,
            interest=balance.interest,
            discount_percentage=balance.discount_percentage,
            interest_percentage=balance.interest_percentage,
            net=net_of(occ),
        ),
        total_balance=occ.total_balance,
        repeat_settings=(
            RepeatSettingsOut.model_validate(occ.repeat_settings)
            if occ.repeat_settings
            else None
        ),
        installment=occ.installment,
        schedule_position=occ.schedule_position,
        due_date=occ.due_date,
        registration_date=occ.registration_date,
        is_confirmed=occ.is_confirmed,
        confirmation_date=occ.confirmation_date,
        is_overdue=occ.is_overdue,
        account_id=occ.account_id,
        category_id=occ.category_id,
        sub_category_id=occ.sub_category_id,
        tags=list(occ.tags),
    )


def create_app(session_factory: Optional[sessionmaker] = None) -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(title="Ledger")
    app.state.session_factory = session_factory

    @app.on_event("startup")
    def startup_event():
        if app.state.session_factory is None:
            engine = create_db_engine(settings.database_url)
            init_db(engine)
            app.state.session_factory = make_session_factory(engine)
            logger.info("Ledger database ready")

    def get_db(request: Request):
        db = request.app.state.session_factory()
        try:
            yield db
        finally:
            db.close()

    def period_from_query(
        year: Optional[int] = None,
        month: Optional[int] = Query(default=None, ge=1, le=12),
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> Period:
        try:
            return resolve_period(year, month, start, end)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.post("/api/workspaces/{workspace_id}/transactions", status_code=201)
    def create_transaction(
        workspace_id: int, data: TransactionIn, db: Session = Depends(get_db)
    ):
        try:
            txn = TransactionService(db, workspace_id).create(data)
        except LedgerError as exc:
            raise http_error(exc) from exc
        return {"id": txn.id}

    @app.get(
        "/api/workspaces/{workspace_id}/transactions",
        response_model=list[OccurrenceOut],
    )
    def list_transactions(
        workspace_id: int,
        period: Period = Depends(period_from_query),
        type: Optional[TransactionType] = None,
        account_id: Optional[list[int]] = Query(default=None),
        db: Session = Depends(get_db),
    ):
        filters = TransactionFilters(type=type, account_ids=account_id)
        try:
            items = LedgerService(db, workspace_id).list_transactions(period, filters)
        except LedgerError as exc:
            raise http_error(exc) from exc
        return [occurrence_out(occ) for occ in items]

    @app.get(
        "/api/workspaces/{workspace_id}/transactions/{transaction_id}/current-installment",
        response_model=CurrentInstallmentOut,
    )
    def transaction_current_installment(
        workspace_id: int,
        transaction_id: int,
        year: int,
        month: int = Query(..., ge=1, le=12),
        db: Session = Depends(get_db),
    ):
        try:
            installment = TransactionService(db, workspace_id).current_installment(
                transaction_id, year, month
            )
        except LedgerError as exc:
            raise http_error(exc) from exc
        return CurrentInstallmentOut(
            transaction_id=transaction_id,
            year=year,
            month=month,
            installment=installment,
        )

    @app.get(
        "/api/workspaces/{workspace_id}/balances",
        response_model=list[AggregateBalanceOut],
    )
    def balances(
        workspace_id: int,
        year: int,
        month: int = Query(..., ge=1, le=12),
        owner: OwnerKind = OwnerKind.account,
        ids: list[int] = Query(default=[]),
        db: Session = Depends(get_db),
    ):
        try:
            aggregates = AggregationService(db, workspace_id).aggregate(
                ids, year, month, owner
            )
        except LedgerError as exc:
            raise http_error(exc) from exc
        return [
            AggregateBalanceOut(
                owner=owner,
                owner_id=owner_id,
                total=aggregate.total,
                current=aggregate.current,
            )
            for owner_id, aggregate in aggregates.items()
        ]

    @app.get(
        "/api/workspaces/{workspace_id}/accounts/balances",
        response_model=list[AccountBalanceOut],
    )
    def account_balances(
        workspace_id: int,
        year: int,
        month: int = Query(..., ge=1, le=12),
        db: Session = Depends(get_db),
    ):
        try:
            rows = AccountService(db, workspace_id).balances(year, month)
        except LedgerError as exc:
            raise http_error(exc) from exc
        return [AccountBalanceOut(**row) for row in rows]

    @app.post(
        "/api/workspaces/{workspace_id}/edit-transactions",
        response_model=EditTransactionOut,
        status_code=201,
    )
    def save_edit_transaction(
        workspace_id: int,
        data: EditTransactionIn,
        request: Request,
        db: Session = Depends(get_db),
    ):
        service = EditTransactionService(
            db,
            workspace_id,
            session_factory=request.app.state.session_factory,
            max_workers=settings.validation_workers,
        )
        try:
            edit = service.save(data)
        except LedgerError as exc:
            raise http_error(exc) from exc
        return EditTransactionOut.model_validate(edit)

    @app.post("/api/workspaces/{workspace_id}/installments/delete")
    def delete_installments(
        workspace_id: int, data: DeleteInstallmentsIn, db: Session = Depends(get_db)
    ):
        try:
            marked = EditTransactionService(db, workspace_id).delete_installments(
                data.installments
            )
        except LedgerError as exc:
            raise http_error(exc) from exc
        return {"deleted": marked}

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000)
