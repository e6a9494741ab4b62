from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from stefna.api.deps import resolve_user_id
from stefna.db.session import get_db
from stefna.schemas.generation import BalanceOut
from stefna.services.credits.service import CreditLedger

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/balance", response_model=BalanceOut, response_model_by_alias=True)
def get_balance(
    request: Request,
    user_id: str | None = Query(default=None, alias="userId"),
    db: Session = Depends(get_db),
):
    uid = resolve_user_id(request, user_id)
    return BalanceOut(user_id=uid, balance=CreditLedger(db).get_balance(uid))
