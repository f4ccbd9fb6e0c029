from decimal import Decimal
from typing import Optional, List, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from core.entities.user import User
from core.services.payment_provider import PaymentProvider
from core.use_cases import catalog_use_cases, credit_use_cases, payment_use_cases
from core.use_cases.auth_gate import AuthContext
from infrastructure.db.sqlite import SQLiteUnitOfWork
from infrastructure.web.dependencies import get_uow, get_payment_provider, get_current_user, nft_holder_only
from infrastructure.web.schemas import CreditsResponse, CreditTransactionResponse, credits_response

router = APIRouter(prefix="/memberships", tags=["memberships"])


class SubscribeRequest(BaseModel):
    membership_plan_id: int


class SubscribeResponse(BaseModel):
    subscription_id: str
    status: str
    client_secret: Optional[str] = None


class TransactionsResponse(BaseModel):
    transactions: List[CreditTransactionResponse]
    summary: Dict[str, Dict[str, Decimal]]


class PlanSavings(BaseModel):
    id: int
    name: str
    base_price: Decimal
    nft_holder_price: Decimal
    savings: Decimal


class NftBenefitsResponse(BaseModel):
    booking_overage_discount: Decimal
    cafe_discount: Decimal
    plans: List[PlanSavings]


@router.post("/subscribe", response_model=SubscribeResponse)
def subscribe(
    payload: SubscribeRequest,
    current_user: User = Depends(get_current_user),
    uow: SQLiteUnitOfWork = Depends(get_uow),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    subscription = payment_use_cases.subscribe_to_plan(uow, provider, current_user.id, payload.membership_plan_id)
    return SubscribeResponse(
        subscription_id=subscription.id,
        status=subscription.status,
        client_secret=subscription.client_secret,
    )


@router.get("/credits", response_model=CreditsResponse)
def get_credits(current_user: User = Depends(get_current_user), uow: SQLiteUnitOfWork = Depends(get_uow)):
    return credits_response(credit_use_cases.get_balance(uow, current_user.id))


@router.get("/credits/transactions", response_model=TransactionsResponse)
def get_transactions(
    credit_type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    current_user: User = Depends(get_current_user),
    uow: SQLiteUnitOfWork = Depends(get_uow),
):
    txs = credit_use_cases.list_transactions(uow, current_user.id, credit_type=credit_type,
                                             limit=limit, offset=offset)
    return TransactionsResponse(
        transactions=[CreditTransactionResponse.model_validate(tx) for tx in txs],
        summary=credit_use_cases.summarize_transactions(txs),
    )


@router.get("/nft-benefits", response_model=NftBenefitsResponse)
def get_nft_benefits(ctx: AuthContext = Depends(nft_holder_only), uow: SQLiteUnitOfWork = Depends(get_uow)):
    return catalog_use_cases.nft_holder_benefits(uow.catalog)
