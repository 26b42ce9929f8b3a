"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from merchant_credit.infrastructure.clients.explainer import TextExplainer, build_explainer
from merchant_credit.infrastructure.clients.gateway import PaymentGatewayClient
from merchant_credit.infrastructure.database.repositories import LedgerStore
from merchant_credit.infrastructure.database.session import get_db


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_gateway_client() -> PaymentGatewayClient:
    """Provide payment gateway client instance"""
    return PaymentGatewayClient()


def get_explainer() -> TextExplainer:
    """Provide text-generation client, or the canned-text fallback"""
    return build_explainer()


def get_ledger_store(db: Session = Depends(get_db)) -> LedgerStore:
    return LedgerStore(db)
