from pydantic import BaseModel
from typing import Optional, Dict, Any
from datetime import datetime, timezone


def _parse_timestamp(value) -> Optional[datetime]:
    """Paystack timestamps are ISO-8601 in UTC ("2024-01-16T10:00:00.000Z"); store naive UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class PaymentInitiation(BaseModel):
    authorization_url: str
    access_code: Optional[str] = None
    reference: str


class ProviderTransaction(BaseModel):
    """A Paystack transaction as returned by /transaction/verify or a charge.success event."""
    reference: str
    status: str  # success, failed, abandoned, ongoing, pending, reversed
    amount: int  # Minor units
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    channel: Optional[str] = None
    customer_code: Optional[str] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    card_exp_month: Optional[str] = None
    card_exp_year: Optional[str] = None
    gateway_response: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_paystack(cls, data: Dict[str, Any]) -> "ProviderTransaction":
        authorization = data.get("authorization") or {}
        customer = data.get("customer") or {}
        metadata = data.get("metadata")
        return cls(
            reference=str(data.get("reference") or ""),
            status=str(data.get("status") or ""),
            amount=int(data.get("amount") or 0),
            transaction_id=str(data["id"]) if data.get("id") is not None else None,
            paid_at=_parse_timestamp(data.get("paid_at") or data.get("paidAt")),
            channel=data.get("channel"),
            customer_code=customer.get("customer_code"),
            card_last4=authorization.get("last4"),
            card_brand=(authorization.get("card_type") or "").strip() or None,
            card_exp_month=authorization.get("exp_month"),
            card_exp_year=authorization.get("exp_year"),
            gateway_response=data.get("gateway_response"),
            metadata=metadata if isinstance(metadata, dict) else None,
        )
