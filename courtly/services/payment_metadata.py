"""Correlation metadata carried on Stripe checkout sessions and intents.

Each payment we start tags its Stripe objects with one of three payload
kinds so the webhook can find the local record again:

- BookingPayment        — a court booking paid through checkout or a charge
- MembershipPayment     — a membership plan purchase / subscription
- AccountCreditPayment  — a top-up of the user's club account balance

Stripe stores metadata as flat string maps; parse_payment_metadata()
validates one at the webhook boundary and raises MissingMetadata when the
kind is unknown or a field is absent.
"""

from dataclasses import asdict, dataclass, fields

from courtly.errors import MissingMetadata


@dataclass(frozen=True)
class BookingPayment:
    club_id: str
    booking_id: str
    user_id: str

    kind = "booking"

    def to_metadata(self):
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True)
class MembershipPayment:
    club_id: str
    plan_id: str
    user_id: str
    membership_id: str

    kind = "membership"

    def to_metadata(self):
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True)
class AccountCreditPayment:
    club_id: str
    user_id: str
    amount: int

    kind = "account_credit"

    def to_metadata(self):
        return {
            "kind": self.kind,
            "club_id": self.club_id,
            "user_id": self.user_id,
            "amount": str(self.amount),
        }


PAYLOAD_TYPES = {
    cls.kind: cls for cls in (BookingPayment, MembershipPayment, AccountCreditPayment)
}


def parse_payment_metadata(metadata):
    """Build the typed payload for a Stripe metadata dict."""
    metadata = metadata or {}
    kind = metadata.get("kind")
    payload_cls = PAYLOAD_TYPES.get(kind)
    if payload_cls is None:
        raise MissingMetadata(f"Unknown payment metadata kind: {kind!r}")

    values = {}
    for field in fields(payload_cls):
        raw = metadata.get(field.name)
        if raw in (None, ""):
            raise MissingMetadata(f"{kind} metadata missing '{field.name}'")
        if field.type is int or field.type == "int":
            try:
                raw = int(raw)
            except (TypeError, ValueError):
                raise MissingMetadata(f"{kind} metadata has invalid '{field.name}'")
        values[field.name] = raw
    return payload_cls(**values)
