"""
Buyer repository for billing-related account data.

Reads buyer accounts and their stored payment methods, and caches the
gateway customer id on the account the first time one is created.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Optional
from uuid import UUID

from postgrest.exceptions import APIError

from domain.buyer import Buyer, PaymentMethod
from domain.time import parse_utc_datetime
from repositories.client import Client, check_response, first_row

_USERS_TABLE: str = "users"
_PAYMENT_METHODS_TABLE: str = "payment_methods"


def _row_to_payment_method(row: Mapping[str, Any]) -> PaymentMethod:
    return PaymentMethod(
        method_ref=str(row["method_ref"]),
        brand=str(row.get("brand") or "card"),
        last4=str(row.get("last4") or ""),
        exp_month=int(row["exp_month"]),
        exp_year=int(row["exp_year"]),
        created_at=parse_utc_datetime(row["created_at_utc"]),
        is_default=bool(row.get("is_default", False)),
    )


def _row_to_buyer(row: Mapping[str, Any]) -> Buyer:
    methods = row.get(_PAYMENT_METHODS_TABLE) or []
    return Buyer(
        buyer_id=UUID(str(row["id"])),
        email=str(row["email"]),
        first_name=str(row.get("first_name") or ""),
        last_name=str(row.get("last_name") or ""),
        gateway_customer_ref=row.get("stripe_customer_id"),
        payment_methods=tuple(_row_to_payment_method(m) for m in methods),
        is_admin=row.get("account_type") == "Admin",
    )


class BuyerRepository:
    def __init__(self, client: Client):
        self._client = client

    def get(self, buyer_id: UUID) -> Optional[Buyer]:
        """
        Get a buyer with their stored payment methods.

        Returns:
            Buyer or None if not found
        """

        response = (
            self._client.table(_USERS_TABLE)
            .select(f"id, email, first_name, last_name, stripe_customer_id, account_type, {_PAYMENT_METHODS_TABLE}(*)")
            .eq("id", str(buyer_id))
            .limit(1)
            .execute()
        )
        row = first_row(response, "fetch buyer")
        return _row_to_buyer(row) if row else None

    def cache_gateway_customer_ref(self, buyer_id: UUID, customer_ref: str) -> str:
        """
        Store the gateway customer id if the buyer has none yet.

        Returns the id that is stored afterwards. When another process cached
        one first, that id wins and is returned instead of `customer_ref`.

        Raises:
            RuntimeError: the store could not be updated.
        """

        try:
            response = (
                self._client.table(_USERS_TABLE)
                .update({"stripe_customer_id": customer_ref})
                .eq("id", str(buyer_id))
                .is_("stripe_customer_id", "null")
                .execute()
            )
        except APIError as exc:
            raise RuntimeError(f"Failed to cache gateway customer for buyer {buyer_id}: {exc}") from exc
        if check_response(response, "cache gateway customer"):
            return customer_ref

        existing = self.get(buyer_id)
        if existing is None or not existing.gateway_customer_ref:
            raise RuntimeError(f"Failed to cache gateway customer for buyer {buyer_id}")
        return existing.gateway_customer_ref

    def list_admin_ids(self) -> List[UUID]:
        response = (
            self._client.table(_USERS_TABLE)
            .select("id")
            .eq("account_type", "Admin")
            .execute()
        )
        return [UUID(str(row["id"])) for row in check_response(response, "list admins")]


__all__ = ["BuyerRepository"]
