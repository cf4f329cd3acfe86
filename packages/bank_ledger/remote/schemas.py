"""Pydantic models for the bank-data API payloads.

Only the fields the pipeline reads are declared. Everything else is kept
(``extra="allow"``) so a record's provenance blob round-trips unchanged.
Field names follow the provider's camelCase through aliases.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_CAMEL = ConfigDict(extra="allow", populate_by_name=True, str_strip_whitespace=True)


class TokenPair(BaseModel):
    """Response of ``token/new/`` (``refresh`` present) or ``token/refresh/``."""

    model_config = _CAMEL

    access: str
    access_expires: int
    refresh: str | None = None
    refresh_expires: int | None = None

    @field_validator("access")
    @classmethod
    def _access_non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("access token must be non-empty")
        return v


class Requisition(BaseModel):
    model_config = _CAMEL

    id: str
    status: str
    institution_id: str | None = None
    accounts: list[str] = Field(default_factory=list)
    link: str | None = None
    reference: str | None = None
    created: str | None = None

    @field_validator("accounts", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class Amount(BaseModel):
    model_config = _CAMEL

    amount: Decimal
    currency: str | None = None


class AccountDetails(BaseModel):
    """``accounts/{id}/details/`` returns ``{"account": {...}}``; this is the inner object."""

    model_config = _CAMEL

    name: str | None = None
    owner_name: str | None = Field(default=None, alias="ownerName")
    iban: str | None = None
    currency: str | None = None
    institution: str | None = None
    product: str | None = None


class Balance(BaseModel):
    model_config = _CAMEL

    balance_amount: Amount | None = Field(default=None, alias="balanceAmount")
    balance_type: str | None = Field(default=None, alias="balanceType")
    reference_date: str | None = Field(default=None, alias="referenceDate")


class BookedTransaction(BaseModel):
    model_config = _CAMEL

    transaction_id: str | None = Field(default=None, alias="transactionId")
    internal_transaction_id: str | None = Field(default=None, alias="internalTransactionId")
    booking_date: str | None = Field(default=None, alias="bookingDate")
    value_date: str | None = Field(default=None, alias="valueDate")
    transaction_amount: Amount = Field(alias="transactionAmount")
    remittance_information_unstructured: str | None = Field(
        default=None, alias="remittanceInformationUnstructured"
    )
    additional_information: str | None = Field(default=None, alias="additionalInformation")
    creditor_name: str | None = Field(default=None, alias="creditorName")
    debtor_name: str | None = Field(default=None, alias="debtorName")


class Institution(BaseModel):
    model_config = _CAMEL

    id: str
    name: str
    bic: str | None = None
    transaction_total_days: str | int | None = None
    countries: list[str] = Field(default_factory=list)
    logo: str | None = None


__all__ = [
    "AccountDetails",
    "Amount",
    "Balance",
    "BookedTransaction",
    "Institution",
    "Requisition",
    "TokenPair",
]
