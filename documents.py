"""Domain values for clients, line items, estimates and invoices.

Every value here is immutable; changes go through ``dataclasses.replace``
and produce a new value. ``to_dict``/``from_dict`` use the camelCase keys of
the persisted JSON layout. Optional fields that are ``None`` are left out of
the JSON so that an absent field and an empty string stay distinguishable.
"""

import uuid
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from totals import compute_total

UNITS = ("hours", "days")

DRAFT = "draft"
SENT = "sent"
CONVERTED = "converted"
ESTIMATE_STATUSES = (DRAFT, SENT, CONVERTED)


def new_id():
    return uuid.uuid4().hex


def _put_optional(data, key, value):
    if value is not None:
        data[key] = value


@dataclass(frozen=True)
class Client:
    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    company: Optional[str] = None

    def to_dict(self):
        data = {"id": self.id, "name": self.name}
        _put_optional(data, "phone", self.phone)
        _put_optional(data, "email", self.email)
        _put_optional(data, "address", self.address)
        _put_optional(data, "company", self.company)
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data["id"]),
            name=data["name"],
            phone=data.get("phone"),
            email=data.get("email"),
            address=data.get("address"),
            company=data.get("company"),
        )


@dataclass(frozen=True)
class LineItem:
    id: str
    description: str
    quantity: float
    unit: str
    unit_price: float
    taxable: bool = True

    def to_dict(self):
        return {
            "id": self.id,
            "description": self.description,
            "quantity": self.quantity,
            "unit": self.unit,
            "unitPrice": self.unit_price,
            "taxable": self.taxable,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data["id"]),
            description=data.get("description", ""),
            quantity=data["quantity"],
            unit=data.get("unit", "hours"),
            unit_price=data["unitPrice"],
            taxable=bool(data.get("taxable", True)),
        )


@dataclass(frozen=True)
class DocumentCore:
    """Fields shared by estimates and invoices."""

    client_id: str
    issue_date: str
    items: Tuple[LineItem, ...] = ()
    tax_rate: float = 0.0
    notes: str = ""
    total: float = 0.0

    def __post_init__(self):
        if not isinstance(self.items, tuple):
            object.__setattr__(self, "items", tuple(self.items))

    def recomputed(self):
        return replace(self, total=compute_total(self.items, self.tax_rate))

    def is_current(self):
        return self.total == compute_total(self.items, self.tax_rate)

    def _fields(self):
        return {
            "clientId": self.client_id,
            "issueDate": self.issue_date,
            "items": [i.to_dict() for i in self.items],
            "taxRate": self.tax_rate,
            "notes": self.notes,
            "total": self.total,
        }

    @classmethod
    def _from_fields(cls, data):
        return cls(
            client_id=str(data["clientId"]),
            issue_date=data.get("issueDate", ""),
            items=tuple(LineItem.from_dict(i) for i in data.get("items", [])),
            tax_rate=data.get("taxRate", 0.0),
            notes=data.get("notes", ""),
            total=data.get("total", 0.0),
        )


@dataclass(frozen=True)
class EstimateState:
    """``draft``, ``sent`` or ``converted`` with the id of the invoice it became."""

    status: str = DRAFT
    invoice_id: Optional[str] = None

    def __post_init__(self):
        if self.status not in ESTIMATE_STATUSES:
            raise ValueError(f"Unknown estimate status {self.status!r}")
        if (self.status == CONVERTED) != bool(self.invoice_id):
            raise ValueError("A converted estimate needs an invoice id, and only a converted one may have it")

    @classmethod
    def draft(cls):
        return cls(DRAFT)

    @classmethod
    def sent(cls):
        return cls(SENT)

    @classmethod
    def converted(cls, invoice_id):
        return cls(CONVERTED, invoice_id)

    @property
    def is_converted(self):
        return self.status == CONVERTED


class _CoreAccess:
    @property
    def client_id(self):
        return self.core.client_id

    @property
    def issue_date(self):
        return self.core.issue_date

    @property
    def items(self):
        return self.core.items

    @property
    def tax_rate(self):
        return self.core.tax_rate

    @property
    def notes(self):
        return self.core.notes

    @property
    def total(self):
        return self.core.total

    def with_total(self):
        """Return a copy whose cached total matches its items and tax rate."""
        return replace(self, core=self.core.recomputed())


@dataclass(frozen=True)
class Estimate(_CoreAccess):
    id: str
    core: DocumentCore
    estimate_number: str
    valid_until: str = ""
    state: EstimateState = field(default_factory=EstimateState.draft)

    @property
    def status(self):
        return self.state.status

    @property
    def converted_invoice_id(self):
        return self.state.invoice_id

    def to_dict(self):
        data = {"id": self.id, "estimateNumber": self.estimate_number, "validUntil": self.valid_until}
        data.update(self.core._fields())
        data["status"] = self.state.status
        _put_optional(data, "convertedInvoiceId", self.state.invoice_id)
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data["id"]),
            core=DocumentCore._from_fields(data),
            estimate_number=data.get("estimateNumber", ""),
            valid_until=data.get("validUntil", ""),
            state=EstimateState(data.get("status", DRAFT), data.get("convertedInvoiceId")),
        )


@dataclass(frozen=True)
class Invoice(_CoreAccess):
    id: str
    core: DocumentCore
    invoice_number: str
    due_date: str
    paid: bool = False
    # carried over from the source estimate, informational only
    estimate_number: str = ""
    valid_until: str = ""

    def to_dict(self):
        data = {
            "id": self.id,
            "invoiceNumber": self.invoice_number,
            "estimateNumber": self.estimate_number,
            "validUntil": self.valid_until,
            "dueDate": self.due_date,
            "paid": self.paid,
        }
        data.update(self.core._fields())
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=str(data["id"]),
            core=DocumentCore._from_fields(data),
            invoice_number=data.get("invoiceNumber", ""),
            due_date=data.get("dueDate", ""),
            paid=bool(data.get("paid", False)),
            estimate_number=data.get("estimateNumber", ""),
            valid_until=data.get("validUntil", ""),
        )


@dataclass(frozen=True)
class AppSettings:
    company_name: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    logo_uri: Optional[str] = None
    default_tax_rate: float = 8.0
    default_currency: str = "USD"
    default_note: Optional[str] = None
    enable_item_taxable: bool = True

    def to_dict(self):
        data = {"companyName": self.company_name}
        _put_optional(data, "phone", self.phone)
        _put_optional(data, "email", self.email)
        _put_optional(data, "address", self.address)
        _put_optional(data, "logoUri", self.logo_uri)
        data["defaultTaxRate"] = self.default_tax_rate
        data["defaultCurrency"] = self.default_currency
        _put_optional(data, "defaultNote", self.default_note)
        data["enableItemTaxable"] = self.enable_item_taxable
        return data

    @classmethod
    def from_dict(cls, data):
        defaults = cls()
        return cls(
            company_name=data.get("companyName", defaults.company_name),
            phone=data.get("phone"),
            email=data.get("email"),
            address=data.get("address"),
            logo_uri=data.get("logoUri"),
            default_tax_rate=data.get("defaultTaxRate", defaults.default_tax_rate),
            default_currency=data.get("defaultCurrency", defaults.default_currency),
            default_note=data.get("defaultNote"),
            enable_item_taxable=bool(data.get("enableItemTaxable", defaults.enable_item_taxable)),
        )


@dataclass(frozen=True)
class Counters:
    """Last issued estimate and invoice counter values."""

    estimate_counter: int = 0
    invoice_counter: int = 0

    def to_dict(self):
        return {"estimateCounter": self.estimate_counter, "invoiceCounter": self.invoice_counter}

    @classmethod
    def from_dict(cls, data):
        return cls(
            estimate_counter=int(data.get("estimateCounter", 0)),
            invoice_counter=int(data.get("invoiceCounter", 0)),
        )
