"""Entity schema registry.

One ``EntitySchema`` per resource type exposed by the accounting API. The
request engine consumes this table; nothing here talks to the network.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from qbo_link.errors import UnsupportedOperationError
from qbo_link.models.quickbooks.lines import (
    DEPOSIT_LINE_TYPES,
    EXPENSE_LINE_TYPES,
    JOURNAL_LINE_TYPES,
    LINE_MODELS,
    SALES_LINE_TYPES,
)


class Operation(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    QUERY = "query"
    VOID = "void"
    SEND = "send"
    PDF = "pdf"


SERVER_ASSIGNED = ("Id", "SyncToken", "MetaData", "domain")

LIST_OPS = frozenset({Operation.CREATE, Operation.READ, Operation.UPDATE, Operation.QUERY})
TXN_OPS = LIST_OPS | {Operation.DELETE}
SALES_DOC_OPS = TXN_OPS | {Operation.SEND, Operation.PDF}
READ_ONLY_OPS = frozenset({Operation.READ, Operation.QUERY})


@dataclass(frozen=True)
class EntitySchema:
    name: str
    required: Tuple[str, ...] = ()
    # computed by the service, in addition to SERVER_ASSIGNED
    read_only: Tuple[str, ...] = ()
    max_lengths: Mapping[str, int] = field(default_factory=dict)
    line_variants: Tuple[str, ...] = ()
    operations: FrozenSet[Operation] = LIST_OPS
    identity_fields: Tuple[str, ...] = ("Id", "SyncToken")
    resource: Optional[str] = None
    singleton: bool = False
    void_via_update: bool = False

    @property
    def path(self) -> str:
        return self.resource or self.name.lower()

    @property
    def all_read_only(self) -> Tuple[str, ...]:
        return SERVER_ASSIGNED + self.read_only

    @property
    def has_typed_lines(self) -> bool:
        return bool(self.line_variants)

    def supports(self, operation: Operation) -> bool:
        return operation in self.operations

    def require(self, operation: Operation) -> None:
        if not self.supports(operation):
            raise UnsupportedOperationError(self.name, operation.value)

    def allows_line(self, detail_type: Optional[str]) -> bool:
        return detail_type in self.line_variants


_NAME_100 = {"Name": 100}
_TXN_TEXT = {"DocNumber": 21, "PrivateNote": 4000}
_SALES_TEXT = {**_TXN_TEXT, "CustomerMemo.value": 1000}
_DISPLAY_NAMES = {
    "DisplayName": 500,
    "GivenName": 100,
    "MiddleName": 100,
    "FamilyName": 100,
    "Title": 16,
    "Suffix": 16,
    "CompanyName": 100,
    "PrintOnCheckName": 110,
}

_SCHEMAS: List[EntitySchema] = [
    EntitySchema(
        "Account",
        required=("Name", "AccountType"),
        read_only=("CurrentBalance", "CurrentBalanceWithSubAccounts", "FullyQualifiedName"),
        max_lengths={**_NAME_100, "Description": 100, "AcctNum": 20},
    ),
    EntitySchema("Attachable", max_lengths={"FileName": 1000, "Note": 2000}, operations=TXN_OPS),
    EntitySchema(
        "Bill",
        required=("VendorRef", "Line"),
        read_only=("TotalAmt", "Balance", "HomeBalance"),
        max_lengths=_TXN_TEXT,
        line_variants=EXPENSE_LINE_TYPES,
        operations=TXN_OPS,
    ),
    EntitySchema(
        "BillPayment",
        required=("VendorRef", "TotalAmt", "PayType", "Line"),
        max_lengths=_TXN_TEXT,
        operations=TXN_OPS | {Operation.VOID},
    ),
    EntitySchema("Budget", operations=READ_ONLY_OPS),
    EntitySchema(
        "Class",
        required=("Name",),
        read_only=("FullyQualifiedName",),
        max_lengths=_NAME_100,
    ),
    EntitySchema(
        "CompanyInfo",
        required=("CompanyName",),
        max_lengths={"CompanyName": 1024, "LegalName": 1024},
        operations=frozenset({Operation.READ, Operation.UPDATE, Operation.QUERY}),
        singleton=True,
    ),
    EntitySchema(
        "CreditMemo",
        required=("CustomerRef", "Line"),
        read_only=("TotalAmt", "Balance", "HomeTotalAmt", "RemainingCredit"),
        max_lengths=_SALES_TEXT,
        line_variants=SALES_LINE_TYPES,
        operations=SALES_DOC_OPS,
    ),
    EntitySchema(
        "Customer",
        required=("DisplayName",),
        read_only=("BalanceWithJobs", "FullyQualifiedName"),
        max_lengths={**_DISPLAY_NAMES, "Notes": 2000},
    ),
    EntitySchema(
        "Department",
        required=("Name",),
        read_only=("FullyQualifiedName",),
        max_lengths=_NAME_100,
    ),
    EntitySchema(
        "Deposit",
        required=("DepositToAccountRef", "Line"),
        read_only=("TotalAmt", "HomeTotalAmt"),
        max_lengths={"PrivateNote": 4000},
        line_variants=DEPOSIT_LINE_TYPES,
        operations=TXN_OPS,
    ),
    EntitySchema(
        "Employee",
        required=("GivenName", "FamilyName"),
        max_lengths={**_DISPLAY_NAMES, "EmployeeNumber": 100},
    ),
    EntitySchema(
        "Estimate",
        required=("CustomerRef", "Line"),
        read_only=("TotalAmt", "HomeTotalAmt"),
        max_lengths=_SALES_TEXT,
        line_variants=SALES_LINE_TYPES,
        operations=SALES_DOC_OPS,
    ),
    EntitySchema(
        "ExchangeRate",
        required=("SourceCurrencyCode", "Rate"),
        operations=frozenset({Operation.UPDATE, Operation.QUERY}),
        identity_fields=(),
    ),
    EntitySchema(
        "Invoice",
        required=("CustomerRef", "Line"),
        read_only=("TotalAmt", "Balance", "HomeBalance", "HomeTotalAmt"),
        max_lengths=_SALES_TEXT,
        line_variants=SALES_LINE_TYPES,
        operations=SALES_DOC_OPS | {Operation.VOID},
    ),
    EntitySchema(
        "Item",
        required=("Name", "Type"),
        read_only=("FullyQualifiedName",),
        max_lengths={**_NAME_100, "Description": 4000, "PurchaseDesc": 1000, "Sku": 100},
    ),
    EntitySchema("JournalCode", required=("Name",), max_lengths={"Name": 2, "Description": 100}, operations=TXN_OPS),
    EntitySchema(
        "JournalEntry",
        required=("Line",),
        read_only=("TotalAmt", "HomeTotalAmt"),
        max_lengths=_TXN_TEXT,
        line_variants=JOURNAL_LINE_TYPES,
        operations=TXN_OPS,
    ),
    EntitySchema(
        "Payment",
        required=("CustomerRef", "TotalAmt"),
        read_only=("UnappliedAmt",),
        max_lengths={"PrivateNote": 4000, "PaymentRefNum": 21},
        operations=TXN_OPS | {Operation.VOID},
        void_via_update=True,
    ),
    EntitySchema("PaymentMethod", required=("Name",), max_lengths={"Name": 31}),
    EntitySchema(
        "Preferences",
        operations=frozenset({Operation.READ, Operation.UPDATE, Operation.QUERY}),
        singleton=True,
    ),
    EntitySchema(
        "Purchase",
        required=("AccountRef", "PaymentType", "Line"),
        read_only=("TotalAmt",),
        max_lengths=_TXN_TEXT,
        line_variants=EXPENSE_LINE_TYPES,
        operations=TXN_OPS,
    ),
    EntitySchema(
        "PurchaseOrder",
        required=("VendorRef", "APAccountRef", "Line"),
        read_only=("TotalAmt",),
        max_lengths={**_TXN_TEXT, "Memo": 4000},
        line_variants=EXPENSE_LINE_TYPES,
        operations=TXN_OPS | {Operation.SEND},
    ),
    EntitySchema(
        "RefundReceipt",
        required=("DepositToAccountRef", "Line"),
        read_only=("TotalAmt", "Balance", "HomeBalance", "HomeTotalAmt"),
        max_lengths=_SALES_TEXT,
        line_variants=SALES_LINE_TYPES,
        operations=SALES_DOC_OPS,
    ),
    EntitySchema(
        "SalesReceipt",
        required=("Line",),
        read_only=("TotalAmt", "Balance", "HomeBalance", "HomeTotalAmt"),
        max_lengths=_SALES_TEXT,
        line_variants=SALES_LINE_TYPES,
        operations=SALES_DOC_OPS | {Operation.VOID},
    ),
    EntitySchema(
        "TaxAgency",
        required=("DisplayName",),
        max_lengths={"DisplayName": 100},
        operations=frozenset({Operation.CREATE, Operation.READ, Operation.QUERY}),
    ),
    EntitySchema("TaxCode", operations=READ_ONLY_OPS),
    EntitySchema("TaxRate", operations=READ_ONLY_OPS),
    EntitySchema(
        "TaxService",
        required=("TaxCode", "TaxRateDetails"),
        operations=frozenset({Operation.CREATE}),
        resource="taxservice/taxcode",
    ),
    EntitySchema("Term", required=("Name",), max_lengths={"Name": 31}),
    EntitySchema(
        "TimeActivity",
        required=("NameOf",),
        max_lengths={"Description": 4000},
        operations=TXN_OPS,
    ),
    EntitySchema(
        "Transfer",
        required=("FromAccountRef", "ToAccountRef", "Amount"),
        max_lengths={"PrivateNote": 4000},
        operations=TXN_OPS,
    ),
    EntitySchema(
        "Vendor",
        required=("DisplayName",),
        read_only=("Balance",),
        max_lengths={**_DISPLAY_NAMES, "AcctNum": 100},
    ),
    EntitySchema(
        "VendorCredit",
        required=("VendorRef", "Line"),
        read_only=("TotalAmt", "Balance"),
        max_lengths=_TXN_TEXT,
        line_variants=EXPENSE_LINE_TYPES,
        operations=TXN_OPS,
    ),
]

ENTITY_SCHEMAS: Dict[str, EntitySchema] = {schema.name.lower(): schema for schema in _SCHEMAS}

for _schema in _SCHEMAS:
    for _tag in _schema.line_variants:
        if _tag not in LINE_MODELS:
            raise ValueError(f"{_schema.name} lists unknown line variant {_tag}")


def get_schema(entity_type: str) -> EntitySchema:
    schema = ENTITY_SCHEMAS.get((entity_type or "").lower())
    if schema is None:
        raise UnsupportedOperationError(entity_type, "any operation")
    return schema


def entity_types() -> List[str]:
    return [schema.name for schema in _SCHEMAS]


def schemas_with_lines() -> Iterable[EntitySchema]:
    return (schema for schema in _SCHEMAS if schema.has_typed_lines)
