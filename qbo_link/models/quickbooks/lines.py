"""Transaction line items.

A ``Line`` element carries a ``DetailType`` tag that names the sibling detail
object holding the rest of its shape, e.g.::

    {"DetailType": "SalesItemLineDetail", "Amount": 100.0,
     "SalesItemLineDetail": {"ItemRef": {"value": "1"}, "Qty": 2}}

Each tag maps to one model below and they are combined into a pydantic
discriminated union. Which tags a given entity type accepts is decided by the
registry, not here.
"""
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, Field, TypeAdapter

from qbo_link.models.quickbooks.common import ReferenceType


class _Detail(BaseModel):
    class Config:
        extra = "allow"


class _Line(BaseModel):
    Id: Optional[str] = None
    LineNum: Optional[int] = None
    Description: Optional[str] = None
    Amount: Optional[float] = None
    LinkedTxn: Optional[List[Dict[str, Any]]] = None

    class Config:
        extra = "allow"


# -----------------------
# Sales side
# -----------------------
class SalesItemLineDetail(_Detail):
    ItemRef: Optional[ReferenceType] = None
    ClassRef: Optional[ReferenceType] = None
    TaxCodeRef: Optional[ReferenceType] = None
    ItemAccountRef: Optional[ReferenceType] = None
    Qty: Optional[float] = None
    UnitPrice: Optional[float] = None
    ServiceDate: Optional[str] = None
    DiscountRate: Optional[float] = None
    DiscountAmt: Optional[float] = None


class SalesItemLine(_Line):
    DetailType: Literal["SalesItemLineDetail"]
    SalesItemLineDetail: SalesItemLineDetail


class GroupLineDetail(_Detail):
    GroupItemRef: Optional[ReferenceType] = None
    Quantity: Optional[float] = None
    Line: Optional[List[SalesItemLine]] = None


class GroupLine(_Line):
    DetailType: Literal["GroupLineDetail"]
    GroupLineDetail: GroupLineDetail


class DescriptionOnlyDetail(_Detail):
    ServiceDate: Optional[str] = None
    TaxCodeRef: Optional[ReferenceType] = None


class DescriptionOnlyLine(_Line):
    DetailType: Literal["DescriptionOnly"]
    DescriptionLineDetail: Optional[DescriptionOnlyDetail] = None


class DiscountLineDetail(_Detail):
    PercentBased: Optional[bool] = None
    DiscountPercent: Optional[float] = None
    DiscountAccountRef: Optional[ReferenceType] = None
    ClassRef: Optional[ReferenceType] = None
    TaxCodeRef: Optional[ReferenceType] = None


class DiscountLine(_Line):
    DetailType: Literal["DiscountLineDetail"]
    DiscountLineDetail: DiscountLineDetail


class SubTotalLineDetail(_Detail):
    ItemRef: Optional[ReferenceType] = None


class SubTotalLine(_Line):
    DetailType: Literal["SubTotalLineDetail"]
    SubTotalLineDetail: SubTotalLineDetail


# -----------------------
# Purchase side
# -----------------------
class AccountBasedExpenseLineDetail(_Detail):
    AccountRef: ReferenceType
    CustomerRef: Optional[ReferenceType] = None
    ClassRef: Optional[ReferenceType] = None
    TaxCodeRef: Optional[ReferenceType] = None
    BillableStatus: Optional[Literal["Billable", "NotBillable", "HasBeenBilled"]] = None
    TaxAmount: Optional[float] = None


class AccountBasedExpenseLine(_Line):
    DetailType: Literal["AccountBasedExpenseLineDetail"]
    AccountBasedExpenseLineDetail: AccountBasedExpenseLineDetail


class ItemBasedExpenseLineDetail(_Detail):
    ItemRef: Optional[ReferenceType] = None
    CustomerRef: Optional[ReferenceType] = None
    ClassRef: Optional[ReferenceType] = None
    TaxCodeRef: Optional[ReferenceType] = None
    Qty: Optional[float] = None
    UnitPrice: Optional[float] = None
    BillableStatus: Optional[Literal["Billable", "NotBillable", "HasBeenBilled"]] = None


class ItemBasedExpenseLine(_Line):
    DetailType: Literal["ItemBasedExpenseLineDetail"]
    ItemBasedExpenseLineDetail: ItemBasedExpenseLineDetail


# -----------------------
# Journal / deposit
# -----------------------
class JournalEntryLineDetail(_Detail):
    PostingType: Literal["Debit", "Credit"]
    AccountRef: ReferenceType
    Entity: Optional[Dict[str, Any]] = None
    ClassRef: Optional[ReferenceType] = None
    DepartmentRef: Optional[ReferenceType] = None
    TaxCodeRef: Optional[ReferenceType] = None


class JournalEntryLine(_Line):
    DetailType: Literal["JournalEntryLineDetail"]
    JournalEntryLineDetail: JournalEntryLineDetail


class DepositLineDetail(_Detail):
    AccountRef: Optional[ReferenceType] = None
    Entity: Optional[ReferenceType] = None
    ClassRef: Optional[ReferenceType] = None
    PaymentMethodRef: Optional[ReferenceType] = None
    CheckNum: Optional[str] = None


class DepositLine(_Line):
    DetailType: Literal["DepositLineDetail"]
    DepositLineDetail: DepositLineDetail


LineItem = Annotated[
    Union[
        SalesItemLine,
        GroupLine,
        DescriptionOnlyLine,
        DiscountLine,
        SubTotalLine,
        AccountBasedExpenseLine,
        ItemBasedExpenseLine,
        JournalEntryLine,
        DepositLine,
    ],
    Field(discriminator="DetailType"),
]

LINE_ADAPTER: TypeAdapter = TypeAdapter(LineItem)

LINE_MODELS: Dict[str, Type[_Line]] = {
    "SalesItemLineDetail": SalesItemLine,
    "GroupLineDetail": GroupLine,
    "DescriptionOnly": DescriptionOnlyLine,
    "DiscountLineDetail": DiscountLine,
    "SubTotalLineDetail": SubTotalLine,
    "AccountBasedExpenseLineDetail": AccountBasedExpenseLine,
    "ItemBasedExpenseLineDetail": ItemBasedExpenseLine,
    "JournalEntryLineDetail": JournalEntryLine,
    "DepositLineDetail": DepositLine,
}

SALES_LINE_TYPES = (
    "SalesItemLineDetail",
    "GroupLineDetail",
    "DescriptionOnly",
    "DiscountLineDetail",
    "SubTotalLineDetail",
)
EXPENSE_LINE_TYPES = ("AccountBasedExpenseLineDetail", "ItemBasedExpenseLineDetail")
JOURNAL_LINE_TYPES = ("JournalEntryLineDetail",)
DEPOSIT_LINE_TYPES = ("DepositLineDetail",)


def serialize_line(line: Union[_Line, Dict[str, Any]]) -> Dict[str, Any]:
    """Wire dict for a line; only the fields that were actually supplied are emitted."""
    if isinstance(line, BaseModel):
        return line.model_dump(exclude_unset=True)
    return dict(line)
