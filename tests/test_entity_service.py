import copy
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import REALM_ID, fault, make_record, token_payload
from qbo_link.errors import (
    ConcurrencyConflictError,
    NotFoundError,
    QuickBooksUnauthorizedError,
    RemoteServiceError,
    TransportError,
    UnknownLineVariantError,
    UnsupportedOperationError,
    ValidationError,
)
from qbo_link.models.quickbooks.entity import EntityState
from qbo_link.models.quickbooks.lines import AccountBasedExpenseLine, SalesItemLine
from qbo_link.services.entity_service import EntityRequestEngine
from qbo_link.services.entity_validation import to_entity_record
from qbo_link.services.quickbooks_service import QuickBooksTransport
from qbo_link.services.token_manager import TokenLifecycleManager

SALES_LINE = {
    "DetailType": "SalesItemLineDetail",
    "Amount": 100.0,
    "SalesItemLineDetail": {"ItemRef": {"value": "1", "name": "Services"}, "Qty": 1.0},
}
EXPENSE_LINE = {
    "DetailType": "AccountBasedExpenseLineDetail",
    "Amount": 200.0,
    "AccountBasedExpenseLineDetail": {"AccountRef": {"value": "7", "name": "Rent"}},
}


def entity_response(entity_type, **fields):
    return httpx.Response(200, json={entity_type: fields, "time": "2026-01-01T04:00:00.000-08:00"})


def invoice_payload(**extra):
    return {"CustomerRef": {"value": "58"}, "Line": [dict(SALES_LINE)], **extra}


class TestCreate:
    @pytest.mark.asyncio
    async def test_missing_required_field_never_reaches_transport(self, settings, connected_store, clock):
        transport = AsyncMock(spec=QuickBooksTransport)
        manager = TokenLifecycleManager(settings, connected_store, transport, clock=clock)
        engine = EntityRequestEngine(settings, manager, transport)

        with pytest.raises(ValidationError) as exc_info:
            await engine.create(REALM_ID, "Invoice", {"Line": [SALES_LINE]})

        assert "CustomerRef is required" in exc_info.value.problems
        transport.request.assert_not_called()
        transport.post_token_endpoint.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_invoice(self, engine, fake_qbo):
        fake_qbo.reply(entity_response("Invoice", Id="130", SyncToken="0", TotalAmt=100.0, **invoice_payload()))

        record = await engine.create(REALM_ID, "invoice", invoice_payload())

        request = fake_qbo.requests[0]
        assert request.method == "POST"
        assert request.url.path == f"/v3/company/{REALM_ID}/invoice"
        assert request.url.host == "sandbox-quickbooks.api.intuit.com"
        assert request.url.params["minorversion"] == "75"
        assert request.url.params["requestid"]
        assert request.headers["Authorization"] == "Bearer access-1"
        assert fake_qbo.body() == invoice_payload()

        assert record.entity_type == "Invoice"
        assert record.state is EntityState.PERSISTED
        assert record.id == "130"
        assert record.sync_token == "0"
        assert isinstance(record.lines[0], SalesItemLine)

    @pytest.mark.asyncio
    async def test_server_assigned_fields_are_rejected(self, engine, fake_qbo):
        with pytest.raises(ValidationError) as exc_info:
            await engine.create(REALM_ID, "Invoice", invoice_payload(Id="5", TotalAmt=10))

        assert "Id is read-only" in exc_info.value.problems
        assert "TotalAmt is read-only" in exc_info.value.problems
        assert fake_qbo.requests == []

    @pytest.mark.asyncio
    async def test_max_length(self, engine, fake_qbo):
        with pytest.raises(ValidationError) as exc_info:
            await engine.create(REALM_ID, "Invoice", invoice_payload(DocNumber="X" * 22))

        assert exc_info.value.problems == ["DocNumber exceeds 21 characters"]
        assert fake_qbo.requests == []

    @pytest.mark.asyncio
    async def test_unknown_line_type(self, engine, fake_qbo):
        payload = invoice_payload()
        payload["Line"].append({"DetailType": "UnknownType", "Amount": 1})

        with pytest.raises(UnknownLineVariantError) as exc_info:
            await engine.create(REALM_ID, "Invoice", payload)

        assert exc_info.value.detail_type == "UnknownType"
        assert fake_qbo.requests == []

    @pytest.mark.asyncio
    async def test_line_from_another_entity_family(self, engine, fake_qbo):
        with pytest.raises(UnknownLineVariantError):
            await engine.create(
                REALM_ID, "Bill", {"VendorRef": {"value": "56"}, "Line": [dict(SALES_LINE)]}
            )
        assert fake_qbo.requests == []

    @pytest.mark.asyncio
    async def test_line_without_detail(self, engine, fake_qbo):
        line = {"DetailType": "SalesItemLineDetail", "Amount": 10}
        with pytest.raises(ValidationError):
            await engine.create(REALM_ID, "Invoice", {"CustomerRef": {"value": "1"}, "Line": [line]})
        assert fake_qbo.requests == []

    @pytest.mark.asyncio
    async def test_unknown_entity_type(self, engine):
        with pytest.raises(UnsupportedOperationError):
            await engine.create(REALM_ID, "Spaceship", {"Name": "x"})

    @pytest.mark.asyncio
    async def test_create_is_not_retried(self, engine, fake_qbo, sleep):
        fake_qbo.reply(httpx.ConnectError("connection reset"))

        with pytest.raises(TransportError):
            await engine.create(REALM_ID, "Customer", {"DisplayName": "Acme"})

        assert len(fake_qbo.requests) == 1
        sleep.assert_not_called()


class TestUpdate:
    @pytest.mark.asyncio
    async def test_sparse_update_with_one_field(self, engine, fake_qbo):
        fake_qbo.reply(entity_response("Customer", Id="1", SyncToken="1", DisplayName="Acme", Notes="vip"))

        record = await engine.update(REALM_ID, "Customer", {"Id": "1", "SyncToken": "0", "sparse": True, "Notes": "vip"})

        request = fake_qbo.requests[0]
        assert request.url.params["operation"] == "update"
        assert fake_qbo.body() == {"Id": "1", "SyncToken": "0", "sparse": True, "Notes": "vip"}
        assert record.sync_token == "1"

    @pytest.mark.asyncio
    async def test_same_payload_without_sparse_fails(self, engine, fake_qbo):
        for payload in (
            {"Id": "1", "SyncToken": "0", "Notes": "vip"},
            {"Id": "1", "SyncToken": "0", "sparse": False, "Notes": "vip"},
        ):
            with pytest.raises(ValidationError) as exc_info:
                await engine.update(REALM_ID, "Customer", payload)
            assert "DisplayName is required" in exc_info.value.problems
        assert fake_qbo.requests == []

    @pytest.mark.asyncio
    async def test_identity_fields_required(self, engine, fake_qbo):
        with pytest.raises(ValidationError) as exc_info:
            await engine.update(REALM_ID, "Customer", {"Id": "1", "Notes": "vip"}, sparse=True)
        assert exc_info.value.problems == ["SyncToken is required"]
        assert fake_qbo.requests == []

    @pytest.mark.asyncio
    async def test_full_update_drops_computed_fields(self, engine, fake_qbo):
        invoice = to_entity_record(
            "Invoice",
            {
                **invoice_payload(),
                "Id": "130",
                "SyncToken": "0",
                "TotalAmt": 100.0,
                "Balance": 100.0,
                "MetaData": {"CreateTime": "2026-01-01T00:00:00-08:00"},
            },
        )
        invoice.data["DueDate"] = "2026-02-01"
        fake_qbo.reply(entity_response("Invoice", Id="130", SyncToken="1", DueDate="2026-02-01", **invoice_payload()))

        updated = await engine.update(REALM_ID, "Invoice", invoice)

        body = fake_qbo.body()
        assert body["sparse"] is False
        assert body["DueDate"] == "2026-02-01"
        assert body["Line"] == [SALES_LINE]
        for dropped in ("TotalAmt", "Balance", "MetaData"):
            assert dropped not in body
        assert updated.sync_token == "1"

    @pytest.mark.asyncio
    async def test_stale_sync_token_conflict(self, engine, fake_qbo):
        server_bill = {"Id": "42", "SyncToken": "3", "VendorRef": {"value": "56"}, "Line": [EXPENSE_LINE]}
        before = copy.deepcopy(server_bill)

        def apply_update(request):
            body = json.loads(request.content)
            if body["SyncToken"] != server_bill["SyncToken"]:
                return fault("5010", "Stale Object Error : You and root were working on this at the same time.")
            server_bill.update(body, SyncToken=str(int(server_bill["SyncToken"]) + 1))
            return entity_response("Bill", **server_bill)

        fake_qbo.reply(apply_update)
        bill = to_entity_record("Bill", {**before, "SyncToken": "2"})

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            await engine.update(REALM_ID, "Bill", bill)

        assert exc_info.value.fault_errors[0]["code"] == "5010"
        assert server_bill == before
        assert bill.state is EntityState.STALE
        assert bill.sync_token == "2"
        assert isinstance(bill.lines[0], AccountBasedExpenseLine)

    @pytest.mark.asyncio
    async def test_stale_record_is_refused_until_reread(self, engine, fake_qbo):
        bill = to_entity_record("Bill", {"Id": "42", "SyncToken": "2", "VendorRef": {"value": "56"}, "Line": [EXPENSE_LINE]})
        bill.state = EntityState.STALE

        with pytest.raises(ValidationError):
            await engine.update(REALM_ID, "Bill", bill)
        assert fake_qbo.requests == []

    @pytest.mark.asyncio
    async def test_update_not_supported(self, engine, fake_qbo):
        with pytest.raises(UnsupportedOperationError):
            await engine.update(REALM_ID, "TaxCode", {"Id": "1", "SyncToken": "0"}, sparse=True)
        assert fake_qbo.requests == []


class TestReadDeleteVoid:
    @pytest.mark.asyncio
    async def test_read(self, engine, fake_qbo):
        fake_qbo.reply(entity_response("Customer", Id="1", SyncToken="4", DisplayName="Acme"))

        record = await engine.read(REALM_ID, "Customer", "1")

        request = fake_qbo.requests[0]
        assert request.method == "GET"
        assert request.url.path == f"/v3/company/{REALM_ID}/customer/1"
        assert request.headers["Accept"] == "application/json"
        assert "requestid" not in request.url.params
        assert record.get("DisplayName") == "Acme"

    @pytest.mark.asyncio
    async def test_read_company_info_uses_realm(self, engine, fake_qbo):
        fake_qbo.reply(entity_response("CompanyInfo", Id="1", SyncToken="0", CompanyName="Sandbox Co"))

        record = await engine.read(REALM_ID, "CompanyInfo")

        assert fake_qbo.requests[0].url.path == f"/v3/company/{REALM_ID}/companyinfo/{REALM_ID}"
        assert record.get("CompanyName") == "Sandbox Co"

    @pytest.mark.asyncio
    async def test_read_preferences(self, engine, fake_qbo):
        fake_qbo.reply(entity_response("Preferences", Id="1", SyncToken="0"))

        await engine.read(REALM_ID, "Preferences")

        assert fake_qbo.requests[0].url.path == f"/v3/company/{REALM_ID}/preferences"

    @pytest.mark.asyncio
    async def test_read_requires_id(self, engine):
        with pytest.raises(ValidationError):
            await engine.read(REALM_ID, "Customer")

    @pytest.mark.asyncio
    async def test_not_found_fault(self, engine, fake_qbo):
        fake_qbo.reply(fault("610", "Object Not Found"))

        with pytest.raises(NotFoundError):
            await engine.read(REALM_ID, "Invoice", "999")

    @pytest.mark.asyncio
    async def test_other_faults_keep_payload(self, engine, fake_qbo):
        fake_qbo.reply(fault("2020", "Required param missing"))

        with pytest.raises(RemoteServiceError) as exc_info:
            await engine.read(REALM_ID, "Invoice", "1")

        assert type(exc_info.value) is RemoteServiceError
        assert exc_info.value.status_code == 400
        assert exc_info.value.payload["Fault"]["Error"][0]["code"] == "2020"

    @pytest.mark.asyncio
    async def test_delete(self, engine, fake_qbo):
        fake_qbo.reply(entity_response("Invoice", Id="130", status="Deleted", domain="QBO"))

        record = await engine.delete(REALM_ID, "Invoice", "130", "1")

        request = fake_qbo.requests[0]
        assert request.url.params["operation"] == "delete"
        assert fake_qbo.body() == {"Id": "130", "SyncToken": "1"}
        assert record.get("status") == "Deleted"

    @pytest.mark.asyncio
    async def test_delete_not_supported_for_accounts(self, engine, fake_qbo):
        with pytest.raises(UnsupportedOperationError) as exc_info:
            await engine.delete(REALM_ID, "Account", "1", "0")
        assert exc_info.value.operation == "delete"
        assert fake_qbo.requests == []

    @pytest.mark.asyncio
    async def test_void_invoice(self, engine, fake_qbo):
        fake_qbo.reply(entity_response("Invoice", Id="130", SyncToken="2", PrivateNote="Voided"))

        await engine.void(REALM_ID, "Invoice", "130", "1")

        assert fake_qbo.requests[0].url.params["operation"] == "void"
        assert fake_qbo.body() == {"Id": "130", "SyncToken": "1"}

    @pytest.mark.asyncio
    async def test_void_payment_is_sparse_update(self, engine, fake_qbo):
        fake_qbo.reply(entity_response("Payment", Id="9", SyncToken="3", TotalAmt=0))

        await engine.void(REALM_ID, "Payment", "9", "2")

        params = fake_qbo.requests[0].url.params
        assert params["operation"] == "update"
        assert params["include"] == "void"
        assert fake_qbo.body() == {"Id": "9", "SyncToken": "2", "sparse": True}


class TestRetriesAndAuthorization:
    @pytest.mark.asyncio
    async def test_read_is_retried_with_backoff(self, engine, fake_qbo, sleep):
        fake_qbo.reply(
            httpx.ConnectError("connection reset"),
            entity_response("Customer", Id="1", SyncToken="0", DisplayName="Acme"),
        )

        record = await engine.read(REALM_ID, "Customer", "1")

        assert record.id == "1"
        assert len(fake_qbo.requests) == 2
        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_read_retries_are_bounded(self, engine, fake_qbo, sleep):
        fake_qbo.reply(*(httpx.ReadTimeout("timed out") for _ in range(3)))

        with pytest.raises(TransportError):
            await engine.read(REALM_ID, "Customer", "1")

        assert len(fake_qbo.requests) == 3
        assert [call.args[0] for call in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_update_is_not_retried(self, engine, fake_qbo, sleep):
        fake_qbo.reply(httpx.ReadTimeout("timed out"))

        with pytest.raises(TransportError):
            await engine.update(REALM_ID, "Customer", {"Id": "1", "SyncToken": "0", "Notes": "x"}, sparse=True)

        assert len(fake_qbo.requests) == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_401_refreshes_once_and_replays(self, engine, fake_qbo, connected_store):
        fake_qbo.reply(
            httpx.Response(401, json={"Fault": {"Error": [{"code": "3200"}], "type": "AUTHENTICATION"}}),
            httpx.Response(200, json=token_payload()),
            entity_response("Customer", Id="1", SyncToken="1", DisplayName="Acme"),
        )

        record = await engine.create(REALM_ID, "Customer", {"DisplayName": "Acme"})

        first, refresh, replay = fake_qbo.requests
        assert first.headers["Authorization"] == "Bearer access-1"
        assert refresh.url.path == "/oauth2/v1/tokens/bearer"
        assert replay.headers["Authorization"] == "Bearer access-2"
        assert replay.url.params["requestid"] == first.url.params["requestid"]
        assert len(connected_store.saves) == 1
        assert record.id == "1"

    @pytest.mark.asyncio
    async def test_401_reuses_token_rotated_by_another_request(self, engine, fake_qbo, connected_store, clock):
        def rejected_while_rotated(request):
            connected_store._records[REALM_ID] = make_record(clock.now, access_token="access-9")
            return httpx.Response(401, json={})

        fake_qbo.reply(rejected_while_rotated, entity_response("Customer", Id="1", SyncToken="0"))

        record = await engine.read(REALM_ID, "Customer", "1")

        first, replay = fake_qbo.requests
        assert first.headers["Authorization"] == "Bearer access-1"
        assert replay.headers["Authorization"] == "Bearer access-9"
        assert connected_store.saves == []
        assert record.id == "1"

    @pytest.mark.asyncio
    async def test_second_401_is_raised(self, engine, fake_qbo):
        fake_qbo.reply(
            httpx.Response(401, json={}),
            httpx.Response(200, json=token_payload()),
            httpx.Response(401, json={}),
        )

        with pytest.raises(QuickBooksUnauthorizedError):
            await engine.read(REALM_ID, "Customer", "1")
        assert len(fake_qbo.requests) == 3

    @pytest.mark.asyncio
    async def test_403_is_not_replayed(self, engine, fake_qbo, connected_store):
        fake_qbo.reply(httpx.Response(403, json={"Fault": {"Error": [{"code": "3100"}]}}))

        with pytest.raises(QuickBooksUnauthorizedError) as exc_info:
            await engine.read(REALM_ID, "Customer", "1")

        assert exc_info.value.status_code == 403
        assert len(fake_qbo.requests) == 1
        assert connected_store.saves == []


class TestQuery:
    @pytest.mark.asyncio
    async def test_where_string_is_passed_through(self, engine, fake_qbo):
        fake_qbo.reply(
            httpx.Response(
                200,
                json={
                    "QueryResponse": {
                        "Customer": [{"Id": "1", "DisplayName": "Acme"}, {"Id": "2", "DisplayName": "Beta"}],
                        "startPosition": 1,
                        "maxResults": 2,
                    }
                },
            )
        )

        result = await engine.query(REALM_ID, "Customer", "Active = true")

        request = fake_qbo.requests[0]
        assert request.url.path == f"/v3/company/{REALM_ID}/query"
        assert request.url.params["query"] == "select * from Customer where Active = true startposition 1 maxresults 100"
        assert result.entity_type == "Customer"
        assert [record.id for record in result.records] == ["1", "2"]
        assert result.start_position == 1
        assert result.max_results == 2

    @pytest.mark.asyncio
    async def test_empty_result(self, engine, fake_qbo):
        fake_qbo.reply(httpx.Response(200, json={"QueryResponse": {}}))

        result = await engine.query(REALM_ID, "Invoice", {"DocNumber": "1001"}, limit=5, offset=10)

        assert fake_qbo.requests[0].url.params["query"] == (
            "select * from Invoice where DocNumber = '1001' startposition 11 maxresults 5"
        )
        assert result.records == []

    @pytest.mark.asyncio
    async def test_fetch_all_pages_until_short_page(self, engine, fake_qbo):
        full_page = [{"Id": str(i), "Name": f"Item {i}", "Type": "Service"} for i in range(1000)]
        short_page = [{"Id": str(i), "Name": f"Item {i}", "Type": "Service"} for i in range(1000, 1003)]
        fake_qbo.reply(
            httpx.Response(200, json={"QueryResponse": {"Item": full_page}}),
            httpx.Response(200, json={"QueryResponse": {"Item": short_page}}),
        )

        result = await engine.query(REALM_ID, "Item", fetch_all=True)

        statements = [request.url.params["query"] for request in fake_qbo.requests]
        assert statements == [
            "select * from Item startposition 1 maxresults 1000",
            "select * from Item startposition 1001 maxresults 1000",
        ]
        assert len(result.records) == 1003

    @pytest.mark.asyncio
    async def test_query_lines_are_typed(self, engine, fake_qbo):
        fake_qbo.reply(
            httpx.Response(200, json={"QueryResponse": {"Invoice": [{"Id": "1", "SyncToken": "0", **invoice_payload()}]}})
        )

        result = await engine.query(REALM_ID, "Invoice")

        assert isinstance(result.records[0].lines[0], SalesItemLine)

    @pytest.mark.asyncio
    async def test_bad_operator(self, engine, fake_qbo):
        with pytest.raises(ValidationError):
            await engine.query(REALM_ID, "Invoice", [("TotalAmt", "BETWEEN", 5)])
        assert fake_qbo.requests == []

    @pytest.mark.asyncio
    async def test_count(self, engine, fake_qbo):
        fake_qbo.reply(httpx.Response(200, json={"QueryResponse": {"totalCount": 42}}))

        total = await engine.count(REALM_ID, "Invoice", {"Balance": 0})

        assert fake_qbo.requests[0].url.params["query"] == "select count(*) from Invoice where Balance = '0'"
        assert total == 42


class TestDocumentsReportsBatch:
    @pytest.mark.asyncio
    async def test_send(self, engine, fake_qbo):
        fake_qbo.reply(entity_response("Invoice", Id="130", SyncToken="1", EmailStatus="EmailSent"))

        record = await engine.send(REALM_ID, "Invoice", "130", send_to="billing@example.com")

        request = fake_qbo.requests[0]
        assert request.method == "POST"
        assert request.url.path == f"/v3/company/{REALM_ID}/invoice/130/send"
        assert request.url.params["sendTo"] == "billing@example.com"
        assert request.headers["Content-Type"] == "application/octet-stream"
        assert record.get("EmailStatus") == "EmailSent"

    @pytest.mark.asyncio
    async def test_send_not_supported(self, engine, fake_qbo):
        with pytest.raises(UnsupportedOperationError):
            await engine.send(REALM_ID, "Customer", "1")
        assert fake_qbo.requests == []

    @pytest.mark.asyncio
    async def test_pdf(self, engine, fake_qbo):
        fake_qbo.reply(httpx.Response(200, content=b"%PDF-1.4 test", headers={"Content-Type": "application/pdf"}))

        content = await engine.get_pdf(REALM_ID, "Estimate", "7")

        request = fake_qbo.requests[0]
        assert request.url.path == f"/v3/company/{REALM_ID}/estimate/7/pdf"
        assert request.headers["Accept"] == "application/pdf"
        assert content == b"%PDF-1.4 test"

    @pytest.mark.asyncio
    async def test_report(self, engine, fake_qbo):
        report = {"Header": {"ReportName": "ProfitAndLoss"}, "Rows": {"Row": []}}
        fake_qbo.reply(httpx.Response(200, json=report))

        result = await engine.report(REALM_ID, "ProfitAndLoss", {"start_date": "2026-01-01", "end_date": "2026-01-31"})

        request = fake_qbo.requests[0]
        assert request.url.path == f"/v3/company/{REALM_ID}/reports/ProfitAndLoss"
        assert request.url.params["start_date"] == "2026-01-01"
        assert result == report

    @pytest.mark.asyncio
    async def test_change_data_capture(self, engine, fake_qbo):
        fake_qbo.reply(
            httpx.Response(
                200,
                json={
                    "CDCResponse": [
                        {
                            "QueryResponse": [
                                {"Customer": [{"Id": "1", "DisplayName": "Acme"}]},
                                {"Invoice": [{"Id": "7", "status": "Deleted"}]},
                            ]
                        }
                    ]
                },
            )
        )

        changes = await engine.change_data_capture(REALM_ID, ["customer", "Invoice"], "2026-01-01T00:00:00Z")

        params = fake_qbo.requests[0].url.params
        assert params["entities"] == "Customer,Invoice"
        assert params["changedSince"] == "2026-01-01T00:00:00Z"
        assert [record.id for record in changes["Customer"]] == ["1"]
        assert changes["Invoice"][0].get("status") == "Deleted"

    @pytest.mark.asyncio
    async def test_batch(self, engine, fake_qbo):
        items = [{"bId": "b1", "operation": "create", "Customer": {"DisplayName": "Acme"}}]
        fake_qbo.reply(httpx.Response(200, json={"BatchItemResponse": [{"bId": "b1", "Customer": {"Id": "1"}}]}))

        responses = await engine.batch(REALM_ID, items)

        assert fake_qbo.requests[0].url.path == f"/v3/company/{REALM_ID}/batch"
        assert fake_qbo.body() == {"BatchItemRequest": items}
        assert responses[0]["bId"] == "b1"

    @pytest.mark.asyncio
    async def test_batch_accepts_thirty_items(self, engine, fake_qbo):
        items = [{"bId": str(i), "operation": "query", "Query": "select * from Customer"} for i in range(30)]
        fake_qbo.reply(httpx.Response(200, json={"BatchItemResponse": []}))

        await engine.batch(REALM_ID, items)

        assert len(fake_qbo.body()["BatchItemRequest"]) == 30

    @pytest.mark.asyncio
    async def test_batch_limit(self, engine, fake_qbo):
        items = [{"bId": str(i), "operation": "query", "Query": "select * from Customer"} for i in range(31)]

        with pytest.raises(ValidationError):
            await engine.batch(REALM_ID, items)
        assert fake_qbo.requests == []


class TestUpload:
    @staticmethod
    def upload_response(**fields):
        attachable = {"Id": "5000", "SyncToken": "0", "FileName": "receipt.pdf", **fields}
        return httpx.Response(200, json={"AttachableResponse": [{"Attachable": attachable}]})

    @pytest.mark.asyncio
    async def test_upload_sends_multipart_file(self, engine, fake_qbo):
        fake_qbo.reply(self.upload_response())

        record = await engine.upload(REALM_ID, "receipt.pdf", "application/pdf", b"%PDF-1.4 body")

        request = fake_qbo.requests[0]
        assert request.method == "POST"
        assert request.url.path == f"/v3/company/{REALM_ID}/upload"
        assert request.url.params["requestid"]
        assert request.headers["Authorization"] == "Bearer access-1"
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        assert b'name="file_content_01"' in request.content
        assert b'filename="receipt.pdf"' in request.content
        assert b"%PDF-1.4 body" in request.content
        assert record.entity_type == "Attachable"
        assert record.id == "5000"
        assert len(fake_qbo.requests) == 1

    @pytest.mark.asyncio
    async def test_upload_links_to_entity(self, engine, fake_qbo):
        fake_qbo.reply(
            self.upload_response(),
            entity_response(
                "Attachable",
                Id="5000",
                SyncToken="1",
                AttachableRef=[{"EntityRef": {"type": "Invoice", "value": "130"}}],
            ),
        )

        record = await engine.upload(REALM_ID, "receipt.pdf", "application/pdf", b"data", "invoice", "130")

        link = fake_qbo.requests[1]
        assert link.url.path == f"/v3/company/{REALM_ID}/attachable"
        assert link.url.params["operation"] == "update"
        assert fake_qbo.body() == {
            "Id": "5000",
            "SyncToken": "0",
            "sparse": True,
            "AttachableRef": [{"EntityRef": {"type": "Invoice", "value": "130"}}],
        }
        assert record.sync_token == "1"

    @pytest.mark.asyncio
    async def test_upload_fault(self, engine, fake_qbo):
        fake_qbo.reply(
            httpx.Response(
                200,
                json={"AttachableResponse": [{"Fault": {"Error": [{"Message": "bad file", "code": "6000"}]}}]},
            )
        )

        with pytest.raises(RemoteServiceError) as exc_info:
            await engine.upload(REALM_ID, "virus.exe", "application/octet-stream", b"MZ")

        assert exc_info.value.fault_errors[0]["code"] == "6000"

    @pytest.mark.asyncio
    async def test_link_requires_entity_id(self, engine, fake_qbo):
        with pytest.raises(ValidationError):
            await engine.upload(REALM_ID, "receipt.pdf", "application/pdf", b"data", "Invoice")
        assert fake_qbo.requests == []
