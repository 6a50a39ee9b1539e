try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from typing import Any, List, Optional

import pytest

from app.clients.cache_store import InMemoryCacheStore
from app.clients.erp_partners import ErpPartnerClient
from app.core.config import ErpSettings, SyncSettings
from app.schemas import PartnerSaveRequest


def _envelope(*rows: tuple) -> dict:
    return {
        "status": "1",
        "responseBody": {
            "entities": {
                "total": str(len(rows)),
                "metadata": {"fields": {"field": [{"name": "CODPARC"}, {"name": "NOMEPARC"}]}},
                "entity": [
                    {"f0": {"$": code}, "f1": {"$": name}} for code, name in rows
                ],
            }
        },
    }


class FakeExecutor:
    def __init__(self, responses: Optional[List[Any]] = None) -> None:
        self.responses = list(responses or [])
        self.calls: List[dict] = []

    async def execute(self, url, method="POST", body=None, *, tenant_id=None):
        self.calls.append({"url": url, "method": method, "body": body, "tenant_id": tenant_id})
        return self.responses.pop(0) if self.responses else {"status": "1"}


def _client(executor: FakeExecutor, cache: InMemoryCacheStore | None = None) -> ErpPartnerClient:
    return ErpPartnerClient(
        executor=executor,
        cache=cache or InMemoryCacheStore(),
        erp_settings=ErpSettings(ERP_BASE_URL="https://erp.example.com"),
        sync_settings=SyncSettings(),
    )


def _criteria(call: dict) -> str:
    return call["body"]["requestBody"]["dataSet"]["criteria"]["expression"]["$"]


@pytest.mark.asyncio
async def test_fetch_all_partners_decodes_the_full_collection() -> None:
    executor = FakeExecutor([_envelope(("1", "ACME"), ("2", "BETA"))])

    partners = await _client(executor).fetch_all_partners(4)

    assert partners == [
        {"CODPARC": "1", "NOMEPARC": "ACME"},
        {"CODPARC": "2", "NOMEPARC": "BETA"},
    ]
    call = executor.calls[0]
    assert call["tenant_id"] == 4
    assert "CRUDServiceProvider.loadRecords" in call["url"]
    data_set = call["body"]["requestBody"]["dataSet"]
    assert data_set["rootEntity"] == "Parceiro"
    assert data_set["disableRowsLimit"] is True
    assert "criteria" not in data_set


@pytest.mark.asyncio
async def test_fetch_all_partners_handles_empty_response() -> None:
    executor = FakeExecutor([{"status": "1", "responseBody": {"entities": {"total": "0"}}}])

    assert await _client(executor).fetch_all_partners(1) == []


@pytest.mark.asyncio
async def test_search_builds_filters_and_paginates_locally() -> None:
    rows = [(str(code), f"CLIENTE {code}") for code in range(1, 8)]
    executor = FakeExecutor([_envelope(*rows)])

    page = await _client(executor).search_partners(
        page=2, page_size=3, name="d'avila", seller_ids=[5, 9]
    )

    assert page.total == 7
    assert page.total_pages == 3
    assert [partner["CODPARC"] for partner in page.partners] == ["4", "5", "6"]
    assert page.partners[0]["_id"] == "4"
    criteria = _criteria(executor.calls[0])
    assert criteria.startswith("CLIENTE = 'S'")
    assert "NOMEPARC LIKE '%D''AVILA%'" in criteria
    assert "CODVEND IN (5,9)" in criteria


@pytest.mark.asyncio
async def test_search_by_code_and_single_seller() -> None:
    executor = FakeExecutor([_envelope(("42", "ACME"))])

    await _client(executor).search_partners(code=" 42 ", seller_id=7)

    criteria = _criteria(executor.calls[0])
    assert "CODPARC = 42" in criteria
    assert "CODVEND = 7" in criteria


@pytest.mark.asyncio
async def test_search_rejects_non_numeric_code() -> None:
    executor = FakeExecutor()

    with pytest.raises(ValueError):
        await _client(executor).search_partners(code="42 OR 1=1")
    assert executor.calls == []


@pytest.mark.asyncio
async def test_search_results_are_cached_until_a_save() -> None:
    cache = InMemoryCacheStore()
    executor = FakeExecutor([_envelope(("1", "ACME")), {"status": "1"}, _envelope(("1", "ACME"))])
    client = _client(executor, cache)

    first = await client.search_partners(name="acme")
    second = await client.search_partners(name="acme")
    assert first == second
    assert len(executor.calls) == 1

    await client.save_partner(
        PartnerSaveRequest(
            CODPARC="1", NOMEPARC="ACME", CGC_CPF="123", CODCID="10", TIPPESSOA="J"
        )
    )
    await client.search_partners(name="acme")

    assert len(executor.calls) == 3


@pytest.mark.asyncio
async def test_save_update_sends_pk_and_blank_optional_fields() -> None:
    executor = FakeExecutor()

    await _client(executor).save_partner(
        PartnerSaveRequest(
            CODPARC="77",
            NOMEPARC="ACME LTDA",
            CGC_CPF="12345678000199",
            CODCID="4205",
            TIPPESSOA="J",
            CODVEND=12,
        ),
        tenant_id=2,
    )

    call = executor.calls[0]
    assert "DatasetSP.save" in call["url"]
    assert call["tenant_id"] == 2
    body = call["body"]["requestBody"]
    assert body["entityName"] == "Parceiro"
    assert body["fields"][0] == "CODPARC"
    record = body["records"][0]
    assert record["pk"] == {"CODPARC": "77"}
    values = {body["fields"][int(position)]: value for position, value in record["values"].items()}
    assert values["NOMEPARC"] == "ACME LTDA"
    assert values["ATIVO"] == "S"
    assert values["CODVEND"] == 12
    assert values["COMPLEMENTO"] == ""
    assert "CODPARC" not in values


@pytest.mark.asyncio
async def test_save_without_code_creates_partner() -> None:
    executor = FakeExecutor()

    await _client(executor).save_partner(
        PartnerSaveRequest(NOMEPARC="NOVO", CGC_CPF="123", CODCID="1", TIPPESSOA="F")
    )

    assert "pk" not in executor.calls[0]["body"]["requestBody"]["records"][0]
