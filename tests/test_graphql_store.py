import json

import httpx
import pytest

from stocksync.config import SyncSettings
from stocksync.errors import RemoteError
from stocksync.models import JobKind
from stocksync.store.base import StagedTarget
from stocksync.store.graphql import ShopifyGraphQLStore

GRAPHQL_URL = "https://example.myshopify.com/admin/api/2025-01/graphql.json"


def _response(url: str, payload: dict | None = None, status_code: int = 200, text: str | None = None) -> httpx.Response:
    request = httpx.Request("POST", url)
    content = text.encode("utf-8") if text is not None else json.dumps(payload or {}).encode("utf-8")
    return httpx.Response(status_code, request=request, content=content)


@pytest.fixture()
def live_store(settings: SyncSettings) -> ShopifyGraphQLStore:
    return ShopifyGraphQLStore(settings)


def test_requires_credentials() -> None:
    with pytest.raises(RuntimeError, match="Missing shop credentials"):
        ShopifyGraphQLStore(SyncSettings(shop_domain="", access_token=""))


def test_graphql_url_uses_api_version(settings: SyncSettings) -> None:
    assert settings.graphql_url == GRAPHQL_URL


def test_retries_on_service_unavailable(live_store: ShopifyGraphQLStore, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {"count": 0}

    def fake_post(url: str, json: dict) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return _response(url, status_code=503, text="unavailable")
        return _response(url, {"data": {"locations": {"edges": [{"node": {"id": "gid://shopify/Location/1", "name": "Main"}}]}}})

    monkeypatch.setattr(live_store.client, "post", fake_post)

    locations = live_store.list_locations()

    assert [location.name for location in locations] == ["Main"]
    assert calls["count"] == 2


def test_retries_throttled_graphql_errors(live_store: ShopifyGraphQLStore, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {"count": 0}

    def fake_post(url: str, json: dict) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return _response(url, {"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]})
        return _response(url, {"data": {"currentBulkOperation": None}})

    monkeypatch.setattr(live_store.client, "post", fake_post)

    assert live_store.current_job(JobKind.READ) is None
    assert calls["count"] == 2


def test_does_not_retry_other_graphql_errors(live_store: ShopifyGraphQLStore, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {"count": 0}

    def fake_post(url: str, json: dict) -> httpx.Response:
        calls["count"] += 1
        return _response(url, {"errors": [{"message": "Field 'bogus' doesn't exist"}]})

    monkeypatch.setattr(live_store.client, "post", fake_post)

    with pytest.raises(RemoteError, match="bogus"):
        live_store.get_job("gid://shopify/BulkOperation/1")
    assert calls["count"] == 1


def test_does_not_retry_client_errors(live_store: ShopifyGraphQLStore, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {"count": 0}

    def fake_post(url: str, json: dict) -> httpx.Response:
        calls["count"] += 1
        return _response(url, status_code=401, text="unauthorized")

    monkeypatch.setattr(live_store.client, "post", fake_post)

    with pytest.raises(httpx.HTTPStatusError):
        live_store.list_locations()
    assert calls["count"] == 1


def test_gives_up_after_max_retries(live_store: ShopifyGraphQLStore, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {"count": 0}

    def fake_post(url: str, json: dict) -> httpx.Response:
        calls["count"] += 1
        raise httpx.ConnectTimeout("timeout", request=httpx.Request("POST", url))

    monkeypatch.setattr(live_store.client, "post", fake_post)

    with pytest.raises(httpx.ConnectTimeout):
        live_store.list_locations()
    assert calls["count"] == 3


def test_list_variants_parses_page(live_store: ShopifyGraphQLStore, monkeypatch: pytest.MonkeyPatch) -> None:
    sent: list[dict] = []

    def fake_post(url: str, json: dict) -> httpx.Response:
        sent.append(json)
        return _response(
            url,
            {
                "data": {
                    "productVariants": {
                        "pageInfo": {"hasNextPage": True, "endCursor": "cursor-2"},
                        "edges": [
                            {
                                "node": {
                                    "sku": "OAK-TBL-S",
                                    "inventoryItem": {
                                        "id": "gid://shopify/InventoryItem/5001",
                                        "inventoryLevels": {
                                            "edges": [
                                                {
                                                    "node": {
                                                        "location": {"id": "gid://shopify/Location/1"},
                                                        "quantities": [{"name": "available", "quantity": 5}],
                                                    }
                                                },
                                                {"node": {"location": {"id": "gid://shopify/Location/2"}, "quantities": []}},
                                            ]
                                        },
                                    },
                                }
                            },
                            {"node": {"sku": "NO-ITEM", "inventoryItem": None}},
                        ],
                    }
                }
            },
        )

    monkeypatch.setattr(live_store.client, "post", fake_post)

    page = live_store.list_variants("cursor-1")

    assert sent[0]["variables"] == {"first": 250, "after": "cursor-1", "levels": 50}
    assert page.has_next_page is True
    assert page.end_cursor == "cursor-2"
    assert len(page.variants) == 1
    assert page.variants[0].inventory_item_id == "gid://shopify/InventoryItem/5001"
    assert page.variants[0].levels == {"gid://shopify/Location/1": 5}


def test_run_query_surfaces_user_errors(live_store: ShopifyGraphQLStore, monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_post(url: str, json: dict) -> httpx.Response:
        return _response(
            url,
            {
                "data": {
                    "bulkOperationRunQuery": {
                        "bulkOperation": None,
                        "userErrors": [
                            {"field": None, "message": "A bulk query operation for this app and shop is already in progress: gid://shopify/BulkOperation/7."}
                        ],
                    }
                }
            },
        )

    monkeypatch.setattr(live_store.client, "post", fake_post)

    result = live_store.run_query("{ products { edges { node { id } } } }")

    assert result.job is None
    assert result.in_progress


def test_get_job_parses_snapshot(live_store: ShopifyGraphQLStore, monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_post(url: str, json: dict) -> httpx.Response:
        return _response(
            url,
            {
                "data": {
                    "node": {
                        "id": "gid://shopify/BulkOperation/7",
                        "status": "COMPLETED",
                        "type": "MUTATION",
                        "errorCode": None,
                        "objectCount": "42",
                        "url": "https://storage.example.com/result.jsonl",
                        "partialDataUrl": None,
                    }
                }
            },
        )

    monkeypatch.setattr(live_store.client, "post", fake_post)

    snapshot = live_store.get_job("gid://shopify/BulkOperation/7")

    assert snapshot.kind == JobKind.WRITE
    assert snapshot.object_count == 42
    assert snapshot.url == "https://storage.example.com/result.jsonl"


def test_cancel_user_errors_raise(live_store: ShopifyGraphQLStore, monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_post(url: str, json: dict) -> httpx.Response:
        return _response(
            url,
            {"data": {"bulkOperationCancel": {"bulkOperation": None, "userErrors": [{"message": "Already completed"}]}}},
        )

    monkeypatch.setattr(live_store.client, "post", fake_post)

    with pytest.raises(RemoteError, match="Already completed"):
        live_store.cancel_job("gid://shopify/BulkOperation/7")


def test_staged_upload_target_keeps_parameters(live_store: ShopifyGraphQLStore, monkeypatch: pytest.MonkeyPatch) -> None:
    sent: list[dict] = []

    def fake_post(url: str, json: dict) -> httpx.Response:
        sent.append(json)
        return _response(
            url,
            {
                "data": {
                    "stagedUploadsCreate": {
                        "stagedTargets": [
                            {
                                "url": "https://storage.example.com/upload",
                                "resourceUrl": None,
                                "parameters": [
                                    {"name": "key", "value": "tmp/1/bulk/updates.jsonl"},
                                    {"name": "policy", "value": "abc"},
                                ],
                            }
                        ],
                        "userErrors": [],
                    }
                }
            },
        )

    monkeypatch.setattr(live_store.client, "post", fake_post)

    target = live_store.create_staged_upload("updates.jsonl", "text/jsonl", "POST", "BULK_MUTATION_VARIABLES")

    assert sent[0]["variables"]["input"][0]["resource"] == "BULK_MUTATION_VARIABLES"
    assert target.key == "tmp/1/bulk/updates.jsonl"
    assert target.parameters[1] == ("policy", "abc")


def test_upload_posts_multipart_without_admin_token(settings: SyncSettings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201)

    store = ShopifyGraphQLStore(settings, transport=httpx.MockTransport(handler))
    target = StagedTarget(
        url="https://storage.example.com/upload",
        resource_url=None,
        parameters=[("key", "tmp/1/bulk/updates.jsonl"), ("policy", "abc")],
    )

    store.upload(target, b'{"input":{}}', "updates.jsonl", "text/jsonl")

    request = seen[0]
    body = request.read()
    assert request.headers["content-type"].startswith("multipart/form-data")
    assert "X-Shopify-Access-Token" not in request.headers
    assert b'name="key"' in body
    assert b"tmp/1/bulk/updates.jsonl" in body
    assert b'filename="updates.jsonl"' in body
    assert body.index(b'name="key"') < body.index(b'name="file"')


def test_fetch_artifact_splits_lines(settings: SyncSettings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text='{"id": "a"}\n\n{"id": "b"}\n')

    store = ShopifyGraphQLStore(settings, transport=httpx.MockTransport(handler))

    assert store.fetch_artifact("https://storage.example.com/result.jsonl") == ['{"id": "a"}', '{"id": "b"}']
