import json
from datetime import timedelta
from pathlib import Path

import httpx
import pytest
import respx
from sqlalchemy import create_engine, update
from sqlalchemy.pool import StaticPool

from catalog_sync.db.tables import metadata, pp_sizes, sku_categories, sync_runs
from catalog_sync.ingest import load_reference_seed
from catalog_sync.ingest.reference import ReferenceData
from catalog_sync.settings import SyncSettings
from catalog_sync.utils.dates import utc_now


@pytest.fixture()
def engine():
    # One shared connection so executor threads see the same in-memory database.
    engine = create_engine(
        "sqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def settings():
    return SyncSettings(
        store_domain="test-store.myshopify.com",
        access_token="shpat_test",
        poll_interval=0,
        max_wait=5,
        check_platform=False,
    )


@pytest.fixture()
def reference():
    categories, sizes = load_reference_seed()
    return ReferenceData.build(categories, sizes)


@pytest.fixture()
def seeded_engine(engine):
    categories, sizes = load_reference_seed()
    with engine.begin() as conn:
        conn.execute(
            sku_categories.insert(),
            [{"id": c.id, "name": c.name, "is_preorder": c.is_preorder} for c in categories],
        )
        conn.execute(pp_sizes.insert(), [{"size": size, "corresponding_pp": label} for size, label in sizes.items()])
    return engine


@pytest.fixture()
def backdate_run(engine):
    def backdate(run_id, minutes):
        with engine.begin() as conn:
            conn.execute(
                update(sync_runs)
                .where(sync_runs.c.id == run_id)
                .values(started_at=utc_now() - timedelta(minutes=minutes))
            )

    return backdate


RESULT_URL = "https://storage.googleapis.com/shopify-tiers-assets-prod-us-east1/bulk/result.jsonl"
FIXTURES = Path(__file__).parent / "fixtures" / "http"


class FakeShopify:
    """Scripted Admin GraphQL endpoint for respx."""

    def __init__(self) -> None:
        self.job_id = "gid://shopify/BulkOperation/720"
        self.submit_errors: list[dict] = []
        self.polls: list = [{"status": "COMPLETED", "objectCount": "7", "url": RESULT_URL}]
        self.current: dict | None = None
        self.result_body = (FIXTURES / "shopify" / "bulk_result.jsonl").read_text()
        self.result_status = 200
        self.queries: list[str] = []

    def graphql(self, request: httpx.Request) -> httpx.Response:
        query = json.loads(request.content)["query"]
        self.queries.append(query)
        if "bulkOperationRunQuery" in query:
            operation = None if self.submit_errors else {"id": self.job_id, "status": "CREATED"}
            return httpx.Response(
                200,
                json={"data": {"bulkOperationRunQuery": {"bulkOperation": operation, "userErrors": self.submit_errors}}},
            )
        if "bulkOperationCancel" in query:
            return httpx.Response(
                200,
                json={"data": {"bulkOperationCancel": {"bulkOperation": {"id": self.job_id, "status": "CANCELING"}, "userErrors": []}}},
            )
        if "currentBulkOperation" in query:
            return httpx.Response(200, json={"data": {"currentBulkOperation": self.current}})
        poll = self.polls.pop(0) if len(self.polls) > 1 else self.polls[0]
        if isinstance(poll, httpx.Response):
            return poll
        return httpx.Response(200, json={"data": {"node": {"id": self.job_id, **poll}}})

    def download(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(self.result_status, text=self.result_body)

    def count(self, marker: str) -> int:
        return sum(marker in query for query in self.queries)


@pytest.fixture()
def shopify(settings):
    fake = FakeShopify()
    with respx.mock(assert_all_called=False) as router:
        router.post(settings.graphql_url).mock(side_effect=fake.graphql)
        router.get(RESULT_URL).mock(side_effect=fake.download)
        yield fake
