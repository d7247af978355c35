from catalog_sync.settings import SyncSettings


def test_from_env(monkeypatch):
    monkeypatch.setenv("SHOPIFY_STORE_DOMAIN", "https://acme.myshopify.com/")
    monkeypatch.setenv("SHOPIFY_ACCESS_TOKEN", "shpat_x")
    monkeypatch.setenv("APP_ENV", "Production")
    monkeypatch.setenv("SYNC_PREPACK_CATEGORY_IDS", "12, 34")
    monkeypatch.setenv("SYNC_EXCLUDED_TAGS", "GROUP")
    monkeypatch.setenv("SYNC_CHECK_PLATFORM", "false")
    monkeypatch.setenv("SYNC_BACKUP_SKUS", "0")

    settings = SyncSettings.from_env()

    assert settings.shopify_configured
    assert settings.is_production
    assert settings.graphql_url == "https://acme.myshopify.com/admin/api/2024-01/graphql.json"
    assert settings.prepack_category_ids == (12, 34)
    assert settings.excluded_tags == ("GROUP",)
    assert settings.check_platform is False
    assert settings.backup_skus is False


def test_defaults(monkeypatch):
    for name in ("SHOPIFY_STORE_DOMAIN", "SHOPIFY_ACCESS_TOKEN", "APP_ENV", "SYNC_MAX_WAIT"):
        monkeypatch.delenv(name, raising=False)
    settings = SyncSettings.from_env()
    assert not settings.shopify_configured
    assert not settings.is_production
    assert settings.max_wait == 300
    assert settings.default_display_priority == 10000
