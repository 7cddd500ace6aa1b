from time import sleep

import pytest

from retailbi import config
from retailbi.domain.models import ViewKind
from retailbi.infrastructure.db_factory import build_dsn
from retailbi.registry import RETAILMART_CATALOG, DerivedViewRegistry, default_registry
from retailbi.utils import profiler

SETTINGS_ENV = [
    "DB_HOST",
    "DB_PORT",
    "DB_USER",
    "DB_NAME",
    "ANALYTICS_SCHEMA",
    "REFRESH_TIMEOUT_SECONDS",
    "DQ_RETENTION_DAYS",
    "DQ_MAX_DISCOUNT_PCT",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)


def test_settings_defaults(clean_env):
    settings = config.Settings(_env_file=None)
    assert settings.db_host == "localhost"
    assert settings.db_port == 5432
    assert settings.db_name == "retailmart"
    assert settings.analytics_schema == "analytics"
    assert settings.refresh_timeout_ms == 0
    assert settings.quality_thresholds().retention_days == 7
    assert settings.quality_thresholds().max_discount_pct == 100.0


def test_settings_read_environment(clean_env, monkeypatch):
    monkeypatch.setenv("REFRESH_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("DQ_RETENTION_DAYS", "30")
    monkeypatch.setenv("DQ_MAX_DISCOUNT_PCT", "60")
    settings = config.Settings(_env_file=None)
    assert settings.refresh_timeout_ms == 2500
    assert settings.quality_thresholds().retention_days == 30
    assert settings.quality_thresholds().max_discount_pct == 60.0


def test_build_dsn_uses_settings():
    settings = config.Settings(
        _env_file=None, db_user="bi", db_password="pw", db_host="db", db_port=6543, db_name="mart"
    )
    assert build_dsn(settings) == "postgresql://bi:pw@db:6543/mart"


def test_profile_block_measures_time():
    with profiler.profile_block("sleep") as stats:
        sleep(0.05)
    assert stats.duration_seconds >= 0.05
    info = stats.as_server_info()
    assert info["label"] == "sleep"
    if stats.cpu_percent is not None:
        assert isinstance(info["cpu_percent"], float)


def test_default_catalog_declares_ten_snapshots_across_seven_modules():
    registry = default_registry()
    snapshots = registry.refreshable()
    assert len(snapshots) == 10
    assert all(v.kind is ViewKind.PRECOMPUTED_SNAPSHOT for v in snapshots)
    assert registry.modules() == [
        "sales", "customers", "products", "stores", "operations", "marketing", "alerts",
    ]
    assert snapshots[0].name == "mv_monthly_sales_dashboard"


def test_registry_rejects_duplicate_names():
    with pytest.raises(ValueError):
        DerivedViewRegistry([RETAILMART_CATALOG[0], RETAILMART_CATALOG[0]])


def test_alerts_module_is_on_demand_only():
    registry = default_registry()
    alerts = registry.views_in("alerts")
    assert [v.name for v in alerts] == [
        "vw_alert_critical_stock",
        "vw_alert_high_value_churn",
        "vw_alert_revenue_anomaly",
        "vw_alert_delayed_shipments",
        "vw_alert_high_return_rate",
        "vw_alert_low_stock",
        "vw_all_active_alerts",
    ]
    assert all(v.kind is ViewKind.ON_DEMAND_VIEW for v in alerts)
    assert not any(v.is_refreshable for v in alerts)
