"""
Derived-view registry.

Declares the known derived views of the analytics schema together with their
catalog documentation. Declaration order is significant: within a module and
across the whole catalog, views are listed so that a view is declared after
the views it reads from (the sales snapshots come before the customer
snapshots that aggregate them). `refresh_all` and `refresh_module` preserve
that order.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Iterable, List

from retailbi.domain.models import DerivedViewDescriptor, RefreshCadence, ViewKind
from retailbi.errors import UnknownViewError
from retailbi.store.abstract import MetadataStore
from retailbi.utils.logging import get_logger

log = get_logger(__name__)


class DerivedViewRegistry:
    """
    Static, ordered catalog of derived views.

    Parameters
    ----------
    views : iterable[DerivedViewDescriptor]
        Views in dependency order. Names must be unique.
    """

    def __init__(self, views: Iterable[DerivedViewDescriptor]) -> None:
        self._views: "OrderedDict[str, DerivedViewDescriptor]" = OrderedDict()
        for view in views:
            if view.name in self._views:
                raise ValueError(f"View '{view.name}' declared twice")
            self._views[view.name] = view

    def __contains__(self, name: object) -> bool:
        return name in self._views

    def __len__(self) -> int:
        return len(self._views)

    def all(self) -> List[DerivedViewDescriptor]:
        return list(self._views.values())

    def get(self, name: str) -> DerivedViewDescriptor:
        try:
            return self._views[name]
        except KeyError:
            raise UnknownViewError(name) from None

    def modules(self) -> List[str]:
        """Module names in first-declared order."""
        return list(OrderedDict.fromkeys(v.category for v in self._views.values()))

    def views_in(self, category: str) -> List[DerivedViewDescriptor]:
        """
        Views of one module in declared order.

        Raises
        ------
        UnknownViewError
            If no view is declared for `category`.
        """
        wanted = category.strip().lower()
        views = [v for v in self._views.values() if v.category.lower() == wanted]
        if not views:
            raise UnknownViewError(category, kind="module")
        return views

    def refreshable(self) -> List[DerivedViewDescriptor]:
        """Precomputed snapshots in declared order."""
        return [v for v in self._views.values() if v.is_refreshable]

    def sync(self, store: MetadataStore) -> int:
        """
        Register every declared view in `store`. Safe to repeat.
        """
        for view in self._views.values():
            store.register_view(view)
        log.info(
            f"[REGISTRY] {len(self._views)} views registered",
            extra={"views": len(self._views)},
        )
        return len(self._views)


def _snapshot(name: str, category: str, cadence: RefreshCadence, title: str, description: str,
              question: str) -> DerivedViewDescriptor:
    return DerivedViewDescriptor(
        name=name,
        category=category,
        kind=ViewKind.PRECOMPUTED_SNAPSHOT,
        refresh_cadence=cadence,
        title=title,
        description=description,
        business_question=question,
    )


def _view(name: str, category: str, title: str, description: str, question: str) -> DerivedViewDescriptor:
    return DerivedViewDescriptor(
        name=name,
        category=category,
        kind=ViewKind.ON_DEMAND_VIEW,
        refresh_cadence=RefreshCadence.REALTIME,
        title=title,
        description=description,
        business_question=question,
    )


RETAILMART_CATALOG: List[DerivedViewDescriptor] = [
    # Sales
    _snapshot("mv_monthly_sales_dashboard", "sales", RefreshCadence.DAILY,
              "Monthly Sales Dashboard", "Monthly trends with MoM/YoY growth",
              "How are monthly sales trending?"),
    _snapshot("mv_executive_summary", "sales", RefreshCadence.HOURLY,
              "Executive Summary", "Top-level KPIs for executive view",
              "What are our key numbers right now?"),
    _view("vw_daily_sales_summary", "sales", "Daily Sales Summary",
          "Daily aggregated sales metrics", "How much did we sell each day?"),
    _view("vw_sales_by_dayofweek", "sales", "Sales by Day of Week",
          "Performance breakdown by weekday", "Which days perform best?"),
    _view("vw_sales_by_payment_mode", "sales", "Payment Mode Analysis",
          "Revenue by payment method", "How do customers prefer to pay?"),
    _view("vw_quarterly_sales", "sales", "Quarterly Sales",
          "Quarterly performance with QoQ growth", "How did each quarter perform?"),
    # Customers
    _snapshot("mv_customer_lifetime_value", "customers", RefreshCadence.DAILY,
              "Customer Lifetime Value", "CLV with tier classification",
              "How valuable is each customer?"),
    _snapshot("mv_rfm_analysis", "customers", RefreshCadence.WEEKLY,
              "RFM Analysis", "RFM segmentation for targeting",
              "How should we segment customers?"),
    _snapshot("mv_cohort_retention", "customers", RefreshCadence.WEEKLY,
              "Cohort Retention", "Monthly cohort retention rates",
              "Are we retaining customers over time?"),
    _view("vw_churn_risk_customers", "customers", "Churn Risk",
          "Customers at risk of churning", "Which valuable customers might leave?"),
    _view("vw_customer_demographics", "customers", "Customer Demographics",
          "Age and gender breakdown", "Who are our customers?"),
    # Products
    _snapshot("mv_top_products", "products", RefreshCadence.DAILY,
              "Top Products", "Products ranked by revenue/units",
              "What are our best sellers?"),
    _snapshot("mv_abc_analysis", "products", RefreshCadence.WEEKLY,
              "ABC Analysis", "Pareto classification of products",
              "Which products drive 80% of revenue?"),
    _view("vw_category_performance", "products", "Category Performance",
          "Category-level metrics", "Which categories perform best?"),
    _view("vw_inventory_turnover", "products", "Inventory Turnover",
          "Stock velocity and days of inventory", "How fast is inventory moving?"),
    # Stores
    _snapshot("mv_store_performance", "stores", RefreshCadence.DAILY,
              "Store Performance", "Store-level revenue and profit",
              "Which stores are most profitable?"),
    _view("vw_regional_performance", "stores", "Regional Performance",
          "Regional aggregation of metrics", "How do regions compare?"),
    _view("vw_store_inventory_status", "stores", "Store Inventory Status",
          "Inventory health by store", "Which stores have stock issues?"),
    # Operations
    _snapshot("mv_operations_summary", "operations", RefreshCadence.DAILY,
              "Operations Summary", "Delivery, return and payment health in one row",
              "How healthy is fulfilment overall?"),
    _view("vw_delivery_performance", "operations", "Delivery Performance",
          "Delivery SLA and timing metrics", "Are we delivering on time?"),
    _view("vw_courier_comparison", "operations", "Courier Comparison",
          "Performance by courier partner", "Which courier is most reliable?"),
    _view("vw_return_analysis", "operations", "Return Analysis",
          "Return rates and reasons", "Why are customers returning products?"),
    _view("vw_payment_success_rate", "operations", "Payment Success Rate",
          "Payment gateway performance", "Are payments succeeding?"),
    # Marketing
    _snapshot("mv_marketing_roi", "marketing", RefreshCadence.DAILY,
              "Marketing ROI", "Campaign spend against attributed revenue",
              "Which marketing spend pays back?"),
    _view("vw_campaign_performance", "marketing", "Campaign Performance",
          "Campaign ROI and effectiveness", "Which campaigns work best?"),
    _view("vw_promotion_effectiveness", "marketing", "Promotion Effectiveness",
          "Impact of promotions on sales", "Are promotions driving sales?"),
    _view("vw_channel_performance", "marketing", "Channel Performance",
          "Ad spend and conversion by channel", "Where should we spend ad budget?"),
    # Alerts
    _view("vw_alert_critical_stock", "alerts", "Critical Stock Alert",
          "Store inventory below the critical stock level", "What is about to run out?"),
    _view("vw_alert_high_value_churn", "alerts", "High-Value Churn Alert",
          "Platinum and Gold customers drifting away", "Which top customers need a win-back?"),
    _view("vw_alert_revenue_anomaly", "alerts", "Revenue Anomaly Alert",
          "Days more than 25% below the 7-day average", "Did revenue drop unexpectedly?"),
    _view("vw_alert_delayed_shipments", "alerts", "Delayed Shipments Alert",
          "Undelivered orders past their expected date", "Which orders are running late?"),
    _view("vw_alert_high_return_rate", "alerts", "High Return Rate Alert",
          "Categories with a return rate of 15% or more", "Which categories come back too often?"),
    _view("vw_alert_low_stock", "alerts", "Low Stock Alert",
          "Products with 10 to 50 units left across stores", "What should we reorder soon?"),
    _view("vw_all_active_alerts", "alerts", "All Active Alerts",
          "Every active alert in one list", "What needs attention right now?"),
]


def default_registry() -> DerivedViewRegistry:
    return DerivedViewRegistry(RETAILMART_CATALOG)


__all__ = [
    "DerivedViewRegistry",
    "RETAILMART_CATALOG",
    "default_registry",
]
