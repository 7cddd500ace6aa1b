"""
Data-quality checks over the operational retail schema.

Each check is a read-only count of rows violating one rule. The battery
covers completeness, accuracy, referential consistency, timeliness and
uniqueness. Timeliness windows and accuracy bounds come from
`QualityThresholds`, passed in explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import psycopg
from psycopg_pool import ConnectionPool

from retailbi.config import QualityThresholds
from retailbi.domain.models import QualityCategory, QualityFinding, Severity
from retailbi.utils.logging import get_logger

log = get_logger(__name__)

ParamBuilder = Callable[[QualityThresholds], Tuple]


@runtime_checkable
class DataQualityChecker(Protocol):
    def run_all_checks(self) -> List[QualityFinding]:
        """Run every check and return one finding per check, zero counts included."""
        ...


@dataclass(frozen=True)
class QualityCheck:
    name: str
    category: QualityCategory
    severity: Severity
    source_table: str
    description: str
    query: str
    params: Optional[ParamBuilder] = None


def _no_params(_: QualityThresholds) -> Tuple:
    return ()


C, A, K, T, U = (
    QualityCategory.COMPLETENESS,
    QualityCategory.ACCURACY,
    QualityCategory.CONSISTENCY,
    QualityCategory.TIMELINESS,
    QualityCategory.UNIQUENESS,
)

RETAILMART_CHECKS: List[QualityCheck] = [
    # Completeness
    QualityCheck("Orders Missing Customer", C, Severity.HIGH, "sales.orders",
                 "Orders where cust_id is NULL",
                 "SELECT COUNT(*) FROM sales.orders WHERE cust_id IS NULL"),
    QualityCheck("Orders Missing Store", C, Severity.HIGH, "sales.orders",
                 "Orders where store_id is NULL",
                 "SELECT COUNT(*) FROM sales.orders WHERE store_id IS NULL"),
    QualityCheck("Order Items Missing Price", C, Severity.CRITICAL, "sales.order_items",
                 "Order items where unit_price is NULL or zero",
                 "SELECT COUNT(*) FROM sales.order_items WHERE unit_price IS NULL OR unit_price = 0"),
    QualityCheck("Customers Missing Name", C, Severity.MEDIUM, "customers.customers",
                 "Customers where full_name is NULL or empty",
                 "SELECT COUNT(*) FROM customers.customers "
                 "WHERE full_name IS NULL OR TRIM(full_name) = ''"),
    QualityCheck("Products Missing Category", C, Severity.MEDIUM, "products.products",
                 "Products where category is NULL or empty",
                 "SELECT COUNT(*) FROM products.products WHERE category IS NULL OR TRIM(category) = ''"),
    QualityCheck("Shipments Missing Dates", C, Severity.HIGH, "sales.shipments",
                 "Delivered shipments without delivered_date",
                 "SELECT COUNT(*) FROM sales.shipments "
                 "WHERE status = 'Delivered' AND delivered_date IS NULL"),
    # Accuracy
    QualityCheck("Negative Order Amount", A, Severity.CRITICAL, "sales.orders",
                 "Orders where total_amount is negative",
                 "SELECT COUNT(*) FROM sales.orders WHERE total_amount < 0"),
    QualityCheck("Future Order Dates", A, Severity.CRITICAL, "sales.orders",
                 "Orders with order_date in the future",
                 "SELECT COUNT(*) FROM sales.orders WHERE order_date > CURRENT_DATE"),
    QualityCheck("Negative Quantities", A, Severity.HIGH, "sales.order_items",
                 "Order items with negative quantity",
                 "SELECT COUNT(*) FROM sales.order_items WHERE quantity < 0"),
    QualityCheck("Invalid Discount Percentage", A, Severity.HIGH, "sales.order_items",
                 "Order items with discount above the allowed maximum",
                 "SELECT COUNT(*) FROM sales.order_items WHERE discount > %s",
                 lambda t: (t.max_discount_pct,)),
    QualityCheck("Negative Inventory", A, Severity.MEDIUM, "products.inventory",
                 "Inventory records with negative stock_qty",
                 "SELECT COUNT(*) FROM products.inventory WHERE stock_qty < 0"),
    QualityCheck("Invalid Ratings", A, Severity.LOW, "customers.reviews",
                 "Reviews with rating outside 1-5 range",
                 "SELECT COUNT(*) FROM customers.reviews WHERE rating < 1 OR rating > 5"),
    QualityCheck("Delivery Before Shipment", A, Severity.HIGH, "sales.shipments",
                 "Shipments where delivered_date < shipped_date",
                 "SELECT COUNT(*) FROM sales.shipments WHERE delivered_date < shipped_date"),
    # Consistency
    QualityCheck("Orphan Orders (Invalid Customer)", K, Severity.CRITICAL, "sales.orders",
                 "Orders referencing non-existent customer",
                 "SELECT COUNT(*) FROM sales.orders o WHERE o.cust_id IS NOT NULL AND NOT EXISTS "
                 "(SELECT 1 FROM customers.customers c WHERE c.cust_id = o.cust_id)"),
    QualityCheck("Orphan Orders (Invalid Store)", K, Severity.HIGH, "sales.orders",
                 "Orders referencing non-existent store",
                 "SELECT COUNT(*) FROM sales.orders o WHERE o.store_id IS NOT NULL AND NOT EXISTS "
                 "(SELECT 1 FROM stores.stores s WHERE s.store_id = o.store_id)"),
    QualityCheck("Orphan Order Items", K, Severity.CRITICAL, "sales.order_items",
                 "Order items referencing non-existent order",
                 "SELECT COUNT(*) FROM sales.order_items oi WHERE NOT EXISTS "
                 "(SELECT 1 FROM sales.orders o WHERE o.order_id = oi.order_id)"),
    QualityCheck("Orphan Payments", K, Severity.CRITICAL, "sales.payments",
                 "Payments referencing non-existent order",
                 "SELECT COUNT(*) FROM sales.payments p WHERE NOT EXISTS "
                 "(SELECT 1 FROM sales.orders o WHERE o.order_id = p.order_id)"),
    QualityCheck("Orphan Shipments", K, Severity.HIGH, "sales.shipments",
                 "Shipments referencing non-existent order",
                 "SELECT COUNT(*) FROM sales.shipments s WHERE NOT EXISTS "
                 "(SELECT 1 FROM sales.orders o WHERE o.order_id = s.order_id)"),
    # Timeliness, measured against the latest order date rather than today
    QualityCheck("Old Pending Orders", T, Severity.MEDIUM, "sales.orders",
                 "Orders pending longer than the allowed window",
                 "SELECT COUNT(*) FROM sales.orders WHERE order_status = 'Pending' AND order_date < "
                 "(SELECT MAX(order_date) FROM sales.orders) - make_interval(days => %s)",
                 lambda t: (t.pending_order_days,)),
    QualityCheck("Long-Pending Shipments", T, Severity.HIGH, "sales.shipments",
                 "Shipped orders not delivered within the allowed window",
                 "SELECT COUNT(*) FROM sales.shipments WHERE status = 'Shipped' AND shipped_date < "
                 "(SELECT MAX(order_date) FROM sales.orders) - make_interval(days => %s)",
                 lambda t: (t.unshipped_delivery_days,)),
    QualityCheck("Stale Inventory Data", T, Severity.MEDIUM, "products.inventory",
                 "Inventory not updated within the allowed window",
                 "SELECT COUNT(*) FROM products.inventory WHERE last_updated < "
                 "(SELECT MAX(order_date) FROM sales.orders) - make_interval(days => %s)",
                 lambda t: (t.stale_inventory_days,)),
    # Uniqueness
    QualityCheck("Potential Duplicate Customers", U, Severity.LOW, "customers.customers",
                 "Customers with same name and city",
                 "SELECT COUNT(*) FROM (SELECT full_name, city FROM customers.customers "
                 "WHERE full_name IS NOT NULL GROUP BY full_name, city HAVING COUNT(*) > 1) dups"),
    QualityCheck("Multiple Payments Per Order", U, Severity.LOW, "sales.payments",
                 "Orders with more than one payment record",
                 "SELECT COUNT(*) FROM (SELECT order_id FROM sales.payments "
                 "GROUP BY order_id HAVING COUNT(*) > 1) multi_payments"),
]


class SqlQualityChecker:
    """
    Runs a battery of count queries against the operational schema.

    A check whose query fails (for example, a missing source table) is
    logged and left out of the findings; the remaining checks still run.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        thresholds: QualityThresholds,
        checks: Sequence[QualityCheck] = tuple(RETAILMART_CHECKS),
    ) -> None:
        self._pool = pool
        self._thresholds = thresholds
        self._checks = list(checks)

    def run_all_checks(self) -> List[QualityFinding]:
        findings: List[QualityFinding] = []
        with self._pool.connection() as conn:
            for check in self._checks:
                params = (check.params or _no_params)(self._thresholds)
                try:
                    with conn.transaction():
                        with conn.cursor() as cur:
                            cur.execute(check.query, params)
                            count = int(cur.fetchone()[0])
                except psycopg.Error as exc:
                    log.error(
                        f"[CHECK FAILED] {check.name}",
                        extra={"check": check.name, "error": str(exc)},
                    )
                    continue
                findings.append(
                    QualityFinding(
                        check_name=check.name,
                        category=check.category,
                        severity=check.severity,
                        source=check.source_table,
                        affected_count=count,
                        description=check.description,
                    )
                )
        return findings


__all__ = ["DataQualityChecker", "QualityCheck", "RETAILMART_CHECKS", "SqlQualityChecker"]
