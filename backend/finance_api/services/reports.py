from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from ..persistence import Persistence, fold_text
from ..schemas import TransactionFilters
from .amounts import CENT
from .ownership import Entity, require_access


class ReportService:
    """Read-only aggregates over the caller's transactions."""

    def __init__(self, persistence: Persistence) -> None:
        self.persistence = persistence

    def _check_account(self, user_id: UUID, account_id: Optional[UUID]) -> None:
        if account_id:
            require_access(self.persistence, Entity.account, account_id, user_id)

    def summary(self, user_id: UUID, filters: TransactionFilters) -> dict[str, Decimal]:
        self._check_account(user_id, filters.accountId)
        totals = self.persistence.sum_by_type(user_id, filters)
        return {
            "income": totals["income"],
            "expense": totals["expense"],
            "balance": totals["income"] - totals["expense"],
        }

    def top_categories(
        self,
        user_id: UUID,
        filters: TransactionFilters,
        group_by: str = "category",
        limit: int = 5,
    ) -> list[dict[str, Any]]:
        self._check_account(user_id, filters.accountId)
        groups = self.persistence.expense_totals(user_id, filters, group_by)
        grand_total = sum((g["total"] for g in groups), Decimal("0"))
        groups.sort(key=lambda g: (-g["total"], g["name"].casefold(), str(g["id"])))

        items: list[dict[str, Any]] = []
        for group in groups[:limit]:
            share = (group["total"] * 100 / grand_total).quantize(CENT) if grand_total else Decimal("0")
            item = {"id": group["id"], "name": group["name"], "total_amount": group["total"], "percentage": float(share)}
            if group_by == "subcategory":
                item["category_id"] = group["category_id"]
                item["category_name"] = group["category_name"]
            items.append(item)
        return items

    def descriptions(self, user_id: UUID, account_id: UUID, q: Optional[str] = None, limit: int = 10) -> list[str]:
        """Distinct descriptions used on an account, newest first. Distinctness is case-sensitive."""
        require_access(self.persistence, Entity.account, account_id, user_id)
        rows = sorted(
            self.persistence.list_descriptions(user_id, account_id),
            key=lambda r: (r["date"], r["created_at"]),
            reverse=True,
        )
        needle = fold_text(q.strip()) if q and q.strip() else None
        seen: set[str] = set()
        items: list[str] = []
        for row in rows:
            text = row["description"].strip()
            if text in seen:
                continue
            seen.add(text)
            if needle and needle not in fold_text(text):
                continue
            items.append(text)
            if len(items) >= limit:
                break
        return items
