# Overview: Multi-branch items-pack workbook export with pacing, backoff and placeholders.

"""
Items Pack Export

Branches are aggregated one at a time. Each branch call is retried on
throttling (server Retry-After honoured, else exponential backoff with
jitter) and on client-side timeouts. A branch that exhausts its attempts,
or whose source fails or answers with something unreadable, gets a zeroed
placeholder sheet and a warning; the export never aborts because of one
branch.

Workbook layout:
- one sheet per branch (item rows + TOTAL)
- Summary: items across all branches (+ TOTAL)
- Memo: per-branch totals with and without markup (+ TOTAL)
"""

from __future__ import annotations

import io
import random
import re
import time
from dataclasses import dataclass, field
from typing import Callable

import httpx
from flask import current_app
from openpyxl import Workbook
from openpyxl.styles import Font

from ..errors import UpstreamThrottledError
from ..extensions import db
from ..models import Branch
from ..time_utils import utcnow
from .reference_service import get_branch_by_code
from .reporting_service import branch_item_totals


BRANCH_HEADERS = [
    "SKU", "Item", "Category", "Quantity", "Base Price", "Markup", "Price",
    "Amount (with markup)", "Amount (without markup)",
]
SUMMARY_HEADERS = ["SKU", "Item", "Category", "Quantity", "Amount (with markup)", "Amount (without markup)"]
MEMO_HEADERS = ["Branch", "Status", "Quantity", "With markup", "Without markup", "Markup"]


class DemandSourceThrottled(Exception):
    def __init__(self, message: str = "throttled", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class DemandSourceTimeout(Exception):
    pass


class DemandSourceMalformed(Exception):
    """The source answered, but not with demand rows. Not retried."""


class LocalDemandSource:
    """Aggregates from this database."""

    def fetch_branch(self, branch: Branch) -> list[dict]:
        return branch_item_totals(branch.id)

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


def _parse_retry_after(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class HttpDemandSource:
    """
    Fetches per-branch demand from a remote instance's /api/reports/demand.

    Every request carries a client-enforced timeout; 429 responses surface as
    DemandSourceThrottled with the parsed Retry-After. A client passed in
    stays open on close(); one created here is closed with the source.
    """

    def __init__(self, base_url: str, *, token: str | None = None, timeout: float = 6.0, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = client is None
        self.client = client or httpx.Client()

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def fetch_branch(self, branch: Branch) -> list[dict]:
        try:
            response = self.client.get(
                f"{self.base_url}/api/reports/demand",
                params={"branch": branch.code},
                headers=self.headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise DemandSourceTimeout(f"{branch.code}: {exc}") from exc

        if response.status_code == 429:
            raise DemandSourceThrottled(
                f"{branch.code}: throttled",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        response.raise_for_status()
        try:
            return _collapse_by_sku(response.json().get("rows", []))
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            raise DemandSourceMalformed(f"{branch.code}: unreadable demand response ({exc})") from exc


def _collapse_by_sku(rows: list[dict]) -> list[dict]:
    """Demand rows are per department; the pack is per item."""
    if not isinstance(rows, list):
        raise TypeError("rows is not a list")
    by_sku: dict[str, dict] = {}
    for row in rows:
        entry = by_sku.setdefault(row["sku"], {
            "sku": row["sku"],
            "item_name": row.get("item_name"),
            "category": row.get("category"),
            "quantity": 0,
            "base_price": int(row.get("base_price") or 0),
            "markup": int(row.get("markup") or 0),
        })
        entry["quantity"] += int(row.get("quantity") or 0)
    return list(by_sku.values())


def build_demand_source():
    url = current_app.config.get("REPORT_SOURCE_URL")
    if url:
        return HttpDemandSource(
            url,
            token=current_app.config.get("REPORT_SOURCE_TOKEN"),
            timeout=float(current_app.config.get("EXPORT_REQUEST_TIMEOUT_SECONDS", 6.0)),
        )
    return LocalDemandSource()


@dataclass
class BackoffPolicy:
    base: float = 0.9
    cap: float = 15.0
    max_attempts: int = 8
    pacing: float = 0.35

    @classmethod
    def from_config(cls, config) -> "BackoffPolicy":
        return cls(
            base=float(config.get("EXPORT_BACKOFF_BASE_SECONDS", 0.9)),
            cap=float(config.get("EXPORT_BACKOFF_CAP_SECONDS", 15.0)),
            max_attempts=max(1, int(config.get("EXPORT_MAX_ATTEMPTS", 8))),
            pacing=float(config.get("EXPORT_PACING_SECONDS", 0.35)),
        )

    def delay(self, attempt: int, rand: Callable[[], float]) -> float:
        exponential = min(self.cap, self.base * (2 ** attempt))
        return min(self.cap, exponential + rand() * self.base)


def fetch_with_backoff(
    source,
    branch: Branch,
    *,
    policy: BackoffPolicy,
    sleep: Callable[[float], None] = time.sleep,
    rand: Callable[[], float] = random.random,
) -> list[dict]:
    """Call source.fetch_branch, retrying throttling/timeouts; UpstreamThrottledError when exhausted."""
    last_error = None
    for attempt in range(policy.max_attempts):
        try:
            return source.fetch_branch(branch)
        except DemandSourceThrottled as exc:
            last_error = exc
            if exc.retry_after is not None:
                wait = min(policy.cap, exc.retry_after)
            else:
                wait = policy.delay(attempt, rand)
        except DemandSourceTimeout as exc:
            last_error = exc
            wait = policy.delay(attempt, rand)

        if attempt >= policy.max_attempts - 1:
            break
        current_app.logger.warning(
            "Export fetch for %s failed (attempt %s/%s): %s; retrying in %.2fs",
            branch.code, attempt + 1, policy.max_attempts, last_error, wait,
        )
        sleep(wait)

    raise UpstreamThrottledError(
        f"Aggregation for {branch.code} failed after {policy.max_attempts} attempts",
        {"branch": branch.code, "reason": str(last_error)},
    )


@dataclass
class ExportResult:
    content: bytes
    filename: str
    warnings: list[str] = field(default_factory=list)
    branches: list[dict] = field(default_factory=list)


_SHEET_TITLE_INVALID = re.compile(r"[\[\]:*?/\\]")


def _sheet_title(name: str, used: set[str]) -> str:
    base = _SHEET_TITLE_INVALID.sub("-", name or "Branch")[:31] or "Branch"
    title = base
    suffix = 2
    while title.lower() in used or title.lower() in {"summary", "memo"}:
        tail = f" ({suffix})"
        title = base[:31 - len(tail)] + tail
        suffix += 1
    used.add(title.lower())
    return title


def _total_row(ws, values: list) -> None:
    ws.append(values)
    for cell in ws[ws.max_row]:
        cell.font = Font(bold=True)


def _write_branch_sheet(ws, rows: list[dict], placeholder: bool) -> tuple[int, int, int]:
    ws.append(BRANCH_HEADERS)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    total_qty = total_with = total_without = 0
    if placeholder:
        ws.append(["-", "Data unavailable (upstream throttled)", None, 0, 0, 0, 0, 0, 0])
    for row in rows:
        price = row["base_price"] + row["markup"]
        with_markup = row["quantity"] * price
        without_markup = row["quantity"] * row["base_price"]
        ws.append([
            row["sku"], row["item_name"], row.get("category"), row["quantity"],
            row["base_price"], row["markup"], price, with_markup, without_markup,
        ])
        total_qty += row["quantity"]
        total_with += with_markup
        total_without += without_markup
    _total_row(ws, ["TOTAL", None, None, total_qty, None, None, None, total_with, total_without])
    return total_qty, total_with, total_without


def _fetch_branches(
    source,
    branches: list[Branch],
    policy: BackoffPolicy,
    warnings: list[str],
    *,
    sleep: Callable[[float], None],
    rand: Callable[[], float],
) -> list[tuple[Branch, list[dict], bool]]:
    """(branch, rows, placeholder) per branch; a failed branch yields no rows."""
    fetched = []
    for index, branch in enumerate(branches):
        placeholder = False
        try:
            rows = fetch_with_backoff(source, branch, policy=policy, sleep=sleep, rand=rand)
        except (UpstreamThrottledError, DemandSourceMalformed, httpx.HTTPError) as exc:
            current_app.logger.warning("Export placeholder for %s: %s", branch.code, exc)
            warnings.append(f"{branch.code}: {exc}")
            rows = []
            placeholder = True
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Export placeholder for %s after unexpected error", branch.code)
            warnings.append(f"{branch.code}: {type(exc).__name__}: {exc}")
            rows = []
            placeholder = True

        fetched.append((branch, rows, placeholder))
        if not placeholder and index < len(branches) - 1 and policy.pacing > 0:
            sleep(policy.pacing)
    return fetched


def export_items_pack(
    branch_codes: list[str] | None = None,
    *,
    source=None,
    sleep: Callable[[float], None] = time.sleep,
    rand: Callable[[], float] = random.random,
) -> ExportResult:
    """
    Build the items-pack workbook for the given branches (default: all).

    Branches are fetched sequentially with a pacing delay after each
    successful call. Unknown branch codes raise NotFoundError before any
    fetch happens.
    """
    if branch_codes:
        branches = [get_branch_by_code(code) for code in branch_codes]
    else:
        branches = db.session.query(Branch).order_by(Branch.code).all()

    policy = BackoffPolicy.from_config(current_app.config)
    warnings: list[str] = []
    if source is None:
        with build_demand_source() as owned_source:
            fetched = _fetch_branches(owned_source, branches, policy, warnings, sleep=sleep, rand=rand)
    else:
        fetched = _fetch_branches(source, branches, policy, warnings, sleep=sleep, rand=rand)

    wb = Workbook()
    wb.remove(wb.active)
    used_titles: set[str] = set()
    summary: dict[str, dict] = {}
    memo: list[list] = []
    branch_results: list[dict] = []

    for branch, rows, placeholder in fetched:
        ws = wb.create_sheet(_sheet_title(branch.code, used_titles))
        qty, with_markup, without_markup = _write_branch_sheet(ws, rows, placeholder)
        status = "placeholder" if placeholder else "ok"
        memo.append([branch.code, status, qty, with_markup, without_markup, with_markup - without_markup])
        branch_results.append({"branch_code": branch.code, "status": status, "rows": len(rows)})

        for row in rows:
            entry = summary.setdefault(row["sku"], {
                "sku": row["sku"], "item_name": row["item_name"], "category": row.get("category"),
                "quantity": 0, "with_markup": 0, "without_markup": 0,
            })
            entry["quantity"] += row["quantity"]
            entry["with_markup"] += row["quantity"] * (row["base_price"] + row["markup"])
            entry["without_markup"] += row["quantity"] * row["base_price"]

    ws = wb.create_sheet("Summary")
    ws.append(SUMMARY_HEADERS)
    for entry in sorted(summary.values(), key=lambda e: ((e["category"] or ""), e["item_name"] or "")):
        ws.append([
            entry["sku"], entry["item_name"], entry["category"],
            entry["quantity"], entry["with_markup"], entry["without_markup"],
        ])
    _total_row(ws, [
        "TOTAL", None, None,
        sum(e["quantity"] for e in summary.values()),
        sum(e["with_markup"] for e in summary.values()),
        sum(e["without_markup"] for e in summary.values()),
    ])

    ws = wb.create_sheet("Memo")
    ws.append(MEMO_HEADERS)
    for line in memo:
        ws.append(line)
    _total_row(ws, [
        "TOTAL", None,
        sum(line[2] for line in memo),
        sum(line[3] for line in memo),
        sum(line[4] for line in memo),
        sum(line[5] for line in memo),
    ])

    buffer = io.BytesIO()
    wb.save(buffer)
    return ExportResult(
        content=buffer.getvalue(),
        filename=f"items-pack-{utcnow():%Y%m%d-%H%M%S}.xlsx",
        warnings=warnings,
        branches=branch_results,
    )
