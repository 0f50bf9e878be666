"""
Google Sheets storage with circuit breaker protection.

The spreadsheet is the system of record: one ``Vacations`` row per
request and an ``Employees`` worksheet maintained by HR. Reads are
retried with backoff; writes are attempted once.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import date
from typing import Any

import gspread
import requests
from google.oauth2.service_account import Credentials
from gspread.exceptions import APIError, WorksheetNotFound
from gspread.utils import rowcol_to_a1

from src.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from src.config import settings
from src.errors import InvalidTransitionError, NotFoundError, RepositoryError
from src.models import (
    Decision,
    DecisionRecord,
    Employee,
    RequestKind,
    RequestState,
    Role,
    Stage,
    VacationRequest,
)
from src.observability import trace_span
from src.repository import (
    EmployeeDirectory,
    RequestRepository,
    apply_transition,
    employee_from_record,
)
from src.retry import with_retry
from src.utils.dates import EPOCH, parse_date, parse_datetime

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
TRANSIENT_STATUS = {429, 500, 502, 503, 504}

VACATION_HEADERS = [
    "RequestID",
    "EmployeeID",
    "FullName",
    "Department",
    "Team",
    "ManagerID",
    "StartDate",
    "EndDate",
    "Days",
    "Status",
    "RequestType",
    "Reason",
    "CreatedAt",
    "PMDecision",
    "PMDecisionBy",
    "PMDecisionAt",
    "PMComment",
    "HRDecision",
    "HRDecisionBy",
    "HRDecisionRole",
    "HRDecisionAt",
    "HRComment",
    "CancelledBy",
    "CancelledAt",
    "BalanceBefore",
    "BalanceAfter",
    "IdempotencyKey",
    "DecisionKeys",
    "UpdatedAt",
]

EMPLOYEE_COLUMNS = {
    "EmployeeID": "employee_id",
    "FullName": "full_name",
    "Department": "department",
    "Team": "team",
    "SubTeam": "sub_team",
    "ManagerID": "manager_id",
    "FirstWorkDay": "first_working_day",
    "Role": "role",
    "Active": "active",
    "AnnualQuota": "annual_quota",
}

# Status labels HR may type by hand in the sheet, keyed after normalization:
# lowercase, spaces and hyphens as underscores ("Pending HR" -> "pending_hr")
STATUS_ALIASES = {
    "approved": RequestState.APPROVED,
    "затверджено": RequestState.APPROVED,
    "rejected": RequestState.REJECTED,
    "відхилено": RequestState.REJECTED,
    "cancelled": RequestState.CANCELLED,
    "canceled": RequestState.CANCELLED,
    "скасовано": RequestState.CANCELLED,
    "pending_pm": RequestState.PENDING_PM,
    "очікує_pm": RequestState.PENDING_PM,
    "pending_hr": RequestState.PENDING_HR,
    "очікує_hr": RequestState.PENDING_HR,
}


def is_transient(error: Exception) -> bool:
    """Rate limits, 5xx responses and network hiccups are worth retrying."""
    if isinstance(error, APIError):
        response = getattr(error, "response", None)
        return getattr(response, "status_code", None) in TRANSIENT_STATUS
    return isinstance(error, (requests.ConnectionError, requests.Timeout))


class SheetsClient:
    """
    Spreadsheet handle with circuit breaker and retry policy.

    Pass ``spreadsheet`` to reuse an already opened gspread Spreadsheet
    (tests pass a mock); otherwise it is opened from settings.
    """

    def __init__(self, spreadsheet: Any = None):
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.circuit_breaker_failure_threshold,
            timeout=settings.circuit_breaker_timeout,
            name="SheetsCircuitBreaker",
            counted=(APIError, requests.RequestException),
        )
        self.spreadsheet = spreadsheet if spreadsheet is not None else self._open()
        self._worksheets: dict[str, Any] = {}
        self._ws_lock = threading.Lock()

    def _open(self):
        """Authorize the service account and open the configured spreadsheet."""
        try:
            if settings.google_service_account_file:
                creds = Credentials.from_service_account_file(
                    settings.google_service_account_file, scopes=SCOPES
                )
            else:
                creds = Credentials.from_service_account_info(
                    {
                        "type": "service_account",
                        "client_email": settings.google_service_account_email,
                        "private_key": settings.google_private_key.replace("\\n", "\n"),
                        "token_uri": "https://oauth2.googleapis.com/token",
                    },
                    scopes=SCOPES,
                )
            spreadsheet = gspread.authorize(creds).open_by_key(settings.spreadsheet_id)
        except (APIError, requests.RequestException, ValueError) as e:
            logger.error(f"Failed to open spreadsheet {settings.spreadsheet_id}: {e}")
            raise RepositoryError("Cannot open the vacations spreadsheet", operation="open") from e

        logger.info(f"Google Sheets initialized: {spreadsheet.title}")
        return spreadsheet

    def worksheet(self, title: str, headers: list[str] | None = None):
        """Return a worksheet, creating it with ``headers`` when missing."""
        with self._ws_lock:
            if title in self._worksheets:
                return self._worksheets[title]
            try:
                ws = self.read(f"{title}.open", lambda: self.spreadsheet.worksheet(title))
            except RepositoryError as e:
                if not (headers and isinstance(e.__cause__, WorksheetNotFound)):
                    raise
                logger.info(f"Creating worksheet {title}")
                ws = self.write(
                    f"{title}.create",
                    lambda: self.spreadsheet.add_worksheet(title=title, rows=1000, cols=len(headers)),
                )
                self.write(f"{title}.headers", lambda: ws.append_row(headers, value_input_option="RAW"))
            self._worksheets[title] = ws
            return ws

    def read(self, operation: str, fn):
        """Idempotent call: circuit breaker + retry on transient errors."""
        with trace_span("sheets_read", operation=operation):
            return self._guard(
                operation,
                lambda: with_retry(
                    lambda: self.circuit_breaker.call(fn),
                    attempts=settings.sheets_retry_attempts,
                    base_delay=settings.sheets_retry_base_delay,
                    max_delay=settings.sheets_retry_max_delay,
                    is_retryable=is_transient,
                    operation=operation,
                ),
            )

    def write(self, operation: str, fn):
        """State-changing call: attempted once."""
        with trace_span("sheets_write", operation=operation):
            return self._guard(operation, lambda: self.circuit_breaker.call(fn))

    def _guard(self, operation: str, fn):
        try:
            return fn()
        except CircuitBreakerOpenError as e:
            raise RepositoryError(str(e), operation=operation) from e
        except (APIError, requests.RequestException, WorksheetNotFound) as e:
            logger.error(f"Sheets {operation} failed: {e}")
            raise RepositoryError(f"Spreadsheet {operation} failed", operation=operation) from e

    def get_circuit_breaker_state(self) -> dict:
        """Get circuit breaker state for monitoring."""
        return self.circuit_breaker.get_state()


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _optional_int(value: Any) -> int | None:
    text = _text(value)
    return int(float(text)) if text else None


def _parse_state(value: Any) -> RequestState:
    key = "_".join(_text(value).lower().replace("-", " ").split())
    state = STATUS_ALIASES.get(key)
    if state is None:
        raise ValueError(f"Unknown status {value!r}")
    return state


def _iso(value: date | None) -> str:
    return value.isoformat() if value else ""


class SheetsRequestRepository(RequestRepository):
    """
    Vacation requests stored as rows of the Vacations worksheet.

    Google Sheets has no conditional update, so compare-and-swap is a
    read-check-write guarded by a process-wide lock; a writer in another
    process can still interleave between the read and the write.
    """

    def __init__(self, client: SheetsClient, worksheet_title: str | None = None):
        self.client = client
        self.worksheet_title = worksheet_title or settings.vacations_worksheet
        self._write_lock = threading.Lock()

    @property
    def worksheet(self):
        return self.client.worksheet(self.worksheet_title, VACATION_HEADERS)

    # ---- row mapping ----

    @staticmethod
    def row_to_request(record: dict[str, Any]) -> VacationRequest:
        decision_keys = dict(
            part.split("=", 1) for part in _text(record.get("DecisionKeys")).split(";") if "=" in part
        )

        def decision(stage: Stage, outcome_col, by_col, at_col, comment_col=None, role=None):
            actor = _text(record.get(by_col))
            if not actor:
                return None
            outcome = Decision(_text(record.get(outcome_col)).lower()) if outcome_col else Decision.CANCEL
            return DecisionRecord(
                stage=stage,
                actor_id=actor,
                actor_role=role,
                decision=outcome,
                decided_at=parse_datetime(record.get(at_col)),
                comment=_text(record.get(comment_col)) if comment_col else "",
                idempotency_key=decision_keys.get(stage.value),
            )

        hr_role = _text(record.get("HRDecisionRole")).lower() or Role.HR.value
        start = parse_date(record.get("StartDate"))
        end = parse_date(record.get("EndDate"))
        if start is None or end is None:
            raise ValueError("missing StartDate/EndDate")

        return VacationRequest(
            request_id=_text(record["RequestID"]),
            employee_id=_text(record.get("EmployeeID")),
            full_name=_text(record.get("FullName")),
            department=_text(record.get("Department")),
            team=_text(record.get("Team")),
            manager_id=_text(record.get("ManagerID")) or None,
            start_date=start,
            end_date=end,
            days=_optional_int(record.get("Days")) or (end - start).days + 1,
            kind=RequestKind(_text(record.get("RequestType")).lower() or RequestKind.REGULAR.value),
            state=_parse_state(record.get("Status")),
            reason=_text(record.get("Reason")),
            created_at=parse_datetime(record.get("CreatedAt")) or EPOCH,
            pm_decision=decision(Stage.PM, "PMDecision", "PMDecisionBy", "PMDecisionAt", "PMComment", Role.PM),
            hr_decision=decision(
                Stage.HR, "HRDecision", "HRDecisionBy", "HRDecisionAt", "HRComment", Role(hr_role)
            ),
            cancellation=decision(Stage.REQUESTER, None, "CancelledBy", "CancelledAt", role=Role.EMPLOYEE),
            balance_before=_optional_int(record.get("BalanceBefore")),
            balance_after=_optional_int(record.get("BalanceAfter")),
            idempotency_key=_text(record.get("IdempotencyKey")) or None,
            updated_at=parse_datetime(record.get("UpdatedAt")),
        )

    @staticmethod
    def request_to_row(request: VacationRequest) -> list[Any]:
        pm, hr, cancel = request.pm_decision, request.hr_decision, request.cancellation
        keys = ";".join(
            f"{d.stage.value}={d.idempotency_key}" for d in (pm, hr, cancel) if d and d.idempotency_key
        )
        values = {
            "RequestID": request.request_id,
            "EmployeeID": request.employee_id,
            "FullName": request.full_name,
            "Department": request.department,
            "Team": request.team,
            "ManagerID": request.manager_id or "",
            "StartDate": request.start_date.isoformat(),
            "EndDate": request.end_date.isoformat(),
            "Days": request.days,
            "Status": request.state.value,
            "RequestType": request.kind.value,
            "Reason": request.reason,
            "CreatedAt": _iso(request.created_at),
            "PMDecision": pm.decision.value if pm else "",
            "PMDecisionBy": pm.actor_id if pm else "",
            "PMDecisionAt": _iso(pm.decided_at) if pm else "",
            "PMComment": pm.comment if pm else "",
            "HRDecision": hr.decision.value if hr else "",
            "HRDecisionBy": hr.actor_id if hr else "",
            "HRDecisionRole": hr.actor_role.value if hr else "",
            "HRDecisionAt": _iso(hr.decided_at) if hr else "",
            "HRComment": hr.comment if hr else "",
            "CancelledBy": cancel.actor_id if cancel else "",
            "CancelledAt": _iso(cancel.decided_at) if cancel else "",
            "BalanceBefore": "" if request.balance_before is None else request.balance_before,
            "BalanceAfter": "" if request.balance_after is None else request.balance_after,
            "IdempotencyKey": request.idempotency_key or "",
            "DecisionKeys": keys,
            "UpdatedAt": _iso(request.updated_at),
        }
        return [values[h] for h in VACATION_HEADERS]

    # ---- queries ----

    def _load(self) -> list[tuple[int, VacationRequest]]:
        """All requests with their 1-based sheet row numbers."""
        ws = self.worksheet
        records = self.client.read(
            "vacations.get_all_records",
            lambda: ws.get_all_records(numericise_ignore=["all"]),
        )

        rows = []
        for index, record in enumerate(records, start=2):
            if not _text(record.get("RequestID")):
                continue
            try:
                rows.append((index, self.row_to_request(record)))
            except (KeyError, ValueError, TypeError) as e:
                logger.error(f"Malformed vacation row {index}: {e}")
                raise RepositoryError(
                    f"Malformed vacation row {index} in {self.worksheet_title}",
                    operation="parse",
                ) from e
        return rows

    def _requests(self) -> list[VacationRequest]:
        return [r for _, r in self._load()]

    def _find(self, request_id: str) -> tuple[int, VacationRequest] | None:
        wanted = request_id.strip()
        for row_number, request in self._load():
            if request.request_id == wanted:
                return row_number, request
        return None

    def create(self, request: VacationRequest) -> None:
        ws = self.worksheet
        row = self.request_to_row(request)
        with self._write_lock:
            if self._find(request.request_id) is not None:
                raise RepositoryError(
                    f"Request {request.request_id} already exists", operation="create"
                )
            self.client.write(
                "vacations.append_row", lambda: ws.append_row(row, value_input_option="RAW")
            )
        logger.info(f"Vacation request saved: {request.request_id}")

    def get(self, request_id: str) -> VacationRequest | None:
        found = self._find(request_id)
        return found[1] if found else None

    def compare_and_swap_state(
        self,
        request_id: str,
        expected: RequestState,
        next_state: RequestState,
        decision: DecisionRecord,
    ) -> VacationRequest:
        ws = self.worksheet
        with self._write_lock:
            found = self._find(request_id)
            if found is None:
                raise NotFoundError(f"Request {request_id} not found.")
            row_number, current = found
            if current.state is not expected:
                raise InvalidTransitionError(
                    f"Request {request_id} is {current.state.value}, expected {expected.value}.",
                    current.state,
                )

            updated = apply_transition(current, next_state, decision)
            cell_range = f"A{row_number}:{rowcol_to_a1(row_number, len(VACATION_HEADERS))}"
            values = [self.request_to_row(updated)]
            self.client.write(
                "vacations.update_row",
                lambda: ws.update(range_name=cell_range, values=values, value_input_option="RAW"),
            )
        return updated

    def list_by_employee_in_window(
        self, employee_id: str, start: date, end: date
    ) -> list[VacationRequest]:
        return [
            r for r in self._requests() if r.employee_id == employee_id and start <= r.start_date <= end
        ]

    def list_approved_by_unit_in_range(
        self, department: str, team: str, start: date, end: date
    ) -> list[VacationRequest]:
        return [
            r
            for r in self._requests()
            if r.state is RequestState.APPROVED
            and r.department == department
            and r.team == team
            and r.overlaps(start, end)
        ]

    def find_by_idempotency_key(self, key: str) -> VacationRequest | None:
        for r in self._requests():
            if r.idempotency_key == key:
                return r
        return None

    def list_by_state(self, state: RequestState) -> list[VacationRequest]:
        return [r for r in self._requests() if r.state is state]

    def list_by_employee(self, employee_id: str) -> list[VacationRequest]:
        return [r for r in self._requests() if r.employee_id == employee_id]

    def get_circuit_breaker_state(self) -> dict:
        return self.client.get_circuit_breaker_state()


class SheetsEmployeeDirectory(EmployeeDirectory):
    """Employees worksheet, cached for ``cache_ttl`` seconds."""

    def __init__(
        self, client: SheetsClient, worksheet_title: str | None = None, cache_ttl: float = 60.0
    ):
        self.client = client
        self.worksheet_title = worksheet_title or settings.employees_worksheet
        self.cache_ttl = cache_ttl
        self._cache: dict[str, Employee] = {}
        self._loaded_at: float | None = None
        self._lock = threading.Lock()

    def _refresh(self) -> None:
        ws = self.client.worksheet(self.worksheet_title)
        records = self.client.read(
            "employees.get_all_records",
            lambda: ws.get_all_records(numericise_ignore=["all"]),
        )

        employees = {}
        for index, record in enumerate(records, start=2):
            data = {field: record.get(column) for column, field in EMPLOYEE_COLUMNS.items()}
            if not _text(data["employee_id"]):
                continue
            try:
                employee = employee_from_record(data)
            except (KeyError, ValueError) as e:
                logger.error(f"Skipping malformed employee row {index}: {e}")
                continue
            employees[employee.employee_id] = employee

        self._cache = employees
        self._loaded_at = time.monotonic()
        logger.info(f"Loaded {len(employees)} employees from {self.worksheet_title}")

    def get(self, employee_id: str) -> Employee | None:
        with self._lock:
            if self._loaded_at is None or time.monotonic() - self._loaded_at > self.cache_ttl:
                self._refresh()
            return self._cache.get(str(employee_id).strip())
