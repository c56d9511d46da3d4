#!/usr/bin/env python3
"""
Bulk sanctions screening against a Watchman search service.

License: Apache License 2.0

Takes a CSV of subjects (header first, one subject per row), searches every
subject against a Watchman-compatible API with a bounded pool of workers and
returns the same CSV with the screening result appended:

    <original columns>,Result,SdnName,EntityID,Score,Programs,Timestamp

- Result is "MATCH" (score >= threshold), "Hit" (below threshold), "Clear"
  (nothing returned) or "Error" (the search for that row failed)
- Output rows keep input order no matter which search finishes first
- A failed row never aborts the batch; a summary is logged at the end

Subject columns (fixed policy):
  id,last,first  ->  "first, last"
  last,first     ->  "first, last"
  name           ->  "name"
"""

from __future__ import annotations

import argparse
import dataclasses
import datetime as dt
import functools
import io
import logging
import os
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import quote

import pandas as pd
import requests
from tqdm import tqdm

DEFAULT_API_ADDRESS = os.getenv("BATCHSEARCH_API_ADDRESS", "http://localhost:8084")
DEFAULT_USER_AGENT = "batchsearch/1.0"

# Wall-clock budget for one row, shared by every request that row makes.
DEFAULT_TIMEOUT = 5.0
DEFAULT_WORKERS = os.cpu_count() or 1

# Two separate knobs: min-match is sent to the service and decides what comes
# back at all, threshold only decides how a returned score is labelled.
DEFAULT_THRESHOLD = 0.99
DEFAULT_MIN_MATCH = 0.90
DEFAULT_SDN_TYPE = "individual"
DEFAULT_LIMIT = 1
DEFAULT_SEPARATOR = ","

CLEAR = "Clear"
HIT = "Hit"
MATCH = "MATCH"
FAILED = "Error"

NO_MATCH_SCORE = -1.0

STATUS_OK = "ok"
STATUS_FAILED = "failed"

RESULT_COLUMNS = ["Result", "SdnName", "EntityID", "Score", "Programs", "Timestamp"]

# Stripped from every extracted field and from the end of echoed rows.
FIELD_TRIM = ",\t\r\n"
ROW_TRIM = ",\r\n"
COMMENT_PREFIXES = ("#", "//")
EXCEL_SUFFIXES = (".xlsx",)
# Legacy binary workbooks need a reader this tool does not ship.
LEGACY_EXCEL_SUFFIXES = (".xls",)

logger = logging.getLogger("batchsearch")


class BatchSearchError(Exception):
    """Base error for batch screening."""


class ConfigError(BatchSearchError, ValueError):
    """Invalid screening configuration."""


class InputError(BatchSearchError, ValueError):
    """Input file could not be read or decoded."""


class ValidationError(BatchSearchError, ValueError):
    """Row rejected before any request was made (e.g. empty subject)."""


class TransportError(BatchSearchError):
    """Timeout, connection failure or non-2xx answer from the search service."""

    def __init__(self, subject: str, cause: BaseException):
        super().__init__(f"search for {subject!r} failed: {cause}")
        self.subject = subject
        self.cause = cause

    @property
    def status_code(self) -> Optional[int]:
        response = getattr(self.cause, "response", None)
        return getattr(response, "status_code", None)


class BatchError(BatchSearchError):
    """Output does not line up with the input rows."""


@dataclass(frozen=True)
class ScreeningConfig:
    address: str = DEFAULT_API_ADDRESS
    timeout: float = DEFAULT_TIMEOUT
    workers: int = DEFAULT_WORKERS
    threshold: float = DEFAULT_THRESHOLD
    min_match: float = DEFAULT_MIN_MATCH
    sdn_type: str = DEFAULT_SDN_TYPE
    request_id: Optional[str] = None   # sent as X-Request-ID
    limit: int = DEFAULT_LIMIT
    separator: str = DEFAULT_SEPARATOR  # joins the appended result columns
    user_agent: str = DEFAULT_USER_AGENT

    def validate(self) -> ScreeningConfig:
        if self.workers < 1:
            raise ConfigError(f"workers must be >= 1 (got {self.workers})")
        if self.limit < 1:
            raise ConfigError(f"limit must be >= 1 (got {self.limit})")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be > 0 (got {self.timeout})")
        for name in ("threshold", "min_match"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must be within [0, 1] (got {value})")
        if not self.separator:
            raise ConfigError("separator must not be empty")
        return self

    def with_overrides(self, **changes) -> ScreeningConfig:
        """Copy with the given fields replaced; None values are ignored."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return dataclasses.replace(self, **changes).validate()

    @classmethod
    def from_form(cls, form: Mapping[str, str], base: Optional[ScreeningConfig] = None) -> ScreeningConfig:
        """
        Build a per-request config from upload form fields. Missing or
        unparsable numbers keep the base value. Scores above 1 are read as
        percentages (the web form sends threshold=99).
        """
        base = base or cls()
        return base.with_overrides(
            threshold=_parse_score(form.get("threshold"), base.threshold),
            min_match=_parse_score(form.get("min-match"), base.min_match),
            sdn_type=(form.get("sdn-type") or "").strip() or base.sdn_type,
            request_id=(form.get("request-id") or "").strip() or base.request_id,
        )


def _parse_score(raw: Optional[str], default: float) -> float:
    if raw is None or not str(raw).strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if 1.0 < value <= 100.0:
        value = value / 100.0
    return value


@dataclass(frozen=True)
class InputRow:
    index: int                 # position after header removal, 0-based
    text: str                  # raw line as read
    fields: Tuple[str, ...]

    @property
    def subject(self) -> str:
        return subject_from_fields(self.fields)


@dataclass(frozen=True)
class SearchQuery:
    subject: str
    limit: int = DEFAULT_LIMIT
    min_match: float = DEFAULT_MIN_MATCH
    sdn_type: str = DEFAULT_SDN_TYPE
    request_id: Optional[str] = None

    @classmethod
    def for_subject(cls, subject: str, config: ScreeningConfig) -> SearchQuery:
        return cls(
            subject=subject,
            limit=config.limit,
            min_match=config.min_match,
            sdn_type=config.sdn_type,
            request_id=config.request_id,
        )


@dataclass(frozen=True)
class Candidate:
    entity_id: str
    name: str
    sdn_type: str
    score: float               # 0..1, Watchman convention
    programs: Tuple[str, ...] = ()
    remarks: str = ""

    @classmethod
    def from_sdn(cls, sdn: Dict, score: Optional[float] = None) -> Candidate:
        """Build from a Watchman SDN record; score defaults to its "match"."""
        return cls(
            entity_id=str(sdn.get("entityID") or ""),
            name=sdn.get("sdnName") or "",
            sdn_type=sdn.get("sdnType") or "",
            score=float(sdn.get("match") or 0.0) if score is None else float(score),
            programs=tuple(sdn.get("programs") or ()),
            remarks=sdn.get("remarks") or "",
        )

    @property
    def display_name(self) -> str:
        # "Last, First" would otherwise spill into the next CSV column.
        if "," not in self.name:
            return self.name
        last, first = self.name.split(",", 1)
        return " ".join((first.replace(",", " ") + " " + last).split())


@dataclass(frozen=True)
class RowResult:
    index: int
    row: str
    status: str = STATUS_OK
    candidate: Optional[Candidate] = None
    error: Optional[str] = None

    @property
    def is_set(self) -> bool:
        return self.candidate is not None

    @property
    def failed(self) -> bool:
        return self.status == STATUS_FAILED

    @property
    def score(self) -> float:
        return self.candidate.score if self.candidate is not None else NO_MATCH_SCORE


@dataclass(frozen=True)
class BatchResult:
    header: str
    lines: Tuple[str, ...]          # lines[0] is the header, lines[i + 1] is row i
    results: Tuple[RowResult, ...]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def succeeded(self) -> int:
        return self.total - self.failed

    @property
    def ok(self) -> bool:
        return self.total == 0 or self.succeeded > 0

    @property
    def partial(self) -> bool:
        return 0 < self.failed < self.total

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


SearchFn = Callable[[SearchQuery], Optional[Candidate]]


def _utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _trim_field(value: str) -> str:
    return value.strip(FIELD_TRIM)


def subject_from_fields(fields: Sequence[str]) -> str:
    parts = [_trim_field(f) for f in fields]
    if len(parts) >= 3:
        picked = [parts[2], parts[1]]
    elif len(parts) == 2:
        picked = [parts[1], parts[0]]
    else:
        return parts[0] if parts else ""
    return ", ".join(p for p in picked if p)


def parse_rows(raw_text: str) -> Tuple[str, List[InputRow]]:
    """
    Split CSV text into (header, rows). The first line is the header. Blank
    lines and lines starting with '#' or '//' are skipped and get no index.
    """
    lines = raw_text.splitlines()
    if not lines:
        return "", []

    header = lines[0]
    rows: List[InputRow] = []
    for line in lines[1:]:
        stripped = line.strip()
        if not stripped or stripped.startswith(COMMENT_PREFIXES):
            continue
        rows.append(InputRow(index=len(rows), text=line, fields=tuple(line.split(","))))
    return header, rows


def _clean_cell(value) -> str:
    # Rows are split on bare commas, so a cell may hold neither commas nor line breaks.
    return " ".join(str(value).replace(",", " ").split())


def _sheet_to_text(df: pd.DataFrame) -> str:
    lines = [",".join(_clean_cell(c) for c in df.columns)]
    for values in df.itertuples(index=False, name=None):
        lines.append(",".join(_clean_cell(v) for v in values))
    return "\n".join(lines) + "\n"


def decode_upload(filename: str, data: bytes) -> str:
    """Return CSV text for an uploaded file; spreadsheets are converted with pandas."""
    suffix = Path(filename).suffix.lower()
    if suffix in LEGACY_EXCEL_SUFFIXES:
        raise InputError(f"Unsupported spreadsheet {filename!r}: save it as .xlsx or .csv")
    if suffix in EXCEL_SUFFIXES:
        try:
            df = pd.read_excel(io.BytesIO(data), dtype=str, keep_default_na=False)
        except Exception as e:
            raise InputError(f"Unable to read spreadsheet {filename!r}: {e}") from e
        return _sheet_to_text(df)
    # Exports are UTF-8 with or without BOM, sometimes not quite; be forgiving.
    return data.decode("utf-8-sig", errors="replace")


def read_input_text(path: Path) -> str:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    return decode_upload(path.name, path.read_bytes())


# ---------------------------------------------------------------------------
# Classification and formatting
# ---------------------------------------------------------------------------

def classify(score: float, threshold: float) -> str:
    # Negative score means nothing was found, whatever the threshold.
    if score < 0.0:
        return CLEAR
    if score >= threshold:
        return MATCH
    return HIT


def _trim_row(original: str) -> str:
    return original.rstrip(ROW_TRIM)


def _format_programs(programs: Sequence[str]) -> str:
    return "[" + " ".join(programs) + "]"


def _join(original: str, columns: List[str], separator: str) -> str:
    head = _trim_row(original)
    return separator.join(([head] if head else []) + columns)


def format_header(original: str, separator: str = DEFAULT_SEPARATOR) -> str:
    return _join(original, list(RESULT_COLUMNS), separator)


def format_row(
    original: str,
    candidate: Optional[Candidate],
    threshold: float,
    separator: str = DEFAULT_SEPARATOR,
    timestamp: Optional[str] = None,
) -> str:
    timestamp = timestamp or _utc_now_iso()
    if candidate is None:
        columns = [classify(NO_MATCH_SCORE, threshold), "", "", "", "", timestamp]
    else:
        columns = [
            classify(candidate.score, threshold),
            candidate.display_name,
            candidate.entity_id,
            f"{candidate.score:.2f}",
            _format_programs(candidate.programs),
            timestamp,
        ]
    return _join(original, columns, separator)


def format_failed_row(original: str, separator: str = DEFAULT_SEPARATOR, timestamp: Optional[str] = None) -> str:
    return _join(original, [FAILED, "", "", "", "", timestamp or _utc_now_iso()], separator)


def format_result(
    result: RowResult,
    threshold: float,
    separator: str = DEFAULT_SEPARATOR,
    timestamp: Optional[str] = None,
) -> str:
    if result.failed:
        return format_failed_row(result.row, separator, timestamp)
    return format_row(result.row, result.candidate, threshold, separator, timestamp)


def _result_string(candidate: Candidate, subject: str, threshold: float) -> str:
    return (
        f"[RESULT] found {classify(candidate.score, threshold)} for {subject}: "
        f"SdnName={candidate.name}; EntityID={candidate.entity_id}; Type={candidate.sdn_type}; "
        f"Score={candidate.score:.2f}; Programs={_format_programs(candidate.programs)}; "
        f"Remarks={candidate.remarks}"
    )


def _settings_string(config: ScreeningConfig) -> str:
    return (
        f"[SETTINGS] MinNameScore={config.min_match:.2f}; Threshold={config.threshold:.2f}; "
        f"SdnType={config.sdn_type}; Workers={config.workers}; Address={config.address}"
    )


# ---------------------------------------------------------------------------
# Search service
# ---------------------------------------------------------------------------

class WatchmanClient:
    """
    Thin client for the Watchman search API. One instance is shared by all
    workers of a batch. Each worker thread gets its own requests.Session
    unless a session was injected. Calls accept an optional monotonic
    deadline so several requests for one row share a single time budget.
    """

    def __init__(
        self,
        address: str = DEFAULT_API_ADDRESS,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[requests.Session] = None,
    ):
        self.address = address.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent
        self._session = session
        self._local = threading.local()

    @classmethod
    def from_config(cls, config: ScreeningConfig, session: Optional[requests.Session] = None) -> WatchmanClient:
        return cls(config.address, timeout=config.timeout, user_agent=config.user_agent, session=session)

    @property
    def session(self) -> requests.Session:
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = requests.Session()
        return session

    def _remaining(self, deadline: Optional[float], subject: str) -> float:
        if deadline is None:
            return self.timeout
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TransportError(subject, requests.Timeout(f"row time budget of {self.timeout}s exhausted"))
        return remaining

    def _get(
        self,
        path: str,
        *,
        subject: str,
        params: Optional[Dict] = None,
        headers: Optional[Dict[str, str]] = None,
        deadline: Optional[float] = None,
    ) -> requests.Response:
        request_headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/json",
        }
        if headers:
            request_headers.update(headers)
        timeout = self._remaining(deadline, subject)
        try:
            response = self.session.get(
                f"{self.address}{path}",
                params=params,
                headers=request_headers,
                timeout=timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise TransportError(subject, e) from e
        return response

    @staticmethod
    def _json(response: requests.Response, subject: str) -> Dict:
        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(subject, e) from e
        return body if isinstance(body, dict) else {}

    def ping(self) -> None:
        self._get("/ping", subject="ping")

    def search(self, query: SearchQuery, *, deadline: Optional[float] = None) -> Dict:
        params = {
            "name": query.subject,
            "minMatch": query.min_match,
            "limit": query.limit,
        }
        if query.sdn_type:
            params["sdnType"] = query.sdn_type
        headers = {"X-Request-ID": query.request_id} if query.request_id else None
        response = self._get("/search", subject=query.subject, params=params, headers=headers, deadline=deadline)
        return self._json(response, query.subject)

    def _lookup(self, path: str, subject: str, deadline: Optional[float]) -> Optional[Dict]:
        try:
            response = self._get(path, subject=subject, deadline=deadline)
        except TransportError as e:
            if e.status_code == 404:
                return None
            raise
        return self._json(response, subject)

    def get_ofac_customer(
        self, entity_id: str, *, subject: str = "", deadline: Optional[float] = None
    ) -> Optional[Dict]:
        return self._lookup(f"/ofac/customers/{quote(entity_id, safe='')}", subject or entity_id, deadline)

    def get_ofac_company(
        self, entity_id: str, *, subject: str = "", deadline: Optional[float] = None
    ) -> Optional[Dict]:
        return self._lookup(f"/ofac/companies/{quote(entity_id, safe='')}", subject or entity_id, deadline)


def search_by_name(client: WatchmanClient, query: SearchQuery) -> Optional[Candidate]:
    """
    Search one subject. Returns the best candidate, or None when nothing
    matched. When the service only found an alternate name, the entity behind
    it is fetched (customer first, then company) and used only if the lookup
    echoes the requested entity id. All requests for the subject share one
    deadline of ``client.timeout`` seconds.
    """
    if not query.subject.strip():
        raise ValidationError("subject name is empty")

    deadline = time.monotonic() + client.timeout
    result = client.search(query, deadline=deadline)
    sdns = result.get("SDNs") or []
    alt_names = result.get("altNames") or []
    logger.debug("[VERBOSE] search_result SDNs=%d; AltNames=%d", len(sdns), len(alt_names))

    if sdns:
        # Results come back sorted by descending match; keep the best one.
        return Candidate.from_sdn(sdns[0])

    if alt_names:
        alt = alt_names[0]
        alt_entity_id = str(alt.get("entityID") or "")
        logger.debug("[VERBOSE] alternateName=%s; altEntityID=%s", alt.get("alternateName"), alt_entity_id)
        if alt_entity_id:
            for lookup in (client.get_ofac_customer, client.get_ofac_company):
                found = lookup(alt_entity_id, subject=query.subject, deadline=deadline) or {}
                sdn = found.get("sdn") or {}
                if str(sdn.get("entityID") or "") == alt_entity_id:
                    return Candidate.from_sdn(sdn, score=alt.get("match") or 0.0)
            logger.debug("[VERBOSE] altEntityID=%s did not resolve", alt_entity_id)

    return None


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def _screen_row(row: InputRow, search_fn: SearchFn, config: ScreeningConfig) -> RowResult:
    subject = row.subject
    try:
        candidate = search_fn(SearchQuery.for_subject(subject, config))
    except BatchSearchError as e:
        logger.error("[FAILED] problem searching for '%s': %s", subject, e)
        return RowResult(index=row.index, row=row.text, status=STATUS_FAILED, error=str(e))
    except Exception as e:
        logger.exception("[FAILED] unexpected error searching for '%s'", subject)
        return RowResult(index=row.index, row=row.text, status=STATUS_FAILED, error=f"{type(e).__name__}: {e}")

    if candidate is None:
        logger.debug("[RESULT] no hits for %s", subject)
    else:
        logger.debug(_result_string(candidate, subject, config.threshold))
    return RowResult(index=row.index, row=row.text, candidate=candidate)


def dispatch(
    header: str,
    rows: Sequence[InputRow],
    search_fn: SearchFn,
    config: Optional[ScreeningConfig] = None,
    *,
    progress: bool = False,
) -> BatchResult:
    """
    Screen every row with at most ``config.workers`` searches in flight.

    Submitting a row blocks until a worker slot is free. Each task writes its
    own slot (row i -> lines[i + 1]), so output order is input order however
    the searches complete. Row failures are recorded on the row and never
    stop the batch.
    """
    config = (config or ScreeningConfig()).validate()
    total = len(rows)
    lines: List[Optional[str]] = [None] * (total + 1)
    results: List[Optional[RowResult]] = [None] * total
    lines[0] = format_header(header, config.separator)

    logger.info("Processing %d rows with %d workers", total, config.workers)

    gate = threading.BoundedSemaphore(config.workers)
    bar_lock = threading.Lock()

    with tqdm(total=total, desc="Screening", unit="row", leave=False, disable=not progress) as pbar:

        def task(row: InputRow) -> None:
            try:
                result = _screen_row(row, search_fn, config)
                results[row.index] = result
                lines[row.index + 1] = format_result(result, config.threshold, config.separator)
            finally:
                gate.release()
                with bar_lock:
                    pbar.update(1)

        with ThreadPoolExecutor(max_workers=config.workers, thread_name_prefix="batchsearch") as ex:
            futures = []
            for row in rows:
                gate.acquire()
                futures.append(ex.submit(task, row))
        for future in futures:
            future.result()

    missing = sum(1 for line in lines if line is None)
    if missing or len(lines) != total + 1:
        raise BatchError(f"expected {total + 1} output rows, got {total + 1 - missing}")

    batch = BatchResult(header=header, lines=tuple(lines), results=tuple(results))
    if batch.failed == 0:
        logger.info("[SUCCESS] %d/%d checks complete", batch.succeeded, batch.total)
    elif batch.ok:
        logger.warning("[PARTIAL] %d/%d checks complete, %d failed", batch.succeeded, batch.total, batch.failed)
    else:
        logger.error("[FAILURE] all %d checks failed", batch.total)
    return batch


def screen_text(
    raw_text: str,
    config: Optional[ScreeningConfig] = None,
    *,
    client: Optional[WatchmanClient] = None,
    progress: bool = False,
) -> BatchResult:
    """Parse CSV text and screen every row against the search service."""
    config = config or ScreeningConfig()
    client = client or WatchmanClient.from_config(config)
    header, rows = parse_rows(raw_text)
    return dispatch(header, rows, functools.partial(search_by_name, client), config, progress=progress)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _output_path(args: argparse.Namespace) -> Optional[Path]:
    if args.output:
        return Path(args.output)
    if args.write:
        source = Path(args.file)
        return source.with_name(f"{source.stem}_output.csv")
    return None


def main(argv: List[str]) -> int:
    p = argparse.ArgumentParser(
        prog="batchsearch",
        description="Screen a CSV of names against a Watchman sanctions search service",
    )
    p.add_argument("--address", default=DEFAULT_API_ADDRESS, help="Search service base URL")
    p.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="Time budget per row in seconds")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable detailed logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("ping", help="Check that the search service is reachable")

    p_sc = sub.add_parser("screen", help="Screen every row of a CSV (or XLSX) file")
    p_sc.add_argument("file")
    p_sc.add_argument("--threshold", type=float, default=DEFAULT_THRESHOLD,
                      help="Score at or above which a hit is reported as MATCH")
    p_sc.add_argument("--min-match", type=float, default=DEFAULT_MIN_MATCH, help="How close must names match")
    p_sc.add_argument("--sdn-type", default=DEFAULT_SDN_TYPE)
    p_sc.add_argument("--request-id", default=None, help="Value for the X-Request-ID header")
    p_sc.add_argument("--limit", type=int, default=DEFAULT_LIMIT)
    p_sc.add_argument("--workers", type=int, default=DEFAULT_WORKERS, help="How many searches to run concurrently")
    p_sc.add_argument("--separator", default=DEFAULT_SEPARATOR, help="Separator for the appended result columns")
    p_sc.add_argument("--write", action="store_true", help="Write results to <file>_output.csv")
    p_sc.add_argument("--output", default=None, help="Write results to this path")
    p_sc.add_argument("--no-progress", action="store_true", help="Hide the progress bar")

    p_sv = sub.add_parser("serve", help="Run the HTTP batch screening endpoint")
    p_sv.add_argument("--host", default="127.0.0.1")
    p_sv.add_argument("--port", type=int, default=8080)
    p_sv.add_argument("--max-rows", type=int, default=None, help="Truncate uploads to this many rows")

    args = p.parse_args(argv)
    _setup_logging(args.verbose)

    if args.cmd == "ping":
        client = WatchmanClient(args.address, timeout=args.timeout)
        try:
            client.ping()
        except BatchSearchError as e:
            print(f"ERROR ping: {e}", file=sys.stderr)
            return 1
        print(f"[SUCCESS] ping {client.address}", file=sys.stderr)
        return 0

    if args.cmd == "screen":
        try:
            config = ScreeningConfig(
                address=args.address,
                timeout=args.timeout,
                workers=args.workers,
                threshold=args.threshold,
                min_match=args.min_match,
                sdn_type=args.sdn_type,
                request_id=args.request_id,
                limit=args.limit,
                separator=args.separator,
            ).validate()
            raw = read_input_text(Path(args.file))
        except (BatchSearchError, OSError) as e:
            print(f"ERROR screen: {e}", file=sys.stderr)
            return 1

        logger.debug(_settings_string(config))
        client = WatchmanClient.from_config(config)
        try:
            client.ping()
            batch = screen_text(raw, config, client=client, progress=not args.no_progress)
        except BatchSearchError as e:
            print(f"ERROR screen: {e}", file=sys.stderr)
            return 1

        out_path = _output_path(args)
        if out_path is not None:
            out_path.write_text(batch.text + "\n", encoding="utf-8")
            print(f"Results written to {out_path}", file=sys.stderr)
        else:
            sys.stdout.write(batch.text + "\n")

        print(f"Screened: {batch.succeeded}/{batch.total} rows ({batch.failed} failed)", file=sys.stderr)
        return 0 if batch.ok else 1

    if args.cmd == "serve":
        from batchsearch_server import DEFAULT_MAX_ROWS, create_app

        config = ScreeningConfig(address=args.address, timeout=args.timeout)
        app = create_app(config, max_rows=args.max_rows or DEFAULT_MAX_ROWS)
        app.run(host=args.host, port=args.port)
        return 0

    return 2


def cli() -> int:
    return main(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
