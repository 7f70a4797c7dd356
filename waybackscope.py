#!/usr/bin/env python3
"""
WaybackScope URL Collector
==========================
Collects every archived URL the Wayback Machine knows for a set of domains.
Domains are fanned out to a pool of worker threads, each streaming the CDX
index response line by line into a shared channel that a single consumer
writes to the console and, optionally, to a file.
"""

import argparse
import logging
import os
import queue
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, TextIO
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from tqdm import tqdm

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CDX_ENDPOINT = "https://web.archive.org/cdx/search/cdx"
DEFAULT_USER_AGENT = "WaybackScope/1.0 (@h6nt3r)"

DEFAULT_TIMEOUT = 10  # seconds
DEFAULT_WORKERS = 5
DEFAULT_RETRIES = 2
DEFAULT_DELAY_MS = 0
BACKOFF_STEP = 0.5  # seconds, multiplied by the attempt number
RESULT_BUFFER_SIZE = 1000
PUT_POLL_INTERVAL = 0.1  # seconds between stop checks while the result buffer is full

URL_SCHEMES = ("http://", "https://")

# Requests that can never succeed no matter how often they are retried.
_UNRETRYABLE_ERRORS = (
    requests.exceptions.InvalidURL,
    requests.exceptions.MissingSchema,
    requests.exceptions.InvalidSchema,
)

# Queue sentinels
_STOP = object()
_END_OF_STREAM = object()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Target:
    """A normalized host to query; ``exact`` excludes its subdomains."""

    name: str
    exact: bool = False


class ErrorCounters:
    """Failed-attempt tallies shared by every worker thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._timeouts = 0
        self._others = 0

    def record_timeout(self) -> None:
        with self._lock:
            self._timeouts += 1

    def record_other(self) -> None:
        with self._lock:
            self._others += 1

    @property
    def timeout_errors(self) -> int:
        with self._lock:
            return self._timeouts

    @property
    def other_errors(self) -> int:
        with self._lock:
            return self._others


@dataclass
class RunSummary:
    total_urls: int
    elapsed_seconds: float
    timeout_errors: int
    other_errors: int
    output_file: str | None = None

    @property
    def minutes_seconds(self) -> tuple[int, int]:
        """Elapsed time as whole minutes and remainder seconds."""
        return divmod(int(self.elapsed_seconds), 60)


class DomainListError(Exception):
    """Raised when the domain list file or piped input cannot be read."""


class OutputFileError(Exception):
    """Raised when the output file cannot be created."""


class _RunStopped(Exception):
    """The consumer went away; workers abandon the current target."""


# ---------------------------------------------------------------------------
# Domain normalization and target resolution
# ---------------------------------------------------------------------------

def _strip_scheme(value: str) -> str:
    for scheme in URL_SCHEMES:
        value = value.removeprefix(scheme)
    return value


def normalize_domain(line: str) -> str:
    """
    Turn a free-form input line into a bare host name.

    Examples:
        "https://example.com/" -> "example.com"
        "example.com/"         -> "example.com"
        "sub.example.com"      -> "sub.example.com"

    Malformed hosts are passed through untouched; nothing here validates
    that the result is a real host name.
    """
    domain = line.strip()
    if not domain:
        return ""

    if domain.startswith(URL_SCHEMES):
        try:
            netloc = urlparse(domain).netloc
        except ValueError:
            netloc = ""
        # host[:port] only, credentials are dropped
        host = netloc.rpartition("@")[2]
        domain = host if host else _strip_scheme(domain)

    return domain.rstrip("/")


def read_piped_domains(stream: TextIO | None) -> list[str]:
    """Return normalized domains from ``stream`` if it is piped, not a terminal."""
    if stream is None or stream.isatty():
        return []

    domains = []
    try:
        for line in stream:
            domain = normalize_domain(line)
            if domain:
                domains.append(domain)
    except UnicodeDecodeError as exc:
        raise DomainListError(f"Error reading piped input: {exc}") from exc
    return domains


def read_domain_list(path: str) -> list[str]:
    """
    Read a domain list file, skipping blank lines and ``#`` comments.

    Raises DomainListError if the file cannot be opened or decoded.
    """
    domains = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                domain = normalize_domain(line)
                if domain:
                    domains.append(domain)
    except (OSError, UnicodeDecodeError) as exc:
        raise DomainListError(f"Error reading domain list: {exc}") from exc
    return domains


def resolve_targets(
    piped_domains: list[str],
    domain_list: str | None = None,
    wildcard: str | None = None,
    exact: str | None = None,
) -> list[Target]:
    """
    Build the ordered target list from the first input source that has any.

    Precedence
    ----------
    1. piped domains, each queried exactly
    2. the domain list file, each queried with subdomains
    3. the single ``wildcard`` and ``exact`` values, which may be combined

    Lower-precedence sources are ignored once a higher one yields targets.
    """
    if piped_domains:
        return [Target(name, exact=True) for name in piped_domains]

    if domain_list:
        return [Target(name, exact=False) for name in read_domain_list(domain_list)]

    targets = []
    for value, is_exact in ((wildcard, False), (exact, True)):
        if not value:
            continue
        name = normalize_domain(value)
        if name:
            targets.append(Target(name, exact=is_exact))
    return targets


# ---------------------------------------------------------------------------
# Archive fetching
# ---------------------------------------------------------------------------

def build_query_url(target: Target) -> str:
    """CDX query for one target: deduplicated, plain text, original URLs only."""
    pattern = f"{target.name}/*" if target.exact else f"*.{target.name}/*"
    return f"{CDX_ENDPOINT}?url={pattern}&collapse=urlkey&output=text&fl=original"


def make_session(user_agent: str = DEFAULT_USER_AGENT, pool_size: int = DEFAULT_WORKERS) -> requests.Session:
    """Create a shared session whose connection pool fits every worker."""
    session = requests.Session()
    session.headers["User-Agent"] = user_agent
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def fetch_target(
    target: Target,
    emit: Callable[[str], None],
    session: requests.Session,
    counters: ErrorCounters,
    retries: int = DEFAULT_RETRIES,
    timeout: float = DEFAULT_TIMEOUT,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """
    Stream every archived URL for ``target`` into ``emit``.

    Transport failures are counted and retried up to ``retries`` more times
    with a linear backoff; after that the target is dropped silently. Once a
    response arrives its body is streamed to the end, and a failure while
    reading it stops the target without a retry.

    Each attempt must finish within ``timeout`` seconds of starting, body
    included; reading stops at that deadline and counts as a failed read.

    Returns the number of lines emitted.
    """
    url = build_query_url(target)
    attempts = retries + 1

    for attempt in range(1, attempts + 1):
        deadline = clock() + timeout
        try:
            resp = session.get(url, timeout=timeout, stream=True)
        except _UNRETRYABLE_ERRORS as exc:
            counters.record_other()
            logger.debug("Bad request for %s: %s", target.name, exc)
            return 0
        except requests.exceptions.Timeout as exc:
            counters.record_timeout()
            logger.debug("Attempt %d/%d for %s timed out: %s", attempt, attempts, target.name, exc)
        except requests.exceptions.RequestException as exc:
            counters.record_other()
            logger.debug("Attempt %d/%d for %s failed: %s", attempt, attempts, target.name, exc)
        else:
            with resp:
                return _stream_lines(target, resp, emit, counters, deadline, clock)

        if attempt < attempts:
            sleep(BACKOFF_STEP * attempt)

    logger.debug("Giving up on %s after %d attempts", target.name, attempts)
    return 0


def _stream_lines(
    target: Target,
    resp: requests.Response,
    emit: Callable[[str], None],
    counters: ErrorCounters,
    deadline: float,
    clock: Callable[[], float],
) -> int:
    if not 200 <= resp.status_code < 300:
        logger.warning("Archive returned HTTP %d for %s", resp.status_code, target.name)

    emitted = 0
    try:
        for raw in resp.iter_lines():
            if clock() > deadline:
                counters.record_other()
                logger.debug("Request for %s ran past its deadline after %d lines", target.name, emitted)
                break
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                emit(line)
                emitted += 1
    except requests.exceptions.RequestException as exc:
        counters.record_other()
        logger.debug("Stream for %s broke after %d lines: %s", target.name, emitted, exc)

    logger.debug("Fetched %d URLs for %s", emitted, target.name)
    return emitted


# ---------------------------------------------------------------------------
# Worker pool and output sink
# ---------------------------------------------------------------------------

def _emitter(results: queue.Queue, stop: threading.Event) -> Callable[[str], None]:
    """Return an ``emit`` that blocks on a full buffer only until ``stop`` is set."""

    def emit(line: str) -> None:
        while not stop.is_set():
            try:
                results.put(line, timeout=PUT_POLL_INTERVAL)
                return
            except queue.Full:
                continue
        raise _RunStopped

    return emit


def _worker(
    targets: queue.Queue,
    results: queue.Queue,
    stop: threading.Event,
    session: requests.Session,
    counters: ErrorCounters,
    retries: int,
    timeout: float,
    delay: float,
    sleep: Callable[[float], None],
    pbar: tqdm,
) -> None:
    """Process targets one at a time until the stop sentinel or ``stop`` arrives."""
    emit = _emitter(results, stop)
    while not stop.is_set():
        target = targets.get()
        if target is _STOP:
            return
        try:
            fetch_target(target, emit, session, counters, retries, timeout, sleep)
        except _RunStopped:
            return
        except Exception as exc:
            logger.error("Unhandled error fetching %s: %s", target.name, exc)
            counters.record_other()
        finally:
            pbar.update(1)
        if delay > 0:
            sleep(delay)


def _close_when_done(futures: list, results: queue.Queue) -> None:
    wait(futures)
    for future in futures:
        exc = future.exception()
        if exc is not None:
            logger.error("Worker stopped unexpectedly: %s", exc)
    results.put(_END_OF_STREAM)


def drain_results(
    results: queue.Queue,
    out_file: TextIO | None = None,
    echo: Callable[[str], None] | None = None,
) -> int:
    """
    Consume the result channel until end of stream.

    Every line goes to ``echo`` (stdout by default) and, when given, to
    ``out_file`` in arrival order. Returns the number of lines consumed.
    """
    if echo is None:
        echo = _print_line

    total = 0
    while True:
        line = results.get()
        if line is _END_OF_STREAM:
            break
        echo(line)
        if out_file is not None:
            out_file.write(line + "\n")
        total += 1
    return total


def _print_line(line: str) -> None:
    sys.stdout.write(line + "\n")


# ---------------------------------------------------------------------------
# Main orchestration
# ---------------------------------------------------------------------------

def run_collector(
    targets: list[Target],
    max_workers: int = DEFAULT_WORKERS,
    output_file: str | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
    retries: int = DEFAULT_RETRIES,
    delay_ms: int = DEFAULT_DELAY_MS,
    progress: bool = False,
    session: requests.Session | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunSummary:
    """
    Fetch every target concurrently and stream the URLs to the outputs.

    The output file is created before any request is sent; OutputFileError
    is raised if that fails, with no network activity.
    """
    out_file = None
    if output_file:
        try:
            out_file = open(output_file, "w", encoding="utf-8")
        except OSError as exc:
            raise OutputFileError(f"Error creating file: {exc}") from exc
    if session is None:
        session = make_session(user_agent, max_workers)

    counters = ErrorCounters()
    start = time.monotonic()

    target_queue: queue.Queue = queue.Queue()
    for target in targets:
        target_queue.put(target)
    for _ in range(max_workers):
        target_queue.put(_STOP)

    results: queue.Queue = queue.Queue(maxsize=RESULT_BUFFER_SIZE)
    stop = threading.Event()

    logger.info(
        "Fetching archived URLs for %d domains with %d workers...",
        len(targets),
        max_workers,
    )

    with tqdm(
        total=len(targets),
        desc="Fetching domains",
        unit="domain",
        disable=not progress,
    ) as pbar:
        echo = None if pbar.disable else (lambda line: tqdm.write(line, file=sys.stdout))
        executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="wayback")
        futures = [
            executor.submit(
                _worker,
                target_queue,
                results,
                stop,
                session,
                counters,
                retries,
                timeout,
                delay_ms / 1000,
                sleep,
                pbar,
            )
            for _ in range(max_workers)
        ]
        closer = threading.Thread(
            target=_close_when_done,
            args=(futures, results),
            name="wayback-closer",
            daemon=True,
        )
        closer.start()

        try:
            total = drain_results(results, out_file, echo)
        except BaseException:
            stop.set()
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        finally:
            if out_file is not None:
                out_file.close()
        executor.shutdown(wait=True)

    return RunSummary(
        total_urls=total,
        elapsed_seconds=time.monotonic() - start,
        timeout_errors=counters.timeout_errors,
        other_errors=counters.other_errors,
        output_file=output_file,
    )


def _print_summary(summary: RunSummary) -> None:
    """Print the end-of-run report to stdout."""
    minutes, seconds = summary.minutes_seconds
    if summary.output_file:
        print(f"[+] Saved {summary.total_urls} URLs to {summary.output_file}")
    print(f"Time taken: {minutes} Minute {seconds} Second")
    print(f"Timeout Errors: {summary.timeout_errors}")
    print(f"Other Errors:   {summary.other_errors}")


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def _silence_stdout() -> None:
    """Point stdout at devnull so the interpreter's final flush cannot fail again."""
    devnull = os.open(os.devnull, os.O_WRONLY)
    os.dup2(devnull, sys.stdout.fileno())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="waybackscope",
        description="Collect archived URLs for domains from the Wayback Machine CDX index.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  waybackscope -d example.com                 # example.com and subdomains\n"
            "  waybackscope -u example.com -o urls.txt     # example.com only\n"
            "  waybackscope -dl domains.txt -w 10 -s\n"
            "  cat hosts.txt | waybackscope                # piped hosts, exact match\n"
            "\n"
            "Legal disclaimer: using this tool against targets without prior mutual\n"
            "consent is illegal. The end user is responsible for obeying all applicable\n"
            "laws; the developers assume no liability for misuse.\n"
        ),
    )
    parser.add_argument(
        "-u", "--exact",
        type=str,
        default=None,
        help="Target domain only (no subdomains, e.g., example.com)",
    )
    parser.add_argument(
        "-d", "--domain",
        type=str,
        default=None,
        help="Target domain with subdomains (e.g., example.com)",
    )
    parser.add_argument(
        "-dl", "--domain-list",
        type=str,
        default=None,
        help="File containing list of domains (one per line)",
    )
    parser.add_argument(
        "-t", "--timeout",
        type=int,
        default=DEFAULT_TIMEOUT,
        help=f"Timeout in seconds (default: {DEFAULT_TIMEOUT})",
    )
    parser.add_argument(
        "-w", "--workers",
        type=int,
        default=DEFAULT_WORKERS,
        help=f"Number of concurrent workers (default: {DEFAULT_WORKERS})",
    )
    parser.add_argument(
        "-s", "--silent",
        action="store_true",
        help="Silent mode: print only URLs (no messages, no summary)",
    )
    parser.add_argument(
        "-o", "--output",
        type=str,
        default=None,
        help="Output file (e.g., result.txt)",
    )
    parser.add_argument(
        "-ua", "--user-agent",
        type=str,
        default=DEFAULT_USER_AGENT,
        help="Custom User-Agent for Wayback requests",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=DEFAULT_RETRIES,
        help=f"Number of retries per domain on transient errors (default: {DEFAULT_RETRIES})",
    )
    parser.add_argument(
        "--delay-ms",
        type=int,
        default=DEFAULT_DELAY_MS,
        help="Delay in milliseconds between processing domains, per worker",
    )
    parser.add_argument(
        "--progress",
        action="store_true",
        help="Show a progress bar of completed domains on stderr",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose/debug logging",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    silent = args.silent

    if silent:
        logging.disable(logging.CRITICAL)
    elif args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        targets = resolve_targets(
            read_piped_domains(sys.stdin),
            domain_list=args.domain_list,
            wildcard=args.domain,
            exact=args.exact,
        )
    except DomainListError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    if not targets:
        if not silent:
            parser.print_help()
        return

    try:
        summary = run_collector(
            targets,
            max_workers=max(1, args.workers),
            output_file=args.output,
            timeout=max(1, args.timeout),
            user_agent=args.user_agent,
            retries=max(0, args.retries),
            delay_ms=max(0, args.delay_ms),
            progress=args.progress and not silent,
        )
        if not silent:
            _print_summary(summary)
    except OutputFileError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    except BrokenPipeError:
        # stdout reader went away, e.g. piped into head
        _silence_stdout()
        sys.exit(1)


if __name__ == "__main__":
    main()
