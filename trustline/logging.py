import structlog, sys, pathlib, os

_LOG_STREAM = None
SECRET_FIELDS = ("secret", "password", "key", "plaintext")


def log_path() -> pathlib.Path:
    """TRUSTLINE_LOG if set, else ~/.local/state/trustline/trustline.log."""
    override = os.environ.get("TRUSTLINE_LOG")
    if override:
        return pathlib.Path(override)
    return pathlib.Path.home() / ".local" / "state" / "trustline" / "trustline.log"


def _log_handle():
    global _LOG_STREAM
    if _LOG_STREAM is None:
        path = log_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
        os.chmod(path, 0o600)
        _LOG_STREAM = os.fdopen(fd, "a", buffering=1)
    return _LOG_STREAM


def _line_renderer(_, __, event_dict):
    """`<ts> [LEVEL] event k=v ...` with error codes first so failures grep easily."""
    ts = event_dict.pop("timestamp", "")
    level = event_dict.pop("level", "").upper()
    event = event_dict.pop("event", "")
    fields = []
    if "code" in event_dict:
        fields.append(f"code={event_dict.pop('code')}")
    fields.extend(f"{k}={event_dict[k]}" for k in sorted(event_dict))
    return " ".join([f"{ts} [{level}] {event}"] + fields).strip()


def filter_secrets(_, __, event_dict):
    """Drop fields that may carry passwords, keys or decrypted data."""
    for name in SECRET_FIELDS:
        event_dict.pop(name, None)
    return event_dict


def get_logger(debug: bool = False):
    """
    Configure structlog and return a logger.

    Secrets are filtered in both modes. debug=True sends lines to stderr;
    otherwise they are appended to the 0600 log file from log_path().
    """
    processors = [
        filter_secrets,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.dict_tracebacks,
        _line_renderer,
    ]
    target = sys.stderr if debug else _log_handle()

    # not cached, so module-level loggers follow a later switch to debug
    structlog.configure(
        processors=processors,
        logger_factory=structlog.PrintLoggerFactory(file=target),
        cache_logger_on_first_use=False,
    )
    return structlog.get_logger()
