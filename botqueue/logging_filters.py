# --- Global log sanitizer: keep shared secrets out of the logs -----------------
import logging, re

_BEARER_RE = re.compile(r'(?i)(bearer\s+)[A-Za-z0-9._~+/=-]+')
_KV_SECRET_RE = re.compile(r'(?i)\b((?:cron_secret|token|api_key|secret)["\']?\s*[:=]\s*["\']?)[^\s"\',}]+')

REDACTED = "[REDACTED]"


def redact(s: str) -> str:
    s = _BEARER_RE.sub(lambda m: m.group(1) + REDACTED, s)
    return _KV_SECRET_RE.sub(lambda m: m.group(1) + REDACTED, s)


class _SecretRedactFilter(logging.Filter):
    """If a log message carries a bearer token or secret=..., mask the value."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            return True
        if isinstance(msg, str):
            cleaned = redact(msg)
            if cleaned != msg:
                record.msg = cleaned
                record.args = ()
        return True


# install once on common loggers (root + uvicorn family)
for _name in ("", "uvicorn", "uvicorn.error", "uvicorn.access"):
    logging.getLogger(_name).addFilter(_SecretRedactFilter())
# --------------------------------------------------------------------------------
