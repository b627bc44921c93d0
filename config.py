import logging
import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple


DEFAULT_NSE_BASE_URL = "https://www.nseindia.com"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
DEFAULT_CORS_ORIGIN = "https://optionchain-jtbl.onrender.com"


logger = logging.getLogger(__name__)


def _bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() not in {"0", "false", ""}


def _csv(name: str, default: str = "") -> Tuple[str, ...]:
    raw = os.getenv(name, default)
    if not raw:
        return ()
    parts = [segment.strip() for segment in raw.split(",")]
    return tuple(part for part in parts if part)


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        return float(str(raw).strip() or default)
    except (TypeError, ValueError):
        return float(default)


def _env_files() -> List[Path]:
    """Env files to read, the ``OPTIONCHAIN_ENV_FILE`` override first."""

    override = os.getenv("OPTIONCHAIN_ENV_FILE", "").strip()
    files = [Path(override).expanduser()] if override else []
    return files + [Path("/etc/optionchain/optionchain.env")]


def _load_environment_from_file(path: Path) -> None:
    """Load KEY=VALUE pairs from *path* into ``os.environ`` if missing."""

    try:
        text = path.read_text()
    except OSError:
        return

    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        lexer = shlex.shlex(raw_line, posix=True)
        lexer.whitespace_split = True
        lexer.commenters = ""
        try:
            tokens = list(lexer)
        except ValueError:
            continue

        for token in tokens:
            if token == "export" or "=" not in token:
                continue
            name, value = token.split("=", 1)
            name = name.strip()
            if name and not os.getenv(name, "").strip():
                os.environ[name] = value.strip()


def _load_environment() -> None:
    for candidate in _env_files():
        _load_environment_from_file(candidate)


_load_environment()


@dataclass
class Settings:
    # Upstream exchange site
    nse_base_url: str = (os.getenv("NSE_BASE_URL") or DEFAULT_NSE_BASE_URL).rstrip("/")
    nse_cookie_ttl_seconds: float = _float("NSE_COOKIE_TTL_SECONDS", 30 * 60)
    nse_timeout: float = _float("NSE_TIMEOUT", 10.0)
    nse_user_agent: str = os.getenv("NSE_USER_AGENT") or DEFAULT_USER_AGENT
    nse_accept_language: str = os.getenv("NSE_ACCEPT_LANGUAGE") or "en-US,en;q=0.9"

    # Optional forwarding service that relays upstream calls
    upstream_proxy_url: str = os.getenv("UPSTREAM_PROXY_URL", "").strip()
    upstream_proxy_api_key: str = os.getenv("UPSTREAM_PROXY_API_KEY", "").strip()

    # India VIX fallback
    vix_fallback_symbol: str = os.getenv("VIX_FALLBACK_SYMBOL") or "^INDIAVIX"

    # Web layer
    cors_origins: Tuple[str, ...] = _csv("CORS_ORIGINS", DEFAULT_CORS_ORIGIN)
    static_dir: str = os.getenv("STATIC_DIR", "").strip()
    metrics_enabled: bool = _bool("METRICS_ENABLED", "false")
    port: int = int(os.getenv("PORT", "3000"))


settings = Settings()

if settings.nse_cookie_ttl_seconds <= 0:
    settings.nse_cookie_ttl_seconds = 30 * 60.0
if settings.nse_timeout <= 0:
    settings.nse_timeout = 10.0
if settings.upstream_proxy_url and not settings.upstream_proxy_api_key:
    logger.warning(
        "config upstream_proxy_without_api_key url=%s", settings.upstream_proxy_url
    )

logger.info(
    "config startup nse_base_url=%s cookie_ttl=%.0f proxy=%s",
    settings.nse_base_url,
    settings.nse_cookie_ttl_seconds,
    "on" if settings.upstream_proxy_url else "off",
)
