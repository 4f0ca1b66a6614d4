"""
Configuration dataclasses for the do-not-call registry checker.

This module defines all configuration structures used throughout the system,
including portal endpoints, CAPTCHA retry budgets, OCR engine selection,
cache backends and logging, plus loading them from the environment.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from dotenv import load_dotenv


PORTAL_ORIGIN = "https://tramites.ursec.gub.uy"
PORTAL_BASE_PATH = f"{PORTAL_ORIGIN}/tramites-en-linea/TramitesEnLinea/"
PORTAL_URL = f"{PORTAL_BASE_PATH}apia.portal.PortalAction.run?dshId=1057"


@dataclass
class PortalConfig:
    """Registry portal endpoints and HTTP behavior."""

    portal_url: str = PORTAL_URL
    origin: str = PORTAL_ORIGIN
    base_path: str = PORTAL_BASE_PATH
    timeout_seconds: float = 10.0
    accept_language: str = "es-ES,es;q=0.9,en;q=0.8"


@dataclass
class CaptchaConfig:
    """CAPTCHA solving budgets."""

    max_outer_attempts: int = 10
    max_inner_attempts: int = 3
    inner_delay_seconds: float = 1.0
    # Accepted length of a recognized text before submission
    min_submit_length: int = 3
    max_submit_length: int = 8
    # Length window applied to OCR candidates before ranking
    min_candidate_length: int = 4
    max_candidate_length: int = 8
    charset: str = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"


@dataclass
class OCRConfig:
    """OCR engine selection and worker pool sizing."""

    api_url: Optional[str] = None  # Remote OCR service; local Tesseract when unset
    api_timeout_seconds: float = 30.0
    use_advanced: bool = True
    tesseract_cmd: Optional[str] = None
    max_workers: int = 2


@dataclass
class MySQLConfig:
    """Relational cache backend connection settings."""

    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = ""
    database: str = "no_llamar_cache"
    ssl: bool = False

    @property
    def url(self) -> str:
        """SQLAlchemy URL for the PyMySQL driver."""
        from sqlalchemy.engine import URL

        return URL.create(
            "mysql+pymysql",
            username=self.user,
            password=self.password or None,
            host=self.host,
            port=self.port,
            database=self.database,
        ).render_as_string(hide_password=False)


@dataclass
class CacheConfig:
    """Result cache configuration."""

    enabled: bool = True
    max_age_hours: float = 24.0
    backend: Optional[str] = None  # None selects a backend automatically
    mysql: Optional[MySQLConfig] = None
    mongodb_url: Optional[str] = None
    mongodb_database: str = "no_llamar_cache"
    mongodb_collection: str = "phone_cache"
    blob_token: Optional[str] = None
    blob_api_url: str = "https://blob.vercel-storage.com"


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    portal: PortalConfig = field(default_factory=PortalConfig)
    captcha: CaptchaConfig = field(default_factory=CaptchaConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    language: str = "es"  # 'es' or 'en'
    simulation_mode: bool = False
    startup_self_test: bool = False


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    try:
        return float(env[key])
    except (KeyError, ValueError):
        return default


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    try:
        return int(env[key])
    except (KeyError, ValueError):
        return default


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    value = env.get(key)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config_from_env(
    env: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[str] = None,
) -> SystemConfig:
    """
    Build a SystemConfig from environment variables.

    When no mapping is given, a .env file is loaded first (existing
    variables win) and os.environ is read.

    Args:
        env: Optional mapping to read instead of the process environment
        dotenv_path: Optional explicit path to a .env file

    Returns:
        SystemConfig populated from the environment
    """
    if env is None:
        load_dotenv(dotenv_path)
        env = os.environ

    mysql = None
    if env.get("MYSQL_HOST") and env.get("MYSQL_USER") and env.get("MYSQL_DATABASE"):
        mysql = MySQLConfig(
            host=env["MYSQL_HOST"],
            port=_env_int(env, "MYSQL_PORT", 3306),
            user=env["MYSQL_USER"],
            password=env.get("MYSQL_PASSWORD", ""),
            database=env["MYSQL_DATABASE"],
            ssl=_env_bool(env, "MYSQL_SSL", False),
        )

    mongodb_url = (
        env.get("MONGODB_CONNECTION_STRING")
        or env.get("MONGODB_URL")
        or env.get("MONGO_URL")
        or None
    )

    return SystemConfig(
        portal=PortalConfig(
            timeout_seconds=_env_float(env, "HTTP_TIMEOUT", 10.0),
        ),
        captcha=CaptchaConfig(),
        ocr=OCRConfig(
            api_url=env.get("OCR_API_URL") or None,
            tesseract_cmd=env.get("TESSERACT_CMD") or None,
            max_workers=_env_int(env, "OCR_MAX_WORKERS", 2),
        ),
        cache=CacheConfig(
            enabled=_env_bool(env, "CACHE_ENABLED", True),
            max_age_hours=_env_float(env, "CACHE_MAX_AGE_HOURS", 24.0),
            backend=env.get("CACHE_BACKEND") or None,
            mysql=mysql,
            mongodb_url=mongodb_url,
            blob_token=env.get("BLOB_READ_WRITE_TOKEN") or None,
        ),
        logging=LoggingConfig(
            level=env.get("LOG_LEVEL", "info").lower(),
            output_format=env.get("LOG_FORMAT", "text").lower(),
        ),
        language=env.get("DNC_LANGUAGE", "es").lower(),
        simulation_mode=_env_bool(env, "SIMULATION_MODE", False),
    )
