"""
Centralized Configuration Management
====================================
All configuration values are read from environment variables, optionally
loaded from a local .env file.
"""
import os
import logging
import tempfile
from enum import Enum
from typing import List

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))


class Environment(str, Enum):
    """Deployment environment types"""
    DEV = "dev"
    PROD = "prod"
    TEST = "test"
    LOCAL = "local"


def _get_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Service configuration with environment-aware settings"""

    # ==================== ENVIRONMENT DETECTION ====================
    @staticmethod
    def get_environment() -> Environment:
        """Detect current deployment environment from ENV variable"""
        env = os.getenv("ENV", "local").lower()
        if env in ["dev", "development"]:
            return Environment.DEV
        elif env in ["prod", "production"]:
            return Environment.PROD
        elif env in ["test", "testing"]:
            return Environment.TEST
        return Environment.LOCAL

    ENVIRONMENT = get_environment()

    # ==================== SERVER CONFIGURATION ====================
    PORT: int = int(os.getenv("PORT", "3000"))
    HOST: str = os.getenv("HOST", "0.0.0.0")

    # ==================== SANDBOX CONFIGURATION ====================
    # Scratch directory holding one SQLite file per live session
    SANDBOX_DIR: str = os.getenv("SANDBOX_DIR", os.path.join(tempfile.gettempdir(), "sqljudge"))

    # Baseline seed applied when a session's group has no registered seed
    BASE_SEED_PATH: str = os.getenv("BASE_SEED_PATH", os.path.join(PACKAGE_DIR, "seed.sql"))

    DEFAULT_GROUP_ID: str = os.getenv("DEFAULT_GROUP_ID", "default").strip() or "default"

    # Wrap every submission in a single transaction (rolled back on first failure)
    ATOMIC_EXECUTION: bool = _get_bool("ATOMIC_EXECUTION")

    # ==================== VALIDATION LIMITS ====================
    MAX_SQL_LENGTH: int = int(os.getenv("MAX_SQL_LENGTH", "10000"))
    MAX_STATEMENTS: int = int(os.getenv("MAX_STATEMENTS", "20"))

    # ==================== LOGGING ====================
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # ==================== VALIDATION ====================
    @classmethod
    def validate_config(cls) -> None:
        """Validate critical configuration settings"""
        errors: List[str] = []

        if cls.MAX_SQL_LENGTH < 1:
            errors.append("MAX_SQL_LENGTH must be a positive integer")
        if cls.MAX_STATEMENTS < 1:
            errors.append("MAX_STATEMENTS must be a positive integer")
        if not (0 < cls.PORT < 65536):
            errors.append(f"PORT out of range: {cls.PORT}")
        if not os.path.isfile(cls.BASE_SEED_PATH):
            errors.append(f"BASE_SEED_PATH does not point to a file: {cls.BASE_SEED_PATH}")
        if not isinstance(logging.getLevelName(cls.LOG_LEVEL), int):
            errors.append(f"Unknown LOG_LEVEL: {cls.LOG_LEVEL}")

        if errors:
            raise ValueError("Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors))

        logger.info(f"Configuration validated successfully for {cls.ENVIRONMENT.value} environment")

    @classmethod
    def print_config_summary(cls) -> None:
        """Log configuration summary"""
        logger.info("=" * 60)
        logger.info(f"SQL Judge Configuration Summary - {cls.ENVIRONMENT.value.upper()} Environment")
        logger.info("=" * 60)
        logger.info(f"Sandbox directory: {cls.SANDBOX_DIR}")
        logger.info(f"Baseline seed: {cls.BASE_SEED_PATH}")
        logger.info(f"Default group: {cls.DEFAULT_GROUP_ID}")
        logger.info(f"Limits: {cls.MAX_SQL_LENGTH} chars, {cls.MAX_STATEMENTS} statements")
        logger.info(f"Atomic execution: {'enabled' if cls.ATOMIC_EXECUTION else 'disabled'}")
        logger.info(f"Listening on {cls.HOST}:{cls.PORT}")
        logger.info("=" * 60)
