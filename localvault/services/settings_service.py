"""Database-backed tunables with built-in defaults and typed accessors."""

import logging
import os
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from localvault.models import Setting
from localvault.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)


class SettingsService:
    """Read and write rows of the settings table.

    Every known key is declared in DEFAULTS with its default value, category,
    description and, for numeric keys, the accepted range.
    """

    DEFAULTS: dict[str, dict[str, Any]] = {
        # OAuth
        "oauth_origin": {
            "value": os.getenv("LOCALVAULT_ORIGIN", "http://localhost:8788"),
            "category": "oauth",
            "description": "Origin used to build the OAuth redirect URI (<origin>/oauth/google/callback)",
        },
        "pending_authorization_ttl_minutes": {
            "value": "10",
            "min": 1,
            "max": 60,
            "category": "oauth",
            "description": "Minutes an in-flight authorization stays valid before the callback must arrive",
        },
        "token_expiry_buffer_seconds": {
            "value": "300",
            "min": 0,
            "max": 3600,
            "category": "oauth",
            "description": "Treat access tokens as expired this many seconds before their real expiry",
        },
        # Imports
        "import_request_timeout": {
            "value": "30",
            "min": 1,
            "max": 300,
            "category": "imports",
            "description": "Per-request timeout for provider API calls (seconds)",
        },
        "import_max_attempts": {
            "value": "3",
            "min": 1,
            "max": 10,
            "category": "imports",
            "description": "Maximum attempts per provider request before the import fails (1-10)",
        },
        "import_backoff_base": {
            "value": "1.0",
            "min": 0,
            "max": 60,
            "category": "imports",
            "description": "First retry delay; doubles on every further retry (seconds)",
        },
        "import_item_delay_ms": {
            "value": "",
            "min": 0,
            "max": 10000,
            "category": "imports",
            "description": "Delay between item fetches (ms). Empty uses the per-category default",
        },
        # Security
        "password_kdf_iterations": {
            "value": "600000",
            "min": 100000,
            "category": "security",
            "description": "PBKDF2 iterations for new password-wrapped master keys (minimum 100000)",
        },
    }

    @classmethod
    async def init_defaults(cls, db: AsyncSession) -> None:
        """Insert a row for every DEFAULTS key that has none; existing values are kept."""
        existing = set((await db.execute(select(Setting.key))).scalars().all())
        missing = [key for key in cls.DEFAULTS if key not in existing]
        for key in missing:
            config = cls.DEFAULTS[key]
            db.add(
                Setting(
                    key=key,
                    value=config["value"],
                    category=config["category"],
                    description=config["description"],
                )
            )
        await db.commit()
        if missing:
            logger.info("Initialized %d default settings", len(missing))

    @classmethod
    async def get(cls, db: AsyncSession, key: str, default: Optional[str] = None) -> Optional[str]:
        """Stored value of key.

        Without a row, the caller's default wins; failing that, the built-in
        default from DEFAULTS.
        """
        row = await db.get(Setting, key)
        if row is not None:
            return row.value
        if default is None and key in cls.DEFAULTS:
            return cls.DEFAULTS[key]["value"]
        return default

    @classmethod
    async def _get_parsed(cls, db: AsyncSession, key: str, parse, default):
        raw = await cls.get(db, key)
        if raw is None or not raw.strip():
            return default
        try:
            return parse(raw.strip())
        except ValueError:
            logger.warning("Setting %s has unusable value %s", key, sanitize_log_message(raw))
            return default

    @classmethod
    async def get_bool(cls, db: AsyncSession, key: str, default: bool = False) -> bool:
        return await cls._get_parsed(
            db, key, lambda raw: raw.lower() in ("true", "1", "yes", "on"), default
        )

    @classmethod
    async def get_int(cls, db: AsyncSession, key: str, default: int = 0) -> int:
        return await cls._get_parsed(db, key, int, default)

    @classmethod
    async def get_float(cls, db: AsyncSession, key: str, default: float = 0.0) -> float:
        return await cls._get_parsed(db, key, float, default)

    @classmethod
    def validate(cls, key: str, value: str) -> str:
        """Check a value against the bounds declared in DEFAULTS.

        Args:
            key: Setting key
            value: Proposed value

        Returns:
            The value, stripped

        Raises:
            KeyError: If key is not a known setting
            ValueError: If a numeric setting is not a number or out of range
        """
        config = cls.DEFAULTS[key]
        value = value.strip()
        if "min" not in config or value == "":
            return value
        try:
            number = float(value)
        except ValueError:
            raise ValueError(f"Setting '{key}' must be a number") from None
        if number < config["min"]:
            raise ValueError(f"Setting '{key}' must be at least {config['min']}")
        if "max" in config and number > config["max"]:
            raise ValueError(f"Setting '{key}' must be at most {config['max']}")
        return value

    @classmethod
    async def set(cls, db: AsyncSession, key: str, value: str) -> Setting:
        """Create or overwrite a setting and commit.

        Unknown keys are stored under the "general" category.
        """
        row = await db.get(Setting, key)
        if row is None:
            config = cls.DEFAULTS.get(key, {})
            row = Setting(
                key=key,
                value=value,
                category=config.get("category", "general"),
                description=config.get("description"),
            )
            db.add(row)
        else:
            row.value = value
        await db.commit()
        await db.refresh(row)
        logger.info("Setting %s updated", sanitize_log_message(key))
        return row

    @staticmethod
    async def get_all(db: AsyncSession, category: Optional[str] = None) -> list[Setting]:
        """All settings ordered by category then key, optionally one category only."""
        query = select(Setting).order_by(Setting.category, Setting.key)
        if category:
            query = query.where(Setting.category == category)
        return list((await db.execute(query)).scalars().all())
