import logging
from typing import List

from sqlalchemy.orm import Session

from src.config import settings
from src.config_management import errors
from src.config_management.schemas import ConfigKey, SystemConfigItem
from src.models import SystemConfig

logger = logging.getLogger(__name__)

# keys that must hold a non-negative integer
INTEGER_KEYS = {ConfigKey.MAX_TOPUP_AMOUNT_PAISA}

DEFAULTS = {
    ConfigKey.MAX_TOPUP_AMOUNT_PAISA: (
        str(settings.MAX_TOPUP_AMOUNT_PAISA),
        "Maximum wallet balance a top-up may reach, in paisa",
    ),
}


class ConfigService:
    """Runtime settings stored in the system_configs table"""

    def __init__(self, db: Session):
        self.db = db

    def list_settings(self) -> List[SystemConfigItem]:
        rows = self.db.query(SystemConfig).order_by(SystemConfig.key).all()
        return [
            SystemConfigItem(key=row.key, value=row.value, description=row.description, updated_at=row.updated_at)
            for row in rows
        ]

    def get_value(self, key: str, default: str) -> str:
        row = self.db.query(SystemConfig).filter(SystemConfig.key == key).first()
        return row.value if row else default

    def get_int(self, key: str, default: int) -> int:
        raw = self.get_value(key, str(default))
        try:
            return int(raw)
        except ValueError:
            logger.warning("system config %s holds non-integer value %r, using %d", key, raw, default)
            return default

    def get_max_topup_paisa(self) -> int:
        return self.get_int(ConfigKey.MAX_TOPUP_AMOUNT_PAISA, settings.MAX_TOPUP_AMOUNT_PAISA)

    def update_setting(self, key: str, value: str) -> SystemConfigItem:
        row = self.db.query(SystemConfig).filter(SystemConfig.key == key).first()
        if row is None:
            raise errors.CONFIG_NOT_FOUND(key=key)

        value = value.strip()
        if key in INTEGER_KEYS and not value.isdigit():
            raise errors.INVALID_CONFIG_VALUE(f"{key} must be a non-negative integer", key=key)

        row.value = value
        self.db.commit()
        logger.info("system config %s set to %s", key, value)
        return SystemConfigItem(key=row.key, value=row.value, description=row.description, updated_at=row.updated_at)

    def ensure_defaults(self) -> None:
        """Insert missing default settings; the caller commits"""
        for key, (value, description) in DEFAULTS.items():
            if self.db.query(SystemConfig).filter(SystemConfig.key == key).first() is None:
                self.db.add(SystemConfig(key=key, value=value, description=description))
        self.db.flush()
