from fastapi import status

from src.common.errors import AppError

CONFIG_NOT_FOUND = AppError("CONFIG_NOT_FOUND", status.HTTP_404_NOT_FOUND, "Configuration key not found")
INVALID_CONFIG_VALUE = AppError("INVALID_CONFIG_VALUE", status.HTTP_400_BAD_REQUEST, "Invalid configuration value")
