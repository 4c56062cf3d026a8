"""Store-backed services: data access and forecast orchestration."""

from forecast_engine.services.forecast_service import ForecastService
from forecast_engine.services.repository import ForecastRepository

__all__ = ["ForecastRepository", "ForecastService"]
