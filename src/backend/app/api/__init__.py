"""API Routes Module."""

from fastapi import APIRouter, Depends

from app.api import sensors, sensor_readings
from app.core.deps import require_api_token

router = APIRouter(dependencies=[Depends(require_api_token)])

router.include_router(sensors.router, tags=["Sensors"])
router.include_router(sensor_readings.router, tags=["Sensor Readings"])
