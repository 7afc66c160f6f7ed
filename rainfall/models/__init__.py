from rainfall.models.rainfall import PeriodType, RainfallRecord
from rainfall.models.station import Station
from rainfall.models.status import StatusKey, SystemStatus
from rainfall.models.token import TokenState

__all__ = [
    "PeriodType",
    "RainfallRecord",
    "Station",
    "StatusKey",
    "SystemStatus",
    "TokenState",
]
