"""
컬럼 값 <-> 이식 가능한 JSON 값 변환
"""

import base64
import enum
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import Column
from sqlalchemy import types as sqltypes


def to_portable(value: Any) -> Any:
    """DB 값을 JSON 직렬화 가능한 값으로 변환"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, enum.Enum):
        return value.name
    return value


def _parse_datetime(value: Any) -> Any:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def from_portable(value: Any, column: Column) -> Any:
    """아카이브 값을 대상 컬럼 타입에 맞게 변환"""
    if value is None:
        return None

    column_type = column.type
    if isinstance(column_type, sqltypes.JSON):
        return value
    if isinstance(column_type, sqltypes.DateTime):
        return _parse_datetime(value)
    if isinstance(column_type, sqltypes.Date):
        if isinstance(value, date):
            return value
        return date.fromisoformat(str(value)[:10])
    if isinstance(column_type, sqltypes.Time):
        if isinstance(value, time):
            return value
        return time.fromisoformat(str(value))
    if isinstance(column_type, sqltypes.Interval):
        return timedelta(seconds=float(value))
    if isinstance(column_type, sqltypes.Enum) and column_type.enum_class is not None:
        return column_type.enum_class[value]
    if isinstance(column_type, sqltypes.Numeric) and not isinstance(column_type, sqltypes.Float):
        return Decimal(str(value))
    if isinstance(column_type, sqltypes.LargeBinary):
        return base64.b64decode(value)
    if isinstance(column_type, sqltypes.Uuid):
        if isinstance(value, uuid.UUID) or not column_type.as_uuid:
            return value
        return uuid.UUID(str(value))
    if isinstance(column_type, sqltypes.Boolean) and isinstance(value, int):
        return bool(value)
    return value
