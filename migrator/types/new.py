# migrator/types/new.py

from typing import NewType

OwnerKey = NewType('OwnerKey', str)
AssetId = NewType('AssetId', str)
TimestampMs = NewType('TimestampMs', int)
