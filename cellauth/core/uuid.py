"""
UUID creation. Records use uuid7 (not part of the python standard as of
3.12); client sessions use a plain uuid4.
"""

from uuid import UUID as UUID
from uuid import uuid4 as uuid4

from uuid_extensions import uuid7 as uuid7

__ALL__ = ["UUID", "uuid4", "uuid7"]
