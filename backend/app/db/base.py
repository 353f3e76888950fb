from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase

# ids travel through the engine as canonical uuid strings on every dialect
UuidStr = sa.Uuid(as_uuid=False)


def new_uuid() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    pass
