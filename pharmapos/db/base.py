# pharmapos/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All pharmacy tables (products, batches, sales, notifications) inherit from this."""
    pass


# Import all models so metadata is complete for create_all()
from pharmapos.models import (  # noqa: F401,E402
    pharmacy,
    product,
    batch,
    sale,
    notification,
)
