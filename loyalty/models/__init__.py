# loyalty/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from loyalty.models.account import Account, OAuthProvider, Role  # noqa: F401
from loyalty.models.customer import CustomerProfile  # noqa: F401
from loyalty.models.category import Category  # noqa: F401
from loyalty.models.merchant import Merchant  # noqa: F401
from loyalty.models.promotion import Promotion  # noqa: F401

# Integrity core
from loyalty.models.redemption import Redemption  # noqa: F401
from loyalty.models.rating import Rating  # noqa: F401
