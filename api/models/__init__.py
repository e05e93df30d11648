"""Central model registry: import all models so metadata discovery works."""

from api.database import Base  # noqa: F401

from api.models.clinic import Clinic  # noqa: F401
from api.models.supplier import Supplier  # noqa: F401
from api.models.profile import Profile  # noqa: F401
from api.models.subscription import Subscription  # noqa: F401
from api.models.manual_payment import ManualPayment  # noqa: F401
from api.models.subscription_feature import SubscriptionFeature  # noqa: F401
