# Import models so that SQLAlchemy metadata includes them on app startup
from .user import User  # noqa: F401
from .business import Business, ManagerProfile  # noqa: F401
from .payment import Payment  # noqa: F401
from .activation_code import ActivationCode  # noqa: F401
from .booking import Booking  # noqa: F401
from .order import Order  # noqa: F401
from .wallet import Wallet, WalletTransaction  # noqa: F401
