"""Models package."""

from .credit_balance import UserCreditBalance
from .credit_transaction import CreditTransaction
from .credit_package import CreditPackage
from .logo_generation import LogoGeneration
