"""
User repository with atomic balance operations.
"""
import logging
import threading
from decimal import Decimal
from typing import Optional

from vacuum_backend.models.user import User
from vacuum_backend.exceptions import UserNotFoundError, PaymentDeclinedError, ValidationError

logger = logging.getLogger(__name__)


class UserRepository:
    """In-process store for customer accounts."""

    def __init__(self):
        self._users: dict[str, User] = {}
        self._lock = threading.Lock()

    def add(self, user: User) -> User:
        with self._lock:
            if user.id in self._users:
                raise ValidationError(f"User '{user.id}' already exists", "id", user.id)
            self._users[user.id] = user.model_copy(deep=True)
        return user.model_copy(deep=True)

    def get(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy(deep=True) if user else None

    def get_or_raise(self, user_id: str) -> User:
        user = self.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def debit(self, user_id: str, amount: Decimal) -> Decimal:
        """
        Subtract amount from the balance in one step.

        Args:
            user_id: Account to debit
            amount: Positive amount

        Returns:
            New balance

        Raises:
            UserNotFoundError: Unknown user
            PaymentDeclinedError: Balance lower than amount
        """
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            if user.account_balance < amount:
                raise PaymentDeclinedError("insufficient balance", amount=str(amount))
            user.account_balance = user.account_balance - amount
            balance = user.account_balance

        logger.info(f"Debited {amount} from user {user_id} (balance: {balance})")
        return balance

    def credit(self, user_id: str, amount: Decimal) -> Decimal:
        """Add amount to the balance (account top-up)."""
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            user.account_balance = user.account_balance + amount
            return user.account_balance
