from tracksub.models.financial import ImportedTransaction
from tracksub.models.subscription import Subscription
from tracksub.models.user import User

__all__ = ["ImportedTransaction", "Subscription", "User"]
