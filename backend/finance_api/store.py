from datetime import datetime
from uuid import UUID, uuid4


class InMemoryStore:
    def __init__(self) -> None:
        self.users: dict[UUID, dict] = {}
        self.user_credentials: dict[UUID, str] = {}
        self.accounts: dict[UUID, dict] = {}
        self.categories: dict[UUID, dict] = {}
        self.subcategories: dict[UUID, dict] = {}
        self.transactions: dict[UUID, dict] = {}

    def reset(self) -> None:
        self.users.clear()
        self.user_credentials.clear()
        self.accounts.clear()
        self.categories.clear()
        self.subcategories.clear()
        self.transactions.clear()

    @staticmethod
    def make_id() -> UUID:
        return uuid4()

    @staticmethod
    def now() -> datetime:
        return datetime.utcnow()


store = InMemoryStore()
