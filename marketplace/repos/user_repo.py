# marketplace/repos/user_repo.py
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.orm import Session

from marketplace.data.models.user import UserModel


class UserRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> UserModel | None:
        return self.db.get(UserModel, user_id)

    def debit_wallet(self, user_id: int, amount: Decimal) -> int:
        # conditional debit, 0 rows means the balance was too low at write time
        return self.db.execute(
            update(UserModel)
            .where(UserModel.id == user_id, UserModel.wallet_balance >= amount)
            .values(
                wallet_balance=UserModel.wallet_balance - amount,
                version=UserModel.version + 1,
            )
            .execution_options(synchronize_session="fetch")
        ).rowcount

    def credit_wallet(self, user_id: int, amount: Decimal) -> int:
        return self.db.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(
                wallet_balance=UserModel.wallet_balance + amount,
                version=UserModel.version + 1,
            )
            .execution_options(synchronize_session="fetch")
        ).rowcount
