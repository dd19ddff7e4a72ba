from sqlalchemy import Column, Integer, String, Numeric, Float

from marketplace.data.database import Base


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False, default="buyer")  # buyer | seller

    # seller location, used for delivery distance
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    wallet_balance = Column(Numeric(10, 2), nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
