"""SQLAlchemy ORM models for the local wallet store."""

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class WalletRecord(Base):
    __tablename__ = "wallet"

    seed_hash = Column(LargeBinary(32), primary_key=True)
    seed = Column(LargeBinary, nullable=False)
    alias = Column(String(100))
    is_main = Column(Boolean, default=False)
    uses_password = Column(Boolean, default=False)
    network = Column(String(20), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class WalletAddressRecord(Base):
    __tablename__ = "wallet_addresses"
    __table_args__ = (UniqueConstraint("seed_hash", "address"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    seed_hash = Column(LargeBinary(32), ForeignKey("wallet.seed_hash"), nullable=False, index=True)
    address = Column(String(64), nullable=False)
    derivation_path = Column(String(128), nullable=False)
    path_reference = Column(Integer, nullable=False, default=0)
    path_type = Column(Integer, nullable=False, default=0)
    balance = Column(BigInteger)


class UtxoRecord(Base):
    __tablename__ = "utxos"

    txid = Column(String(64), primary_key=True)
    vout = Column(Integer, primary_key=True)
    network = Column(String(20), primary_key=True)
    address = Column(String(64), nullable=False, index=True)
    value = Column(BigInteger, nullable=False)
    script_pubkey = Column(LargeBinary, nullable=False)


class AssetLockTransactionRecord(Base):
    __tablename__ = "asset_lock_transaction"

    txid = Column(String(64), primary_key=True)
    wallet = Column(LargeBinary(32), ForeignKey("wallet.seed_hash"), nullable=False, index=True)
    network = Column(String(20), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)
    transaction_data = Column(LargeBinary, nullable=False)
    instant_lock_data = Column(LargeBinary)
    chain_locked_height = Column(Integer)
    # Set once a registration consuming this lock succeeded
    identity_id = Column(String(64), index=True)
    # Set before the registration is submitted
    identity_id_potentially_in_creation = Column(String(64))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class IdentityRecord(Base):
    __tablename__ = "identity"

    id = Column(String(64), primary_key=True)
    data = Column(LargeBinary, nullable=False)
    status = Column(String(32), nullable=False)
    alias = Column(String(100))
    wallet = Column(LargeBinary(32), ForeignKey("wallet.seed_hash"))
    wallet_index = Column(Integer)
    network = Column(String(20), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
