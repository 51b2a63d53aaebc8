"""
SQLAlchemy Models for the blob store and the parts dataset
"""
from sqlalchemy import Column, Integer, String, Text, TIMESTAMP, UniqueConstraint, Index, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class Blob(Base):
    """Key-value blob: one JSON document per (store, key)"""
    __tablename__ = 'blobs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    store = Column(String(100), nullable=False, comment='Logical store name, e.g. eol-jobs')
    key = Column(String(255), nullable=False, comment='Blob key within the store')
    value = Column(JSON, nullable=False, comment='JSON document')
    created_at = Column(TIMESTAMP, server_default=func.current_timestamp())
    updated_at = Column(TIMESTAMP, server_default=func.current_timestamp(), onupdate=func.current_timestamp())

    __table_args__ = (
        UniqueConstraint('store', 'key', name='unique_store_key'),
        Index('idx_blob_store', 'store'),
    )

    def __repr__(self):
        return f"<Blob(store='{self.store}', key='{self.key}')>"


class Part(Base):
    """Part Model - one row of the tracked parts dataset"""
    __tablename__ = 'parts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    sap_number = Column(String(255), nullable=False, unique=True, comment='SAP part number')
    legacy_number = Column(String(255), comment='Legacy part number')
    designation = Column(Text, comment='Part designation')
    model = Column(String(255), nullable=False, comment='Manufacturer model')
    manufacturer = Column(String(255), nullable=False, comment='Manufacturer name')

    # EOL check results
    status = Column(String(50), comment='ACTIVE, DISCONTINUED, UNKNOWN')
    status_comment = Column(Text, comment='Explanation from the classifier')
    successor_model = Column(String(255), comment='Successor model')
    successor_comment = Column(Text, comment='Successor explanation')
    successor_sap_number = Column(String(255), comment='Successor SAP number')
    stock = Column(String(50), comment='Stock on hand')
    information_date = Column(TIMESTAMP, nullable=True, comment='When the EOL status was last checked')
    auto_check = Column(String(10), default='Yes', comment='Include in the daily auto-check')

    created_at = Column(TIMESTAMP, server_default=func.current_timestamp())
    updated_at = Column(TIMESTAMP, server_default=func.current_timestamp(), onupdate=func.current_timestamp())

    __table_args__ = (
        Index('idx_manufacturer', 'manufacturer'),
        Index('idx_information_date', 'information_date'),
    )

    def __repr__(self):
        return f"<Part(sap_number='{self.sap_number}', manufacturer='{self.manufacturer}', model='{self.model}')>"
