"""
Area Model - city areas grouped into districts
"""
from sqlalchemy import Column, Integer, String, ForeignKey

from app.db.database import Base


class District(Base):
    __tablename__ = "districts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)


class Area(Base):
    """Neighbourhood a listing can be attached to"""

    __tablename__ = "areas"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    district_id = Column(Integer, ForeignKey("districts.id"), nullable=True, index=True)
