from sqlalchemy import Column, Integer, String
from steadystream_svc.models.base import Base


class Package(Base):
    """MegaOTT package offered for sale."""
    __tablename__ = 'packages'

    id = Column(Integer, primary_key=True, autoincrement=True)
    megaott_package_id = Column(Integer, unique=True, nullable=False)
    name = Column(String, nullable=False)
    duration_days = Column(Integer, default=30, nullable=False)


class Template(Base):
    __tablename__ = 'templates'

    id = Column(Integer, primary_key=True, autoincrement=True)
    megaott_template_id = Column(Integer, unique=True, nullable=False)
    name = Column(String, nullable=False)
