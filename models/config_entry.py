from sqlalchemy import Column, String, Text
from .base import Base


class ConfigEntry(Base):
     """
     Small key/value table for process state that must survive restarts.
     Holds at least 'last_processed_block' for the payment monitor.
     """
     __tablename__ = "config"

     key = Column(String(100), primary_key=True)
     value = Column(Text, nullable=False)

     def __repr__(self):
          return f"<ConfigEntry(key='{self.key}', value='{self.value}')>"
