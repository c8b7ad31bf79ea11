# callbilling/models/base.py
from sqlalchemy import Numeric
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Currency amounts: 4 decimal places internally, displayed to 2
Money = Numeric(12, 4)
