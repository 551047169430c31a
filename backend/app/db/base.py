"""
Declarative base for all models
"""
import uuid

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def table_models():
    """Tables that startup may create; database views are skipped."""
    return [
        table for table in Base.metadata.sorted_tables
        if not table.info.get("is_view", False)
    ]


def generate_uuid() -> str:
    """Primary keys are UUID strings, matching the hosted schema."""
    return str(uuid.uuid4())
