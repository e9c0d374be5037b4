"""
SQLAlchemy models and database management for the deal sync core.
"""

# Import base definitions
from .db_base import TimestampMixin, UUIDMixin, ensure_utc, utc_now

# Import configuration
from .db_config import (
    Base,
    DatabaseManager,
    close_db,
    get_db_manager,
    import_all_models,
    initialize_db,
    set_db_manager,
)

# Import models
from .db_project_mapping_models import DealProjectMapping, ProjectMapping
from .db_sequence_models import SequenceCounter
from .db_token_models import AuthToken

__all__ = [
    # Base definitions
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "ensure_utc",
    "utc_now",
    # Configuration
    "DatabaseManager",
    "close_db",
    "get_db_manager",
    "import_all_models",
    "initialize_db",
    "set_db_manager",
    # Models
    "AuthToken",
    "DealProjectMapping",
    "ProjectMapping",
    "SequenceCounter",
]
