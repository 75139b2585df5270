from sqlalchemy import create_engine, text, inspect
from sqlalchemy.orm import declarative_base, sessionmaker
from config import settings
import logging

logger = logging.getLogger(__name__)

# Create SQLAlchemy engine
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if "sqlite" in settings.DATABASE_URL else {}
)

# Create SessionLocal class
SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)

# Create Base class for models
Base = declarative_base()

# Columns the settlement pipeline reads and writes
REQUIRED_COLUMNS = {
    "invoices": [
        'id', 'user_id', 'address', 'account_index', 'address_index',
        'amount_requested', 'plan', 'status', 'tx_hash', 'confirmations',
        'required_confirmations', 'created_at', 'paid_at', 'confirmed_at',
        'expired_at'
    ],
    "subscriptions": [
        'id', 'user_id', 'plan', 'starts_at', 'expires_at', 'created_at',
        'invoice_id'
    ],
    "settlement_ledger": [
        'id', 'invoice_id', 'user_id', 'plan', 'tx_hash', 'amount_atomic',
        'subscription_id', 'created_at'
    ],
}

def get_table_columns(bind, table_name: str) -> list:
    """Get list of column names for a table"""
    try:
        inspector = inspect(bind)
        return [col['name'] for col in inspector.get_columns(table_name)]
    except Exception as e:
        logger.debug(f"Error getting columns for {table_name}: {e}")
        return []

def table_exists(bind, table_name: str) -> bool:
    """Check if a table exists"""
    try:
        return table_name in inspect(bind).get_table_names()
    except Exception as e:
        logger.error(f"Error checking if table {table_name} exists: {e}")
        return False

def verify_database_schema(bind=None) -> bool:
    """Verify that the database schema matches the expected structure"""
    bind = bind if bind is not None else engine
    try:
        for table_name, required_columns in REQUIRED_COLUMNS.items():
            if not table_exists(bind, table_name):
                logger.error(f"Missing table: {table_name}")
                return False

            columns = get_table_columns(bind, table_name)
            missing_columns = [col for col in required_columns if col not in columns]
            if missing_columns:
                logger.error(f"Missing columns in {table_name} table: {missing_columns}")
                return False

            logger.info(f"{table_name} table schema verified successfully")

        return True

    except Exception as e:
        logger.error(f"Database schema verification failed: {e}")
        return False

def count_rows(bind, table_name: str) -> int:
    with bind.connect() as conn:
        return conn.execute(text(f"SELECT COUNT(*) FROM {table_name}")).scalar()

# Create all tables
def create_tables(bind=None):
    """Create all tables and verify the resulting schema"""
    bind = bind if bind is not None else engine
    try:
        logger.info("Creating database tables...")

        # Import models so they register on Base.metadata
        from settlement import models  # noqa: F401

        Base.metadata.create_all(bind=bind)
        logger.info("SQLAlchemy tables created successfully")

        if verify_database_schema(bind):
            logger.info("Database initialization completed successfully")
        else:
            raise Exception("Database schema verification failed")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise
