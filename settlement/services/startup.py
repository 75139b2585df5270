import logging
import os
from datetime import datetime
from typing import Dict, Any

from settlement.database import create_tables, verify_database_schema, table_exists, count_rows, engine
from settlement.errors import ConfigurationError
from config import settings

logger = logging.getLogger(__name__)

class StartupManager:
    """Manages application startup tasks and health checks"""

    def __init__(self, bind=None):
        self.bind = bind if bind is not None else engine
        self.startup_time = None
        self.startup_checks = {
            "database": False,
            "schema": False,
            "config": False,
            "wallet_rpc": False
        }
        self.startup_errors = []
        self.warnings = []

    async def run_startup_checks(self, watcher=None) -> Dict[str, Any]:
        """Run all startup checks and return status"""
        self.startup_time = datetime.utcnow()
        logger.info("=== Settlement Service Startup Checks ===")

        # Check 1: Database Creation
        try:
            logger.info("1. Checking database...")
            create_tables(self.bind)
            self.startup_checks["database"] = True
            logger.info("✓ Database initialized successfully")
        except Exception as e:
            error_msg = f"Database initialization failed: {str(e)}"
            logger.error(f"✗ {error_msg}")
            self.startup_errors.append(error_msg)

        # Check 2: Schema Verification
        try:
            logger.info("2. Verifying database schema...")
            if verify_database_schema(self.bind):
                self.startup_checks["schema"] = True
                logger.info("✓ Database schema verified successfully")
            else:
                raise Exception("Schema verification failed")
        except Exception as e:
            error_msg = f"Database schema verification failed: {str(e)}"
            logger.error(f"✗ {error_msg}")
            self.startup_errors.append(error_msg)

        # Check 3: Configuration Validation
        try:
            logger.info("3. Validating configuration...")
            self._validate_configuration()
            self.startup_checks["config"] = True
            logger.info("✓ Configuration validated successfully")
        except ConfigurationError as e:
            # Missing wallet settings only disable the watcher
            warning = f"Watcher configuration incomplete: {str(e)}"
            logger.warning(f"⚠ {warning}")
            self.warnings.append(warning)
            self.startup_checks["config"] = True
        except Exception as e:
            error_msg = f"Configuration validation failed: {str(e)}"
            logger.error(f"✗ {error_msg}")
            self.startup_errors.append(error_msg)

        # Check 4: Wallet RPC reachability (non-fatal)
        if watcher is None:
            logger.info("4. Wallet RPC check skipped (watcher disabled)")
            self.startup_checks["wallet_rpc"] = True
        else:
            try:
                logger.info("4. Checking wallet RPC...")
                height = await watcher.rpc.get_height()
                logger.info(f"✓ Wallet RPC reachable at height {height}")
            except Exception as e:
                warning = f"Wallet RPC not reachable yet: {str(e)}"
                logger.warning(f"⚠ {warning}")
                self.warnings.append(warning)
            # The watcher retries every cycle, so an unreachable wallet does not fail startup
            self.startup_checks["wallet_rpc"] = True

        # Log final status
        total_checks = len(self.startup_checks)
        passed_checks = sum(self.startup_checks.values())

        if passed_checks == total_checks and not self.startup_errors:
            logger.info(f"=== Startup Complete: {passed_checks}/{total_checks} checks passed ===")
        else:
            logger.warning(f"=== Startup Complete: {passed_checks}/{total_checks} checks passed, {len(self.startup_errors)} errors ===")
            for error in self.startup_errors:
                logger.error(f"  • {error}")

        return self.get_startup_status()

    def _validate_configuration(self):
        """Validate critical configuration settings"""
        errors = []

        if not settings.DATABASE_URL:
            errors.append("DATABASE_URL not configured")

        if not settings.ADMIN_API_KEY:
            errors.append("ADMIN_API_KEY not configured")

        if settings.REQUIRED_CONFIRMATIONS < 1:
            errors.append("REQUIRED_CONFIRMATIONS must be at least 1")

        if settings.MONERO_POLL_SECONDS < 1:
            errors.append("MONERO_POLL_SECONDS must be at least 1")

        # Check if database file directory exists (for SQLite)
        if "sqlite" in settings.DATABASE_URL and ":memory:" not in settings.DATABASE_URL:
            db_path = settings.DATABASE_URL.replace("sqlite:///", "")
            db_dir = os.path.dirname(os.path.abspath(db_path))
            if not os.path.exists(db_dir):
                errors.append(f"Database directory does not exist: {db_dir}")
            elif not os.access(db_dir, os.W_OK):
                errors.append(f"Database directory is not writable: {db_dir}")

        if errors:
            raise Exception("; ".join(errors))

        if not settings.watcher_enabled:
            raise ConfigurationError("MONERO_RPC_URL not set - payments will not be reconciled")

    def get_startup_status(self) -> Dict[str, Any]:
        """Get current startup status"""
        return {
            "startup_time": self.startup_time.isoformat() if self.startup_time else None,
            "uptime_seconds": (datetime.utcnow() - self.startup_time).total_seconds() if self.startup_time else 0,
            "checks": self.startup_checks,
            "checks_passed": sum(self.startup_checks.values()),
            "total_checks": len(self.startup_checks),
            "errors": self.startup_errors,
            "warnings": self.warnings,
            "status": "healthy" if all(self.startup_checks.values()) and not self.startup_errors else "degraded"
        }

    def get_database_info(self) -> Dict[str, Any]:
        """Get detailed database information"""
        try:
            db_info = {
                "url": settings.DATABASE_URL.split("://")[0] + "://***",  # Hide credentials
                "tables": {}
            }
            for table_name in ("invoices", "subscriptions", "settlement_ledger"):
                if table_exists(self.bind, table_name):
                    db_info["tables"][table_name] = {"exists": True, "rows": count_rows(self.bind, table_name)}
                else:
                    db_info["tables"][table_name] = {"exists": False}
            return db_info

        except Exception as e:
            logger.error(f"Failed to get database info: {e}")
            return {"error": str(e)}

# Global startup manager instance
startup_manager = StartupManager()
