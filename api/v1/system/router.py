"""
System status and configuration endpoint
Provides helpful information about the entitlement code service configuration
"""

from fastapi import APIRouter
from utils.config_validator import ConfigStatus, EntitlementConfig

router = APIRouter(prefix="/api/v1/system", tags=["system"])


@router.get("/status")
async def get_system_status():
    """
    Get current system status and configuration

    Useful for debugging configuration issues
    """
    is_valid, errors, warnings = EntitlementConfig.validate_setup()
    status, source = EntitlementConfig.get_database_status()

    return {
        "service": "Entitlement Codes",
        "status": "operational" if is_valid else "configuration_incomplete",
        "database": {
            "status": status.value,
            "configured": status in (ConfigStatus.CONFIGURED, ConfigStatus.FALLBACK),
            "source": source or None,
        },
        "limits": EntitlementConfig.get_limits(),
        "errors": errors,
        "warnings": warnings,
    }


@router.get("/health")
async def health_check():
    """
    Simple health check endpoint
    """
    return {
        "status": "healthy",
        "service": "Entitlement Codes API",
    }


@router.get("/config-help")
async def get_config_help():
    """
    Get help for configuring the service
    """
    return {
        "service": "Entitlement Codes",
        "configuration": {
            "database_keys": [
                {
                    "key": key,
                    "display": info["display"],
                    "purpose": info["purpose"],
                    "example": info["example"],
                }
                for key, info in EntitlementConfig.DATABASE_KEYS.items()
            ],
        },
        "setup_instructions": {
            "1_set_database_in_env": "Set DATABASE_URL in the .env file",
            "2_restart_server": "Restart the FastAPI server",
            "3_check_status": "Visit /api/v1/system/status to verify configuration",
        },
        "environment_variables": {
            "ALLOW_SQLITE_FALLBACK": "true/false - Use a local SQLite file when no DATABASE_URL is set",
            "REDEEM_RATE_LIMIT_ENABLED": "true/false - Throttle repeated failed redemptions",
            "REDEEM_RATE_LIMIT_MAX_FAILURES": "Failures per account and code before blocking (default: 5)",
            "REDEEM_RATE_LIMIT_ANY_CODE_MAX_FAILURES": "Failures per account across codes (default: 20)",
            "REDEEM_RATE_LIMIT_WINDOW_SECONDS": "Failure counting window (default: 900)",
            "REDEEM_RATE_LIMIT_COOLDOWN_SECONDS": "Block duration (default: 900)",
            "REDEEM_MAX_COMMIT_ATTEMPTS": "Re-validation rounds on commit conflicts (default: 8)",
            "REDEEM_COLLAPSE_REVOKED_CODES": "true/false - Report deactivated codes as not found",
            "ISSUE_MAX_BATCH_SIZE": "Largest issuance batch (default: 100)",
            "ISSUE_MAX_COLLISION_RETRIES": "Regenerations per code on collision (default: 5)",
            "STORE_RETRY_ATTEMPTS": "Attempts for transient database failures (default: 3)",
        },
    }
