"""
Snapshot Schema

The default snapshot every boot starts from, and the named key groups used
by subset import/export.

Collections are lists of records; scalar keys hold arbitrary JSON values.
"""

import copy
from typing import Any

from luxeledger.utils.timestamps import EPOCH_ISO


# =============================================================================
# COLLECTION NAMES
# =============================================================================

FINANCIAL_COLLECTIONS = (
    "Account",
    "BalanceHistory",
    "CreditCard",
    "CreditScore",
    "AutoLoan",
    "CreditBureauStatus",
    "PortfolioSnapshot",
    "Reminder",
    "dashboardOrder",
    "CustomThemes",
    "MonthlyReport",
)

VAULT_COLLECTIONS = (
    "PasswordCredential",
    "SecureNote",
    "CardCredential",
    "BankCredential",
    "VaultSettings",
)

SETTINGS_COLLECTIONS = (
    "AppSettings",
    "AdminSettings",
)

SCALAR_KEYS = (
    "lastBackupTimestamp",
    "lastRecapDate",
    "lastFinancialBackupDate",
)

# Preserved by import_all even though some are not part of the defaults
METADATA_KEYS = (
    "lastBackupTimestamp",
    "lastRecapDate",
    "lastFinancialBackupDate",
    "activeAppThemeColors",
)

# Key groups for partial backups
FINANCIAL_KEYS = (
    "Account",
    "BalanceHistory",
    "CreditCard",
    "CreditScore",
    "AutoLoan",
    "CreditBureauStatus",
    "PortfolioSnapshot",
    "Reminder",
    "MonthlyReport",
    "dashboardOrder",
    "AppSettings",
    "lastFinancialBackupDate",
)

VAULT_KEYS = VAULT_COLLECTIONS

APP_SETTINGS_ID = "settings"
ADMIN_SETTINGS_ID = "admin"


# =============================================================================
# SEEDED RECORDS
# =============================================================================

_DEFAULT_APP_SETTINGS: dict[str, Any] = {
    "id": APP_SETTINGS_ID,
    "created_date": EPOCH_ISO,
    "updated_date": EPOCH_ISO,
    "showAccountProgressBar": True,
    "compactCardView": False,
    "showAccountFavicons": True,
    "animationSpeed": "normal",
    "showDashboardGreeting": True,
    "roundNumbers": False,
    "hideZeroBalances": False,
    "creditCardSorting": "recent",
    "accountSort": "default",
    "showAllReminders": False,
    "showSubscriptionLogos": True,
    "enableStartupCache": True,
    "unusedCardThresholdMonths": 6,
    "accountUpdateOrder": [],
    "institutionFavicons": {},
}

_DEFAULT_ADMIN_SETTINGS: dict[str, Any] = {
    "id": ADMIN_SETTINGS_ID,
    "created_date": EPOCH_ISO,
    "updated_date": EPOCH_ISO,
    "appName": "Luxe Ledger",
    "appSubtitle": "Personal Wealth Dashboard",
    "customLogo": None,
    "sessionTimeout": 0,
    "dateFormat": "MM/dd/yyyy",
    "currencySymbol": "$",
    "debugMode": False,
}


def default_schema() -> dict[str, Any]:
    """
    Build a fresh default snapshot.

    Pure: every call returns a new, independent structure with identical
    content.
    """
    schema: dict[str, Any] = {}
    for name in FINANCIAL_COLLECTIONS + VAULT_COLLECTIONS:
        schema[name] = []
    schema["AppSettings"] = [copy.deepcopy(_DEFAULT_APP_SETTINGS)]
    schema["AdminSettings"] = [copy.deepcopy(_DEFAULT_ADMIN_SETTINGS)]
    for key in SCALAR_KEYS:
        schema[key] = None
    return schema


def collection_names() -> tuple[str, ...]:
    return FINANCIAL_COLLECTIONS + VAULT_COLLECTIONS + SETTINGS_COLLECTIONS


def startup_cache_enabled(snapshot: dict[str, Any]) -> bool:
    """User toggle stored on the AppSettings record (missing = enabled)."""
    records = snapshot.get("AppSettings")
    if not isinstance(records, list) or not records:
        return True
    first = records[0]
    if not isinstance(first, dict):
        return True
    return first.get("enableStartupCache") is not False
