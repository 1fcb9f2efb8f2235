"""
Expense Lifecycle Configuration Schema.

Explicit configuration value passed into the transition guard and the
module services.  Nothing here is read from ambient global state.
Values are loaded from a YAML file or a dict at startup.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Self

import yaml

from expense_kernel.exceptions import ConfigurationError
from expense_kernel.logging_config import get_logger

logger = get_logger("modules.expense.config")

DEFAULT_EVENT_CATEGORY = "Special Events and Programs"


@dataclass
class ExpenseConfig:
    """
    Configuration schema for the expense lifecycle.

        config = ExpenseConfig(
            require_two_stage_approval=True,
            admin_notification_emails=("finance@example.org",),
        )
    """

    # Approval policy
    require_two_stage_approval: bool = False
    preserve_item_denials_on_approval: bool = False

    # Notifications
    admin_notification_emails: tuple[str, ...] = field(default_factory=tuple)

    # Request validation
    event_category: str = DEFAULT_EVENT_CATEGORY
    min_urgency: int = 1
    max_urgency: int = 3
    default_urgency: int = 2

    # Reports
    default_report_required: bool = True

    # Bookkeeping account tags an administrator may assign; empty allows any
    accounts: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.event_category or not self.event_category.strip():
            raise ValueError("event_category cannot be empty")

        if self.min_urgency < 1:
            raise ValueError("min_urgency must be at least 1")
        if self.max_urgency < self.min_urgency:
            raise ValueError(
                f"max_urgency ({self.max_urgency}) cannot be less than "
                f"min_urgency ({self.min_urgency})"
            )
        if not self.min_urgency <= self.default_urgency <= self.max_urgency:
            raise ValueError(
                f"default_urgency must be between {self.min_urgency} "
                f"and {self.max_urgency}, got {self.default_urgency}"
            )

        self.admin_notification_emails = tuple(self.admin_notification_emails)
        for email in self.admin_notification_emails:
            if "@" not in email:
                raise ValueError(f"invalid admin notification email: '{email}'")

        self.accounts = tuple(self.accounts)
        for account in self.accounts:
            if not account or not account.strip():
                raise ValueError("account tags cannot be empty")

        logger.info(
            "expense_config_initialized",
            extra={
                "require_two_stage_approval": self.require_two_stage_approval,
                "preserve_item_denials_on_approval": self.preserve_item_denials_on_approval,
                "admin_email_count": len(self.admin_notification_emails),
                "event_category": self.event_category,
                "default_report_required": self.default_report_required,
                "account_count": len(self.accounts),
            },
        )

    @property
    def final_stage(self) -> int:
        return 2 if self.require_two_stage_approval else 1

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with single-stage approval and no admin recipients."""
        logger.info("expense_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from a dictionary (e.g. parsed YAML)."""
        logger.info(
            "expense_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"unknown expense config keys: {unknown}")
        values = dict(data)
        if "admin_notification_emails" in values:
            values["admin_notification_emails"] = tuple(
                values["admin_notification_emails"] or ()
            )
        if "accounts" in values:
            values["accounts"] = tuple(values["accounts"] or ())
        return cls(**values)


def load_expense_config(path: Path | str) -> ExpenseConfig:
    """
    Load ExpenseConfig from a YAML file.

    The file may hold the settings at top level or under an ``expense`` key.

    Raises:
        FileNotFoundError: if the file does not exist.
        ConfigurationError: if the YAML is malformed or a value is invalid.
    """
    path = Path(path)
    with path.open("r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(str(path), f"malformed YAML: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    section = data.get("expense", data)
    if not isinstance(section, dict):
        raise ConfigurationError(str(path), "'expense' section must be a mapping")

    try:
        config = ExpenseConfig.from_dict(section)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(str(path), str(exc)) from exc

    logger.info("expense_config_loaded", extra={"path": str(path)})
    return config
