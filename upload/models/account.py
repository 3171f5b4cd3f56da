"""
Account Models

Data class representing a configured upload destination.
"""

import secrets
import time
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from upload.constants import AccountType


def generate_account_id() -> str:
    """Unique account id: acc_<epoch ms>_<8 hex chars>"""
    return f"acc_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


@dataclass
class Account:
    """
    A configured account on one upload provider.

    The id is assigned once on creation and never changes. Credentials and
    config are provider-specific maps (see the provider implementations for
    the keys each one reads).
    """

    id: str
    type: AccountType
    name: str
    config: Dict[str, Any] = field(default_factory=dict)
    credentials: Dict[str, Any] = field(default_factory=dict)

    created_at: datetime = field(default_factory=datetime.now)
    last_used: Optional[datetime] = None
    upload_count: int = 0

    # Cached provider-reported profile (characters, quota, ...)
    account_info: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        """Accept plain strings for the account type"""
        if not isinstance(self.type, AccountType):
            self.type = AccountType(self.type)

    def touch(self) -> None:
        """Record that the account was used"""
        self.last_used = datetime.now()

    def record_upload(self) -> None:
        """Record a completed upload through this account"""
        self.touch()
        self.upload_count += 1

    def copy(self) -> "Account":
        """Deep copy, used to validate updates before applying them"""
        return deepcopy(self)

    def to_dict(self, include_credentials: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for storage or display"""
        data = {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "config": dict(self.config),
            "created_at": self.created_at.isoformat(),
            "last_used": self.last_used.isoformat() if self.last_used else None,
            "upload_count": self.upload_count,
            "account_info": self.account_info,
        }
        if include_credentials:
            data["credentials"] = dict(self.credentials)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Account":
        """Create Account from a stored dictionary"""
        return cls(
            id=data["id"],
            type=AccountType(data["type"]),
            name=data.get("name", ""),
            config=data.get("config") or {},
            credentials=data.get("credentials") or {},
            created_at=datetime.fromisoformat(data["created_at"]),
            last_used=(
                datetime.fromisoformat(data["last_used"])
                if data.get("last_used")
                else None
            ),
            upload_count=data.get("upload_count", 0),
            account_info=data.get("account_info"),
        )

    def __repr__(self) -> str:
        return (
            f"Account(id='{self.id}', type={self.type.value}, "
            f"name='{self.name}', uploads={self.upload_count})"
        )
