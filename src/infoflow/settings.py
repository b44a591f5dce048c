from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

from .config import ConfigError, load_config
from .model import ReplyMode

DEFAULT_ACCOUNT_ID = "default"


class GroupSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reply_mode: ReplyMode | None = None
    watch_mentions: list[str] | None = None
    follow_up: bool | None = None
    follow_up_window: int | None = Field(default=None, ge=0)
    system_prompt: str | None = None


class AccountSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    name: str | None = None
    api_host: str | None = None
    check_token: SecretStr | None = None
    encoding_aes_key: SecretStr | None = None
    app_key: str | None = None
    app_secret: SecretStr | None = None
    require_mention: bool | None = None
    robot_name: str | None = None
    watch_mentions: list[str] = Field(default_factory=list)
    reply_mode: ReplyMode | None = None
    follow_up: bool | None = None
    follow_up_window: int | None = Field(default=None, ge=0)
    groups: dict[str, GroupSettings] = Field(default_factory=dict)

    def group(self, group_id: int | str | None) -> GroupSettings | None:
        if group_id is None:
            return None
        return self.groups.get(str(group_id))

    def max_follow_up_window(self) -> int | None:
        windows = [self.follow_up_window] + [
            group.follow_up_window for group in self.groups.values()
        ]
        known = [window for window in windows if window is not None]
        return max(known) if known else None


class InfoflowSettings(AccountSettings):
    accounts: dict[str, AccountSettings] = Field(default_factory=dict)
    default_account: str | None = None


@dataclass(frozen=True, slots=True)
class ResolvedAccount:
    account_id: str
    name: str | None
    enabled: bool
    configured: bool
    config: AccountSettings


def validate_settings(raw: dict[str, Any], *, config_path: Path) -> InfoflowSettings:
    try:
        return InfoflowSettings.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid infoflow config in {config_path}: {exc}") from exc


def resolve_account_id(settings: InfoflowSettings, account_id: str | None) -> str:
    if account_id and account_id.strip():
        return account_id.strip()
    return settings.default_account or DEFAULT_ACCOUNT_ID


def resolve_account(
    settings: InfoflowSettings, account_id: str | None = None
) -> ResolvedAccount:
    """Merge the top-level settings with the named account's overrides.

    Only fields explicitly set on the account entry replace top-level values;
    an unknown account id resolves to the top-level settings alone.
    """
    resolved_id = resolve_account_id(settings, account_id)
    base = settings.model_dump(exclude={"accounts", "default_account"})
    override = settings.accounts.get(resolved_id)
    if override is not None:
        for field_name in override.model_fields_set:
            base[field_name] = getattr(override, field_name)
    config = AccountSettings.model_validate(base)
    configured = bool(
        config.app_key
        and config.app_secret is not None
        and config.app_secret.get_secret_value()
    )
    return ResolvedAccount(
        account_id=resolved_id,
        name=config.name,
        enabled=config.enabled,
        configured=configured,
        config=config,
    )


def load_settings(path: str | Path | None = None) -> tuple[InfoflowSettings, Path]:
    raw, cfg_path = load_config(path)
    return validate_settings(raw, config_path=cfg_path), cfg_path
