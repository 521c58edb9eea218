"""
Configuration Schema

Pydantic models for the chatrelay configuration file. Every section forbids
unknown keys so that typos surface as validation errors with field context.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProviderConfigSchema(BaseModel):
    """Settings shared by every outbound provider section."""

    model_config = ConfigDict(extra="forbid")

    text_chunk_limit: Optional[int] = Field(
        None,
        description="Maximum characters per outbound text chunk",
    )


class TelegramConfigSchema(ProviderConfigSchema):
    """Telegram Bot API settings."""

    bot_token: Optional[str] = Field(None, description="Bot API token")
    token_file: Optional[str] = Field(
        None,
        description="Path to a file holding the bot token",
    )


class WhatsAppConfigSchema(ProviderConfigSchema):
    """WhatsApp settings."""


class DiscordConfigSchema(ProviderConfigSchema):
    """Discord bot settings."""

    token: Optional[str] = Field(None, description="Discord bot token")


class SlackConfigSchema(ProviderConfigSchema):
    """Slack app settings."""

    bot_token: Optional[str] = Field(None, description="Slack bot token (xoxb-...)")


class SignalConfigSchema(ProviderConfigSchema):
    """signal-cli daemon settings."""

    media_max_mb: Optional[float] = Field(
        None,
        description="Media size ceiling in megabytes",
    )
    http_url: str = Field(
        "http://127.0.0.1:8080",
        description="Base URL of the signal-cli HTTP daemon",
    )
    account: Optional[str] = Field(None, description="Sending account number")


class IMessageConfigSchema(ProviderConfigSchema):
    """iMessage settings."""

    media_max_mb: Optional[float] = Field(
        None,
        description="Media size ceiling in megabytes",
    )


class AgentConfigSchema(BaseModel):
    """Settings shared across providers."""

    model_config = ConfigDict(extra="forbid")

    media_max_mb: Optional[float] = Field(
        None,
        description="Default media size ceiling in megabytes",
    )


class GatewayAuthConfigSchema(BaseModel):
    """Credentials for a locally running gateway."""

    model_config = ConfigDict(extra="forbid")

    token: Optional[str] = None
    password: Optional[str] = None


class GatewayRemoteConfigSchema(BaseModel):
    """Target and credentials for a remote gateway."""

    model_config = ConfigDict(extra="forbid")

    url: Optional[str] = None
    token: Optional[str] = None
    password: Optional[str] = None


class GatewayConfigSchema(BaseModel):
    """How to reach the gateway control process."""

    model_config = ConfigDict(extra="forbid")

    mode: Literal["local", "remote"] = Field(
        "local",
        description="Connect to a local gateway or the configured remote one",
    )
    bind: Literal["loopback", "tailnet", "auto"] = Field(
        "loopback",
        description="Address preference for the locally constructed URL",
    )
    port: Optional[int] = Field(None, ge=1, le=65535)
    auth: GatewayAuthConfigSchema = Field(default_factory=GatewayAuthConfigSchema)
    remote: GatewayRemoteConfigSchema = Field(default_factory=GatewayRemoteConfigSchema)


class RelayConfig(BaseModel):
    """Root configuration model."""

    model_config = ConfigDict(extra="forbid")

    telegram: TelegramConfigSchema = Field(default_factory=TelegramConfigSchema)
    whatsapp: WhatsAppConfigSchema = Field(default_factory=WhatsAppConfigSchema)
    discord: DiscordConfigSchema = Field(default_factory=DiscordConfigSchema)
    slack: SlackConfigSchema = Field(default_factory=SlackConfigSchema)
    signal: SignalConfigSchema = Field(default_factory=SignalConfigSchema)
    imessage: IMessageConfigSchema = Field(default_factory=IMessageConfigSchema)
    agent: AgentConfigSchema = Field(default_factory=AgentConfigSchema)
    gateway: GatewayConfigSchema = Field(default_factory=GatewayConfigSchema)

    def provider_section(self, provider: str) -> ProviderConfigSchema:
        """Return the config section for an outbound provider."""
        name = getattr(provider, "value", provider)
        section = getattr(self, name, None)
        if not isinstance(section, ProviderConfigSchema):
            raise KeyError(f"Unknown provider section: {provider}")
        return section
