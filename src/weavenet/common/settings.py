"""Runtime configuration for the weave network control commands."""

from __future__ import annotations

from typing import Annotated, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Linux IFNAMSIZ minus the trailing NUL.
MAX_IFNAME_LENGTH = 15
MAX_PID_DIGITS = 7


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class WeaveSettings(BaseSettings):
    """Configuration shared by setup, launch, and the helper daemon."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    bridge_name: str = env_field("weave", "WEAVE_BRIDGE")
    mtu: int = env_field(65535, "WEAVE_MTU")
    container_ifname: str = env_field("ethwe", "WEAVE_CONTAINER_IFNAME")
    router_image: str = env_field("zettio/weave", "WEAVE_IMAGE")
    router_container_name: str = env_field("weave", "WEAVE_CONTAINER_NAME")
    router_network_mode: str = env_field("host", "WEAVE_NETWORK_MODE")
    router_capabilities: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["NET_ADMIN", "NET_RAW"],
        validation_alias="WEAVE_CAPABILITIES",
    )
    router_password: Optional[SecretStr] = env_field(None, "WEAVE_PASSWORD")
    status_host: str = env_field("127.0.0.1", "WEAVE_STATUS_HOST")
    status_port: int = env_field(6784, "WEAVE_STATUS_PORT")
    status_timeout_seconds: float = env_field(5.0, "WEAVE_STATUS_TIMEOUT")
    docker_socket_path: str = env_field("/var/run/docker.sock", "WEAVE_DOCKER_SOCKET")
    nat_chain: str = env_field("WEAVE", "WEAVE_NAT_CHAIN")
    iptables_path: str = env_field("iptables", "WEAVE_IPTABLES")
    log_level: str = env_field("INFO", "WEAVE_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "WEAVE_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "WEAVE_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "WEAVE_OTEL_SAMPLER_RATIO")

    @field_validator("mtu")
    @classmethod
    def _validate_mtu(cls, value: int) -> int:
        if not 68 <= value <= 65535:
            raise ValueError("MTU must be between 68 and 65535")
        return value

    @field_validator("bridge_name")
    @classmethod
    def _validate_bridge_name(cls, value: str) -> str:
        if not value or len(value) > MAX_IFNAME_LENGTH:
            raise ValueError(f"bridge name must be 1-{MAX_IFNAME_LENGTH} characters")
        return value

    @field_validator("container_ifname")
    @classmethod
    def _validate_container_ifname(cls, value: str) -> str:
        # Host-side names are v<ifname>pl<pid>; leave room for the pid.
        if not value or len(value) + 3 + MAX_PID_DIGITS > MAX_IFNAME_LENGTH:
            raise ValueError("container interface name is too long to derive host-side veth names")
        return value

    @field_validator("router_capabilities", mode="before")
    @classmethod
    def _split_capabilities(cls, value):
        if isinstance(value, str):
            return [item.strip().upper() for item in value.split(",") if item.strip()]
        return value

    @property
    def docker_base_url(self) -> str:
        return f"unix://{self.docker_socket_path}"

    @property
    def status_url(self) -> str:
        return f"http://{self.status_host}:{self.status_port}/status"

    @property
    def password(self) -> Optional[str]:
        if self.router_password is None:
            return None
        return self.router_password.get_secret_value()
