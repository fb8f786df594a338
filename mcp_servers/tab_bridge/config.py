from __future__ import annotations

import os
from dataclasses import dataclass, field


def _int_env(name: str, *, default: int, lo: int, hi: int) -> int:
    try:
        val = int(os.environ.get(name) or default)
    except Exception:
        val = default
    return max(lo, min(val, hi))


def _float_env(name: str, *, default: float, lo: float, hi: float) -> float:
    try:
        val = float(os.environ.get(name) or default)
    except Exception:
        val = default
    return max(lo, min(val, hi))


@dataclass
class BridgeConfig:
    host: str = "127.0.0.1"
    port: int = 9222
    port_span: int = 10
    rpc_timeout: float = 30.0
    settle_ms: int = 100
    console_max_entries: int = 1000
    allow_hosts: list[str] = field(default_factory=list)
    http_timeout: float = 10.0
    http_max_bytes: int = 1_000_000

    @property
    def ws_url(self) -> str:
        return f"ws://{self.host}:{int(self.port)}"

    @property
    def settle_delay(self) -> float:
        return max(0, int(self.settle_ms)) / 1000.0

    @classmethod
    def from_env(cls) -> BridgeConfig:
        host = (os.environ.get("MCP_BRIDGE_HOST") or "127.0.0.1").strip() or "127.0.0.1"
        allow_raw = os.environ.get("MCP_ALLOW_HOSTS", "")
        allow_hosts = [host.strip().lower() for host in allow_raw.split(",") if host.strip() and host.strip() != "*"]
        return cls(
            host=host,
            port=_int_env("MCP_BRIDGE_PORT", default=9222, lo=1, hi=65535),
            port_span=_int_env("MCP_BRIDGE_PORT_SPAN", default=10, lo=0, hi=250),
            rpc_timeout=_float_env("MCP_RPC_TIMEOUT", default=30.0, lo=0.05, hi=600.0),
            settle_ms=_int_env("MCP_SETTLE_MS", default=100, lo=0, hi=10_000),
            console_max_entries=_int_env("MCP_CONSOLE_MAX", default=1000, lo=1, hi=100_000),
            allow_hosts=allow_hosts,
            http_timeout=_float_env("MCP_HTTP_TIMEOUT", default=10.0, lo=0.1, hi=300.0),
            http_max_bytes=_int_env("MCP_HTTP_MAX_BYTES", default=1_000_000, lo=1024, hi=100_000_000),
        )

    def is_host_allowed(self, host: str) -> bool:
        host = (host or "").strip().lower().rstrip(".")
        if not self.allow_hosts:
            return True
        for raw_allowed in self.allow_hosts:
            allowed = (raw_allowed or "").strip().lower().lstrip(".").rstrip(".")
            if not allowed:
                continue
            if host == allowed:
                return True
            if host.endswith("." + allowed):
                return True
        return False
