"""
cloudflared routing configuration.

The config file lists ingress rules mapping hostnames to local services,
always terminated by a catch-all rule. Rules are keyed by hostname:
adding a hostname replaces its previous rule instead of appending a
second, shadowed one.
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field

from subcode_tunnel.constants import INGRESS_CATCH_ALL_SERVICE
from subcode_tunnel.core.store import atomic_write_text
from subcode_tunnel.logging import get_logger

logger = get_logger(__name__)


class IngressRule(BaseModel):
    """Single ingress entry."""

    hostname: str | None = None
    service: str


class IngressConfig(BaseModel):
    """Contents of a named tunnel's config.yml."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    tunnel: str
    credentials_file: str = Field(alias="credentials-file")
    ingress: list[IngressRule] = Field(default_factory=list)

    @classmethod
    def load(cls, path: Path) -> IngressConfig | None:
        """
        Read a config file.

        Returns:
            Parsed config, or None if the file does not exist
        """
        if not path.exists():
            return None
        data = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(data)

    @property
    def rules(self) -> list[IngressRule]:
        """Hostname rules, without the catch-all."""
        return [rule for rule in self.ingress if rule.hostname]

    def hostnames(self) -> list[str]:
        return [rule.hostname for rule in self.rules if rule.hostname]

    def upsert(self, hostname: str, service: str) -> None:
        """
        Route hostname to service, replacing any existing rule for it.

        The newest rule goes first; the catch-all stays last.
        """
        others = [rule for rule in self.rules if rule.hostname != hostname]
        self.ingress = [IngressRule(hostname=hostname, service=service), *others]
        self._terminate()

    def remove(self, hostname: str) -> bool:
        """
        Drop the rule for hostname.

        Returns:
            True if a rule was removed
        """
        before = len(self.rules)
        self.ingress = [rule for rule in self.rules if rule.hostname != hostname]
        self._terminate()
        return len(self.rules) < before

    def _terminate(self) -> None:
        self.ingress.append(IngressRule(service=INGRESS_CATCH_ALL_SERVICE))

    def to_yaml(self) -> str:
        data = self.model_dump(by_alias=True, exclude_none=True)
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)

    def save(self, path: Path) -> None:
        """Atomically write the config to path."""
        atomic_write_text(path, self.to_yaml())
        logger.debug("Wrote ingress config", path=str(path), hostnames=self.hostnames())
