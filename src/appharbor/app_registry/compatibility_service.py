"""
Compatibility Service
Pre-flight checks for app installation and updates.

preflight() never raises: storage failures are folded into a failing reason.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from sqlalchemy.orm import Session

from appharbor.app_registry.models import AppVersion, TenantAppInstall, utcnow
from appharbor.app_registry.registry_service import RegistryService, to_naive_utc
from appharbor.app_registry.schemas import CompatibilityCheck

logger = logging.getLogger(__name__)

LATEST = "latest"


class CompatibilityService:
    def __init__(self, session: Session, registry: Optional[RegistryService] = None):
        self.session = session
        self.registry = registry or RegistryService(session)

    def preflight(
        self, tenant_id: str, app_key: str, target_version: str = LATEST
    ) -> CompatibilityCheck:
        reasons: List[str] = []
        warnings: List[str] = []

        try:
            definition = self.registry.find_definition(app_key)
            if not definition:
                reasons.append(f"App '{app_key}' not found in registry")
                return CompatibilityCheck(ok=False, reasons=reasons, warnings=warnings)
            if not definition.is_active:
                reasons.append(f"App '{app_key}' is not active")
                return CompatibilityCheck(ok=False, reasons=reasons, warnings=warnings)

            version = self._resolve_version(app_key, target_version)
            if not version:
                reasons.append(f"Version '{target_version}' not found for '{app_key}'")
                return CompatibilityCheck(ok=False, reasons=reasons, warnings=warnings)

            compat = self.registry.get_compatibility(definition.id)
            patterns = list((compat.incompatible_with if compat else None) or [])
            if patterns:
                for installed in self._other_active_installs(tenant_id, app_key):
                    ref = f"{installed.key}@{installed.installed_version}"
                    if any(re.search(pattern, ref) for pattern in patterns):
                        reasons.append(f"Incompatible with {ref}")

            if version.breaking_changes:
                warnings.append(
                    "This version contains breaking changes. Review migration notes."
                )

            if version.deprecated_at:
                warnings.append(
                    f"This version is deprecated (since {version.deprecated_at.date().isoformat()})"
                )

            if version.end_of_life_at:
                eol = to_naive_utc(version.end_of_life_at)
                if eol < utcnow():
                    reasons.append("This version has reached end of life")
                else:
                    warnings.append(
                        f"This version will reach end of life on {eol.date().isoformat()}"
                    )
        except Exception as exc:
            logger.warning("Compatibility check for %s failed: %s", app_key, exc)
            reasons.append(f"Compatibility check failed: {exc}")

        return CompatibilityCheck(ok=not reasons, reasons=reasons, warnings=warnings)

    def can_upgrade(
        self, tenant_id: str, app_key: str, from_version: str, to_version: str
    ) -> CompatibilityCheck:
        check = self.preflight(tenant_id, app_key, to_version)
        if not check.ok:
            return check

        try:
            from_data = self.registry.get_version(app_key, from_version)
            to_data = self._resolve_version(app_key, to_version)
        except Exception as exc:
            logger.warning("Upgrade check for %s failed: %s", app_key, exc)
            check.reasons.append(f"Compatibility check failed: {exc}")
            check.ok = False
            return check

        if to_data is not None and to_data.breaking_changes and from_data is not None:
            check.warnings.append(
                "Upgrade contains breaking changes. Data migration may be required."
            )
        return check

    def _resolve_version(self, app_key: str, target_version: str) -> Optional[AppVersion]:
        if target_version == LATEST:
            return self.registry.get_latest_version(app_key)
        return self.registry.get_version(app_key, target_version)

    def _other_active_installs(
        self, tenant_id: str, app_key: str
    ) -> List[TenantAppInstall]:
        return (
            self.session.query(TenantAppInstall)
            .filter(
                TenantAppInstall.tenant_id == tenant_id,
                TenantAppInstall.is_active.is_(True),
                TenantAppInstall.key != app_key,
            )
            .all()
        )
