"""
Framework version import: YAML requirements catalog.

Format::

    framework:                # optional, created when missing
      id: HIPAA_SECURITY
      name: HIPAA Security Rule
    version:
      version_code: v2026
      effective_date: 2026-01-01
      status: final
      source_url: https://...
    requirements:
      - requirement_id: "164.312(d)"
        section_code: "164.312(d)"
        requirement_text: "..."
        supersedes: "164.312(d)"
        keywords: [mfa, phishing-resistant]

A flat layout with the version keys at top level is accepted too.
"""
from __future__ import annotations

import logging
from typing import Any, BinaryIO

import pydantic
import yaml
from sqlalchemy.ext.asyncio import AsyncSession

from crosswalk.exceptions import ValidationError
from crosswalk.models.framework import Framework, FrameworkVersion
from crosswalk.schemas.framework import FrameworkCreate, FrameworkVersionCreate
from crosswalk.services import framework_store

log = logging.getLogger(__name__)


def parse_version_yaml(content: str | bytes) -> tuple[dict[str, Any] | None, FrameworkVersionCreate]:
    """Parse a catalog into (framework block or None, version payload)."""
    if isinstance(content, bytes):
        content = content.decode("utf-8")
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise ValidationError("Invalid YAML", error=str(exc)) from exc

    if not data or not isinstance(data, dict):
        raise ValidationError("Empty YAML file")

    fw_block = data.get("framework")
    version_block = dict(data.get("version") or {})
    if not version_block:
        version_block = {k: v for k, v in data.items() if k not in ("framework", "requirements")}
    version_block["requirements"] = data.get("requirements") or []

    try:
        payload = FrameworkVersionCreate.model_validate(version_block)
    except pydantic.ValidationError as exc:
        raise ValidationError(
            "Catalog does not match the version schema",
            errors=[{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()],
        ) from exc
    return fw_block, payload


async def import_version_yaml(
    s: AsyncSession, framework_id: str, file: BinaryIO, published_by: str | None = None,
) -> FrameworkVersion:
    """Import a framework version from a YAML catalog and publish it."""
    fw_block, payload = parse_version_yaml(file.read())

    if fw_block:
        declared = str(fw_block.get("id") or framework_id)
        if declared != framework_id:
            raise ValidationError(
                "Catalog framework id does not match the target framework",
                declared=declared, framework_id=framework_id,
            )
        if not await s.get(Framework, framework_id):
            await framework_store.create_framework(s, FrameworkCreate(
                id=framework_id,
                name=fw_block.get("name") or framework_id,
                description=fw_block.get("description"),
                provider=fw_block.get("provider"),
            ))

    if published_by and not payload.published_by:
        payload.published_by = published_by

    version = await framework_store.publish_version(s, framework_id, payload)
    log.info("Imported %s from YAML (%d requirements)", version.id, len(payload.requirements))
    return version
