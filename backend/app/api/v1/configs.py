"""API endpoints for reading and updating the reminder policy YAML file."""

from __future__ import annotations

import logging
from typing import Any, Dict, Literal, Optional

import pydantic
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ...core.config import ReminderPolicy, load_yaml, policy_path, safe_write_yaml
from ...services.container import ServiceContainer, get_services
from .errors import error_payload

LOGGER = logging.getLogger(__name__)

router = APIRouter()


class SettingsUpdate(BaseModel):
    averaging_policy: Optional[Literal["simple", "weighted"]] = None
    lead_time_days: Optional[int] = Field(None, ge=0, le=30)
    sweep_hour: Optional[int] = Field(None, ge=0, le=23)
    sweep_minute: Optional[int] = Field(None, ge=0, le=59)
    timezone: Optional[str] = Field(None, min_length=1)
    max_concurrent_sends: Optional[int] = Field(None, ge=1, le=64)
    dispatch_retries: Optional[int] = Field(None, ge=0, le=5)
    message_template: Optional[str] = Field(None, min_length=1)


def _merge_updates(original: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    result = original.copy()
    result.update({k: v for k, v in updates.items() if v is not None})
    return result


@router.get("/configs/settings")
def get_settings(services: ServiceContainer = Depends(get_services)) -> Dict[str, Any]:
    """Return the reminder policy currently in effect."""
    return services.policy.model_dump()


@router.put("/configs/settings")
def put_settings(
    body: SettingsUpdate,
    services: ServiceContainer = Depends(get_services),
) -> Dict[str, Any]:
    path = policy_path(services.settings.config_dir)
    current = load_yaml(path)

    changes = body.model_dump(exclude_none=True)
    updated = _merge_updates(current, changes)
    try:
        policy = ReminderPolicy.model_validate(_merge_updates(services.policy.model_dump(), changes))
    except pydantic.ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=error_payload("invalid_settings", str(exc.errors()[0].get("msg", exc))),
        ) from exc

    if updated != current:
        try:
            safe_write_yaml(path, updated)
        except OSError as exc:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=error_payload("write_failed", str(exc)),
            ) from exc

    services.apply_policy(policy)
    LOGGER.info("Reminder policy updated: %s", body.model_dump(exclude_none=True))
    return policy.model_dump()
