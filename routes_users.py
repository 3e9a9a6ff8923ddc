from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

import storage
from auth import Identity, require_authenticated
from modules import build_modules
from quotas import quota_limit

router = APIRouter(prefix="/api/users", tags=["users"])

MODULE_LABELS = {m.module_id.value: m.label for m in build_modules().values()}


class ModuleUsage(BaseModel):
    label: str
    used: int
    limit: int


class ProfileResponse(BaseModel):
    user_id: str
    user_name: Optional[str] = None
    plan: str
    usage: Dict[str, ModuleUsage]


@router.get("/profile", response_model=ProfileResponse)
def profile(identity: Identity = Depends(require_authenticated)):
    usage = {
        module: ModuleUsage(
            label=label,
            used=storage.db_get_monthly_count(identity.key, module),
            limit=quota_limit(identity.plan, module),
        )
        for module, label in MODULE_LABELS.items()
    }
    return ProfileResponse(
        user_id=identity.user_id,
        user_name=identity.user_name,
        plan=identity.plan,
        usage=usage,
    )
