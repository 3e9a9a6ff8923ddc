import os
from typing import Dict

from fastapi import HTTPException

import storage
from relay import ModuleId

UNLIMITED = -1

# ----------------------------
# Cuotas mensuales por plan / módulo
# ----------------------------
QUOTAS: Dict[str, Dict[str, int]] = {
    "anonymous": {
        ModuleId.CREANOVA.value: int(os.getenv("ANON_CREANOVA_LIMIT", "2")),
        ModuleId.LIMEN.value: int(os.getenv("ANON_LIMEN_LIMIT", "2")),
        ModuleId.APRENDE_NEGOCIOS.value: int(os.getenv("ANON_APRENDE_NEGOCIOS_LIMIT", "2")),
    },
    "free": {"creanova": 10, "limen": 15, "aprende_negocios": 15},
    "essential": {"creanova": 50, "limen": 80, "aprende_negocios": 80},
    "forjador": {"creanova": 200, "limen": 320, "aprende_negocios": 320},
    "visionario": {"creanova": UNLIMITED, "limen": UNLIMITED, "aprende_negocios": UNLIMITED},
}


def quota_limit(plan: str, module: str) -> int:
    plan = (plan or "free").strip().lower()
    if plan not in QUOTAS:
        plan = "free"
    return int(QUOTAS[plan].get(module, 0))


def enforce_quota(user_key: str, plan: str, module: str, label: str) -> Dict[str, int]:
    limit = quota_limit(plan, module)
    used = storage.db_get_monthly_count(user_key, module)
    if limit != UNLIMITED and used >= limit:
        raise HTTPException(
            status_code=429,
            detail=f"Límite mensual alcanzado para {label} ({used}/{limit}).",
        )
    return {"used": used, "limit": limit}


def consume_quota(user_key: str, module: str) -> int:
    return storage.db_inc_monthly_count(user_key, module)
