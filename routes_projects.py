import io
import logging
import zipfile
from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import Response

import storage
from auth import Identity, require_authenticated
from relay import ModuleId

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])

IDEAS_LIMIT = 20

# ----------------------------
# Plantilla del MVP
# ----------------------------
MVP_FILES = {
    "index.html": (
        "<!doctype html>\n<html lang=\"es\">\n<head>\n<meta charset=\"utf-8\">\n"
        "<title>Mi MVP de Millennion</title>\n<link rel=\"stylesheet\" href=\"style.css\">\n</head>\n"
        "<body>\n<h1>Mi MVP de Millennion</h1>\n<p>¡Bienvenido a mi proyecto!</p>\n"
        "<script src=\"script.js\"></script>\n</body>\n</html>\n"
    ),
    "style.css": "body { font-family: sans-serif; background-color: #f0f0f0; }\n",
    "script.js": "console.log(\"MVP cargado!\");\n",
}


def _readme(identity: Identity) -> str:
    return (
        "README para tu MVP\n\n"
        "Este archivo ZIP contiene una estructura básica de un proyecto MVP generado por Millennion BDD.\n"
        f"Autor: {identity.display_name}\n"
        f"Generado: {datetime.utcnow().isoformat()}Z\n"
    )


def _ideas_markdown(entries) -> str:
    lines = ["# Ideas forjadas en Creanova", ""]
    for e in reversed(entries):
        lines.append(f"## {e['created_at']}")
        lines.append("")
        lines.append(f"**Impulso:** {e['prompt']}")
        lines.append("")
        lines.append(e["response"])
        lines.append("")
    return "\n".join(lines)


def build_mvp_zip(identity: Identity) -> bytes:
    entries = storage.db_list_chats(identity.key, ModuleId.CREANOVA.value, limit=IDEAS_LIMIT)

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
        for name, content in MVP_FILES.items():
            zf.writestr(name, content)
        zf.writestr("README.txt", _readme(identity))
        if entries:
            zf.writestr("IDEAS.md", _ideas_markdown(entries))
    return buf.getvalue()


@router.get("/export-mvp")
def export_mvp(identity: Identity = Depends(require_authenticated)):
    data = build_mvp_zip(identity)
    filename = f"mvp_project_{datetime.utcnow().strftime('%Y%m%d%H%M%S')}.zip"
    logger.info("ZIP de MVP generado para %s (%d bytes)", identity.display_name, len(data))
    return Response(
        content=data,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
