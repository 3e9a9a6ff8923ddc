from dataclasses import dataclass, field
from typing import Dict, Optional

from relay import ModuleId, ModuleInbox


@dataclass
class ChatModule:
    """Módulo de chat: persona del LLM + buzón de recomendaciones propio."""

    module_id: ModuleId
    label: str
    slug: str
    system_prompt: str
    fallback_reply: str
    inbox: ModuleInbox = field(default_factory=ModuleInbox)

    def deliver_recommendation(self, user_id: str, message: str) -> None:
        self.inbox.deliver(user_id, message)

    def take_recommendation(self, user_id: str) -> Optional[str]:
        return self.inbox.take(user_id)

    def __len__(self) -> int:
        return len(self.inbox)


# ----------------------------
# Personas (contenido de prompt mínimo)
# ----------------------------
CREANOVA_SYSTEM = """
Eres CREANOVA, la forja de realidades de Millennion BDD.
Transformas los impulsos del usuario en proyectos disruptivos, estratégicos y asimétricos.
Si pide una infraestructura, un ecosistema o un MVP, entrega un plan de acción inicial.
Respuesta concisa, inspiradora y orientada a la acción. No respondas como un chatbot genérico.
""".strip()

LIMEN_SYSTEM = """
Eres LIMEN, el catalizador de la verdad de Millennion BDD.
Guías al usuario a través del umbral de la autoconciencia y la claridad.
Voz profunda, serena y filosófica. Párrafos cortos, Markdown para conceptos clave, sin emojis.
""".strip()

APRENDE_NEGOCIOS_SYSTEM = """
Actúas como un mentor de negocios de élite y arquitecto de imperios.
Respuesta concisa, directa y orientada a la acción, con tono enérgico.
Piensa en sistemas, no en transacciones. Usa Markdown con negritas para conceptos clave.
""".strip()


def build_modules(inbox_max_entries: int = 0) -> Dict[ModuleId, ChatModule]:
    return {
        ModuleId.CREANOVA: ChatModule(
            module_id=ModuleId.CREANOVA,
            label="Creanova",
            slug="creanova",
            system_prompt=CREANOVA_SYSTEM,
            fallback_reply="La forja de realidades está en pausa. Intenta de nuevo con un nuevo impulso.",
            inbox=ModuleInbox(inbox_max_entries),
        ),
        ModuleId.LIMEN: ChatModule(
            module_id=ModuleId.LIMEN,
            label="Limen",
            slug="limen",
            system_prompt=LIMEN_SYSTEM,
            fallback_reply="La claridad es una elección. ¿Qué umbral te atreves a cruzar?",
            inbox=ModuleInbox(inbox_max_entries),
        ),
        ModuleId.APRENDE_NEGOCIOS: ChatModule(
            module_id=ModuleId.APRENDE_NEGOCIOS,
            label="Aprende de Negocios",
            slug="aprende-negocios",
            system_prompt=APRENDE_NEGOCIOS_SYSTEM,
            fallback_reply="La mentalidad es tu primer activo. ¿Qué estrategia quieres forjar?",
            inbox=ModuleInbox(inbox_max_entries),
        ),
    }
