import unicodedata
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from relay import EVENT_CHAT, WILDCARD, Event, ModuleId, ModuleRegistry, NotificationRelay


def _norm_txt(s: str) -> str:
    # casefold + sin acentos: "Estrategía" == "estrategia"
    s = (s or "").casefold()
    s = unicodedata.normalize("NFKD", s)
    return "".join(c for c in s if not unicodedata.combining(c))


@dataclass(frozen=True)
class Intent:
    """(predicado sobre el prompt, módulo destino, mensaje)."""

    predicate: Callable[[str], bool]
    target: ModuleId
    message: str


def contains_any(*keywords: str) -> Callable[[str], bool]:
    normalized = tuple(_norm_txt(k) for k in keywords if k)

    def predicate(text: str) -> bool:
        t = _norm_txt(text)
        return any(k in t for k in normalized)

    predicate.__name__ = "contains_any(" + ",".join(normalized) + ")"
    return predicate


def intent_action(
    name: str,
    intents: Sequence[Intent],
    skip_sources: Iterable[ModuleId] = (),
) -> Callable[[Event, ModuleRegistry], None]:
    """
    Evalúa los intents en orden; cada uno que coincide encola su mensaje.
    Si varios apuntan al mismo módulo, gana la última escritura.
    """
    intents = tuple(intents)
    skipped = frozenset(skip_sources)

    def action(event: Event, registry: ModuleRegistry) -> None:
        if event.source_module in skipped:
            return
        for intent in intents:
            if intent.predicate(event.prompt):
                registry.deliver(intent.target, event.user_id, intent.message)

    action.__name__ = name
    return action


# ----------------------------
# Tabla de reglas por defecto
# ----------------------------
MSG_TO_NEGOCIOS = (
    "Veo que estás pensando en estrategia. Aprende de Negocios puede ayudarte "
    "a convertir tu idea en un plan con números."
)
MSG_TO_NEGOCIOS_MONEY = (
    "Si quieres aterrizar esto en dinero y clientes, pasa por Aprende de Negocios."
)
MSG_TO_LIMEN = (
    "Antes de construir, aclara el porqué. Limen puede ayudarte a encontrar el sentido detrás de tu proyecto."
)
MSG_TO_LIMEN_DOUBT = (
    "Las dudas también son información. Limen te acompaña a cruzar ese umbral."
)
MSG_TO_CREANOVA = (
    "Tienes una idea en marcha. Creanova puede forjarla en un proyecto concreto."
)
MSG_TO_CREANOVA_MVP = (
    "¿Hablas de un MVP? Creanova puede diseñar contigo el primer prototipo."
)

DEFAULT_RULES: List[Tuple[str, ModuleId, List[Intent], Tuple[ModuleId, ...]]] = [
    (
        "creanova_chat_recommendations",
        ModuleId.CREANOVA,
        [
            Intent(contains_any("estrategia", "negocio"), ModuleId.APRENDE_NEGOCIOS, MSG_TO_NEGOCIOS),
            Intent(contains_any("vender", "clientes"), ModuleId.APRENDE_NEGOCIOS, MSG_TO_NEGOCIOS_MONEY),
            Intent(contains_any("proposito", "sentido", "miedo", "bloqueo"), ModuleId.LIMEN, MSG_TO_LIMEN),
        ],
        (),
    ),
    (
        "limen_chat_recommendations",
        ModuleId.LIMEN,
        [
            Intent(contains_any("idea", "proyecto", "crear"), ModuleId.CREANOVA, MSG_TO_CREANOVA),
            Intent(contains_any("dinero", "emprender", "negocio"), ModuleId.APRENDE_NEGOCIOS, MSG_TO_NEGOCIOS_MONEY),
        ],
        (),
    ),
    (
        "aprende_negocios_chat_recommendations",
        ModuleId.APRENDE_NEGOCIOS,
        [
            Intent(contains_any("innovacion", "idea", "producto"), ModuleId.CREANOVA, MSG_TO_CREANOVA),
            Intent(contains_any("duda", "miedo", "ansiedad"), ModuleId.LIMEN, MSG_TO_LIMEN_DOUBT),
        ],
        (),
    ),
]

# Regla transversal: cualquier módulo que detecte un MVP recomienda Creanova
WILDCARD_RULES: List[Tuple[str, List[Intent], Tuple[ModuleId, ...]]] = [
    (
        "any_chat_mvp_to_creanova",
        [Intent(contains_any("mvp", "prototipo"), ModuleId.CREANOVA, MSG_TO_CREANOVA_MVP)],
        (ModuleId.CREANOVA,),
    ),
]


def register_default_rules(relay: NotificationRelay, event_type: Optional[str] = None) -> int:
    event_type = event_type or EVENT_CHAT
    count = 0
    for name, source, intents, skip in DEFAULT_RULES:
        relay.register_rule({"module": source, "type": event_type}, intent_action(name, intents, skip))
        count += 1
    for name, intents, skip in WILDCARD_RULES:
        relay.register_rule({"module": WILDCARD, "type": event_type}, intent_action(name, intents, skip))
        count += 1
    return count
