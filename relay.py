import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Union

logger = logging.getLogger(__name__)


# ----------------------------
# Identificadores
# ----------------------------
class ModuleId(str, Enum):
    CREANOVA = "creanova"
    LIMEN = "limen"
    APRENDE_NEGOCIOS = "aprende_negocios"


WILDCARD = "*"

EVENT_CHAT = "chat"

ModuleMatch = Union[ModuleId, str]


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def anonymous_key(anonymous_id: str) -> str:
    return f"anon:{anonymous_id}"


def _coerce_module(value: Any) -> Optional[ModuleId]:
    if isinstance(value, ModuleId):
        return value
    try:
        return ModuleId(str(value))
    except ValueError:
        return None


# ----------------------------
# Modelos
# ----------------------------
@dataclass(frozen=True)
class Event:
    """Notificación inmutable emitida por un módulo tras atender una petición."""

    source_module: ModuleId
    type: Optional[str]
    user_id: Optional[str]
    payload: str = ""
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def prompt(self) -> str:
        return self.payload

    @property
    def is_well_formed(self) -> bool:
        return bool(self.type) and bool(self.user_id)


class RecommendationTarget(Protocol):
    def deliver_recommendation(self, user_id: str, message: str) -> None:
        ...


Action = Callable[[Event, "ModuleRegistry"], None]


@dataclass(frozen=True)
class Rule:
    match_module: str
    match_type: str
    action: Action

    def matches(self, event: Event) -> bool:
        # Eventos sin type/user_id nunca coinciden
        if not event.is_well_formed:
            return False
        if self.match_module != WILDCARD and self.match_module != event.source_module.value:
            return False
        return self.match_type == event.type

    @property
    def name(self) -> str:
        return getattr(self.action, "__name__", repr(self.action))


# ----------------------------
# Inbox (un slot por usuario)
# ----------------------------
class ModuleInbox:
    """
    Buzón por módulo: a lo sumo una recomendación pendiente por usuario.
    - deliver(): last-write-wins
    - take(): lee y borra (entrega at-most-once)
    - max_entries > 0 desaloja la entrada escrita hace más tiempo
    """

    def __init__(self, max_entries: int = 0) -> None:
        self._pending: "OrderedDict[str, str]" = OrderedDict()
        self._lock = threading.Lock()
        self._max_entries = max(0, int(max_entries or 0))

    def deliver(self, user_id: str, message: str) -> None:
        with self._lock:
            self._pending.pop(user_id, None)
            self._pending[user_id] = message
            while self._max_entries and len(self._pending) > self._max_entries:
                evicted, _ = self._pending.popitem(last=False)
                logger.debug("Inbox llena: se descarta recomendación de %s", evicted)

    def take(self, user_id: str) -> Optional[str]:
        with self._lock:
            return self._pending.pop(user_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)


# ----------------------------
# Registro de módulos
# ----------------------------
class ModuleRegistry:
    def __init__(self) -> None:
        self._modules: Dict[ModuleId, RecommendationTarget] = {}

    def register(self, module_id: ModuleId, handle: RecommendationTarget) -> None:
        if not callable(getattr(handle, "deliver_recommendation", None)):
            raise TypeError(f"El módulo {ModuleId(module_id).value} no expone deliver_recommendation()")
        self._modules[ModuleId(module_id)] = handle

    def get(self, module_id: ModuleMatch) -> Optional[RecommendationTarget]:
        mid = _coerce_module(module_id)
        if mid is None:
            return None
        return self._modules.get(mid)

    def deliver(self, module_id: ModuleMatch, user_id: str, message: str) -> bool:
        name = module_id.value if isinstance(module_id, ModuleId) else str(module_id)
        target = self.get(module_id)
        if target is None:
            logger.error("Módulo destino '%s' no registrado; recomendación descartada", name)
            return False
        target.deliver_recommendation(user_id, message)
        logger.info("Recomendación entregada a '%s' para %s", name, user_id)
        return True

    def ids(self) -> List[ModuleId]:
        return list(self._modules)


# ----------------------------
# Relay: reglas + dispatcher + notifier
# ----------------------------
class NotificationRelay:
    """
    Se construye una vez al arrancar y se inyecta en las rutas
    (request.app.state.relay). Todo el estado vive en memoria:
    un reinicio del proceso pierde las recomendaciones pendientes.
    """

    def __init__(self, registry: Optional[ModuleRegistry] = None) -> None:
        self.registry = registry or ModuleRegistry()
        self._rules: List[Rule] = []
        self._rules_lock = threading.Lock()

    def register_module(self, module_id: ModuleId, handle: RecommendationTarget) -> None:
        self.registry.register(module_id, handle)
        logger.info("Módulo registrado: %s", ModuleId(module_id).value)

    def register_rule(self, matcher: Mapping[str, Any], action: Action) -> Rule:
        module = matcher.get("module", WILDCARD)
        event_type = matcher.get("type")
        if not event_type:
            raise ValueError("La regla necesita 'type'")
        if module != WILDCARD:
            mid = _coerce_module(module)
            if mid is None:
                raise ValueError(f"Módulo desconocido en regla: {module}")
            module = mid.value

        rule = Rule(match_module=module, match_type=str(event_type), action=action)
        with self._rules_lock:
            self._rules.append(rule)
        logger.info("Regla añadida: %s/%s => %s", rule.match_module, rule.match_type, rule.name)
        return rule

    @property
    def rules(self) -> List[Rule]:
        with self._rules_lock:
            return list(self._rules)

    def dispatch(self, event: Event) -> int:
        """Ejecuta en orden de registro cada regla que coincide. Devuelve cuántas se ejecutaron."""
        fired = 0
        for rule in self.rules:
            if not rule.matches(event):
                continue
            fired += 1
            try:
                rule.action(event, self.registry)
            except Exception:
                logger.exception(
                    "Falló la acción %s para evento %s/%s", rule.name, event.source_module.value, event.type
                )
        return fired

    def notify(self, source_module: ModuleMatch, event: Mapping[str, Any]) -> int:
        # Nunca propaga errores al handler HTTP
        try:
            mid = _coerce_module(source_module)
            if mid is None:
                logger.error("notify() desde módulo desconocido: %s", source_module)
                return 0

            data = dict(event or {})
            camel = data.pop("userId", None)
            snake = data.pop("user_id", None)
            built = Event(
                source_module=mid,
                type=data.pop("type", None),
                user_id=camel or snake,
                payload=str(data.pop("prompt", "") or ""),
                extra=data,
            )
            logger.debug("Evento recibido de %s: type=%s user=%s", mid.value, built.type, built.user_id)
            return self.dispatch(built)
        except Exception:
            logger.exception("notify() falló para %s", source_module)
            return 0

    def snapshot(self) -> Dict[str, Any]:
        pending = {}
        for mid in self.registry.ids():
            handle = self.registry.get(mid)
            try:
                pending[mid.value] = len(handle)  # type: ignore[arg-type]
            except TypeError:
                pending[mid.value] = None
        return {
            "modules": [m.value for m in self.registry.ids()],
            "rules": len(self.rules),
            "pending": pending,
        }
