import pytest

from modules import build_modules
from recommendations import (
    MSG_TO_CREANOVA,
    MSG_TO_CREANOVA_MVP,
    MSG_TO_LIMEN,
    MSG_TO_LIMEN_DOUBT,
    MSG_TO_NEGOCIOS,
    MSG_TO_NEGOCIOS_MONEY,
    Intent,
    contains_any,
    intent_action,
    register_default_rules,
)
from relay import EVENT_CHAT, Event, ModuleId, ModuleRegistry, NotificationRelay


@pytest.fixture
def relay():
    r = NotificationRelay()
    for module_id, module in build_modules().items():
        r.register_module(module_id, module)
    register_default_rules(r)
    return r


def chat(relay, source, prompt, user="user:u1"):
    return relay.notify(source, {"type": EVENT_CHAT, "userId": user, "prompt": prompt})


def pending(relay, module_id, user="user:u1"):
    return relay.registry.get(module_id).take_recommendation(user)


def test_contains_any_ignores_case_and_accents():
    pred = contains_any("innovación", "Estrategia")

    assert pred("Necesito INNOVACION ya")
    assert pred("mi estrategía comercial")
    assert not pred("nada que ver")
    assert not pred("")


def test_default_rule_table_size(relay):
    assert len(relay.rules) == 4
    assert [r.match_module for r in relay.rules] == ["creanova", "limen", "aprende_negocios", "*"]


def test_limen_idea_recommends_creanova(relay):
    chat(relay, ModuleId.LIMEN, "Tengo una idea pero no sé por dónde empezar")

    assert pending(relay, ModuleId.CREANOVA) == MSG_TO_CREANOVA
    assert pending(relay, ModuleId.APRENDE_NEGOCIOS) is None


def test_creanova_strategy_and_purpose(relay):
    chat(relay, ModuleId.CREANOVA, "Quiero una estrategia, pero siento miedo")

    assert pending(relay, ModuleId.APRENDE_NEGOCIOS) == MSG_TO_NEGOCIOS
    assert pending(relay, ModuleId.LIMEN) == MSG_TO_LIMEN


def test_same_target_last_intent_wins(relay):
    chat(relay, ModuleId.CREANOVA, "Estrategia para vender a más clientes")

    assert pending(relay, ModuleId.APRENDE_NEGOCIOS) == MSG_TO_NEGOCIOS_MONEY


def test_negocios_doubt_recommends_limen(relay):
    chat(relay, ModuleId.APRENDE_NEGOCIOS, "Tengo muchas dudas y ansiedad")

    assert pending(relay, ModuleId.LIMEN) == MSG_TO_LIMEN_DOUBT


def test_wildcard_mvp_rule_overrides_source_rule(relay):
    # limen "proyecto" -> creanova; luego la regla comodín "mvp" sobrescribe
    chat(relay, ModuleId.LIMEN, "Mi proyecto necesita un MVP")

    assert pending(relay, ModuleId.CREANOVA) == MSG_TO_CREANOVA_MVP


def test_wildcard_mvp_rule_skips_creanova_itself(relay):
    chat(relay, ModuleId.CREANOVA, "Diseñemos el prototipo")

    assert pending(relay, ModuleId.CREANOVA) is None


def test_recommendations_stay_per_user(relay):
    chat(relay, ModuleId.LIMEN, "una idea", user="user:u1")

    assert pending(relay, ModuleId.CREANOVA, user="user:u2") is None
    assert pending(relay, ModuleId.CREANOVA, user="anon:u1") is None
    assert pending(relay, ModuleId.CREANOVA, user="user:u1") == MSG_TO_CREANOVA


def test_register_default_rules_with_custom_event_type():
    relay = NotificationRelay()
    for module_id, module in build_modules().items():
        relay.register_module(module_id, module)

    assert register_default_rules(relay, event_type="mensaje") == 4
    assert chat(relay, ModuleId.LIMEN, "una idea") == 0
    assert relay.notify(ModuleId.LIMEN, {"type": "mensaje", "userId": "user:u1", "prompt": "una idea"}) == 2


def test_intent_action_sets_name_and_delivers():
    delivered = []

    class Recorder(ModuleRegistry):
        def deliver(self, module_id, user_id, message):
            delivered.append((module_id, user_id, message))
            return True

    action = intent_action(
        "demo",
        [Intent(contains_any("hola"), ModuleId.LIMEN, "saludo")],
        skip_sources=(ModuleId.APRENDE_NEGOCIOS,),
    )
    action(Event(ModuleId.CREANOVA, EVENT_CHAT, "user:u1", "Hola mundo"), Recorder())
    action(Event(ModuleId.APRENDE_NEGOCIOS, EVENT_CHAT, "user:u1", "Hola mundo"), Recorder())

    assert action.__name__ == "demo"
    assert delivered == [(ModuleId.LIMEN, "user:u1", "saludo")]
