# backend/tests/integration/test_flow_session.py

import pytest

from flowbot.config import strings
from flowbot.models.flow import MenuTemplate
from flowbot.services.flow_session_service import FlowSessionService, format_prompt
from flowbot.workflows.definitions import CATALOG_FLOW_KEY

LOCK_MS = 15 * 60 * 1000


def sent(send_safe):
    """Contents passed to send_safe, in order."""
    return [call.args[1] for call in send_safe.await_args_list]


async def open_menu(session_service, build_context, send_safe, reset_delay):
    await session_service.advance_or_restart(build_context("oi"))
    send_safe.reset_mock()
    reset_delay.reset_mock()


@pytest.mark.asyncio
async def test_first_message_opens_the_menu(session_service, build_context, send_safe, reset_delay, chat_id, flow_engine):
    assert await session_service.advance_or_restart(build_context("Oi")) is True

    messages = sent(send_safe)
    assert len(messages) == 2
    assert messages[0] == strings.WELCOME_TEXT
    assert isinstance(messages[1], MenuTemplate)
    assert messages[1].option_ids() == ["orcamento", "andamento", "localizacao", "outras"]
    reset_delay.assert_called_once_with(chat_id)
    assert await flow_engine.is_active(chat_id)


@pytest.mark.asyncio
async def test_empty_input_is_not_handled(session_service, build_context, send_safe):
    assert await session_service.advance_or_restart(build_context("   ")) is False
    send_safe.assert_not_awaited()


@pytest.mark.asyncio
async def test_numbered_choice_delivers_the_answer(session_service, build_context, send_safe, reset_delay, chat_id, flow_engine):
    await open_menu(session_service, build_context, send_safe, reset_delay)

    await session_service.advance_or_restart(build_context("2"))

    assert sent(send_safe) == [strings.RESPONSE_ANDAMENTO]
    reset_delay.assert_called_once_with(chat_id)
    assert not await flow_engine.is_active(chat_id)


@pytest.mark.asyncio
async def test_recovery_ladder_ends_in_a_lock(session_service, build_context, send_safe, reset_delay, recovery, chat_id, flow_engine):
    await open_menu(session_service, build_context, send_safe, reset_delay)

    await session_service.advance_or_restart(build_context("zzzz"))
    first = sent(send_safe)
    assert first[0] == strings.FRIENDLY_RETRY
    assert isinstance(first[1], MenuTemplate)
    send_safe.reset_mock()

    await session_service.advance_or_restart(build_context("zzzz"))
    second = sent(send_safe)
    assert second[0] == strings.FALLBACK_RETRY
    assert second[1].option_ids() == [strings.FALLBACK_WAIT_FOR_AGENT, strings.FALLBACK_BACK_TO_MENU]
    send_safe.reset_mock()

    await session_service.advance_or_restart(build_context("zzzz"))
    assert sent(send_safe) == [strings.FALLBACK_CLOSURE, strings.LOCKED_NOTICE]
    assert (await recovery.get_lock_status(chat_id)).locked is True
    assert not await flow_engine.is_active(chat_id)
    send_safe.reset_mock()

    assert await session_service.advance_or_restart(build_context("1")) is True
    send_safe.assert_not_awaited()


@pytest.mark.asyncio
async def test_plain_text_node_retry(flow_registry, recovery, prompts, build_context, send_safe, reset_delay):
    service = FlowSessionService(flow_registry, recovery, prompts, menu_flow_enabled=False)
    await service.advance_or_restart(build_context("oi"))
    send_safe.reset_mock()

    await service.advance_or_restart(build_context("zzzz"))

    assert sent(send_safe) == [
        strings.INVALID_OPTION,
        format_prompt(strings.WELCOME_TEXT, ["1. Consertos", "2. Produtos", "3. Falar com atendente"]),
    ]


@pytest.mark.asyncio
async def test_confirmed_suggestion_selects_the_option(session_service, build_context, send_safe, reset_delay, recovery, chat_id):
    await open_menu(session_service, build_context, send_safe, reset_delay)

    await session_service.advance_or_restart(build_context("solicitar orcament"))
    assert sent(send_safe) == [session_service.texts.suggestion_for("Solicitar orçamento")]
    pending = await recovery.peek_pending_suggestion(chat_id)
    assert pending.option_id == "orcamento"
    assert await recovery.get_attempts(chat_id) == 1
    send_safe.reset_mock()

    await session_service.advance_or_restart(build_context("sim"))

    messages = sent(send_safe)
    assert len(messages) == 1
    assert await recovery.get_attempts(chat_id) == 0
    assert "Envie uma foto do seu tênis" in messages[0]
    assert await recovery.peek_pending_suggestion(chat_id) is None


@pytest.mark.asyncio
async def test_rejected_suggestion_counts_as_an_invalid_attempt(session_service, build_context, send_safe, reset_delay, recovery, chat_id):
    await open_menu(session_service, build_context, send_safe, reset_delay)
    await session_service.advance_or_restart(build_context("solicitar orcament"))
    send_safe.reset_mock()

    await session_service.advance_or_restart(build_context("não"))

    assert sent(send_safe)[0] == strings.FALLBACK_RETRY
    assert await recovery.get_attempts(chat_id) == 2
    assert await recovery.peek_pending_suggestion(chat_id) is None


@pytest.mark.asyncio
async def test_weak_suggestion_resends_the_menu_and_waits_for_confirmation(session_service, build_context, send_safe, reset_delay, recovery, chat_id, flow_engine):
    await open_menu(session_service, build_context, send_safe, reset_delay)

    await session_service.advance_or_restart(build_context("localizacao e hora"))

    messages = sent(send_safe)
    assert messages[0] == session_service.texts.suggestion_for("Localização e horário")
    assert messages[1] == strings.SUGGESTION_CONFIRM_HINT
    assert isinstance(messages[2], MenuTemplate)
    pending = await recovery.peek_pending_suggestion(chat_id)
    assert pending.option_id == "localizacao"
    assert 0.45 <= pending.confidence < 0.75
    assert (await flow_engine.get_state(chat_id)).current == "inicio"
    send_safe.reset_mock()

    await session_service.advance_or_restart(build_context("sim"))

    assert sent(send_safe) == [strings.RESPONSE_LOCALIZACAO]
    assert await recovery.get_attempts(chat_id) == 0


@pytest.mark.asyncio
async def test_repeated_near_misses_still_lock_after_three_inputs(session_service, build_context, send_safe, reset_delay, recovery, chat_id, flow_engine):
    await open_menu(session_service, build_context, send_safe, reset_delay)

    await session_service.advance_or_restart(build_context("outras informacao"))
    assert await recovery.get_attempts(chat_id) == 1
    send_safe.reset_mock()

    await session_service.advance_or_restart(build_context("outras informacoes"))
    assert sent(send_safe)[0] == strings.FALLBACK_RETRY
    assert await recovery.peek_pending_suggestion(chat_id) is None
    send_safe.reset_mock()

    await session_service.advance_or_restart(build_context("outra informacoes"))

    assert sent(send_safe) == [strings.FALLBACK_CLOSURE, strings.LOCKED_NOTICE]
    assert (await recovery.get_lock_status(chat_id)).locked is True
    assert not await flow_engine.is_active(chat_id)


@pytest.mark.asyncio
async def test_other_option_while_suggestion_is_pending(session_service, build_context, send_safe, reset_delay, recovery, chat_id):
    await open_menu(session_service, build_context, send_safe, reset_delay)
    await session_service.advance_or_restart(build_context("solicitar orcament"))
    send_safe.reset_mock()

    await session_service.advance_or_restart(build_context("3"))

    assert sent(send_safe) == [strings.RESPONSE_LOCALIZACAO]
    assert await recovery.peek_pending_suggestion(chat_id) is None


@pytest.mark.asyncio
async def test_other_information_hands_over_and_locks(session_service, build_context, send_safe, reset_delay, recovery, chat_id, clock):
    await open_menu(session_service, build_context, send_safe, reset_delay)

    await session_service.advance_or_restart(build_context("4"))

    messages = sent(send_safe)
    assert len(messages) == 2
    assert messages[0].startswith("Claro!")
    assert messages[1] == strings.LOCKED_NOTICE
    reset_delay.assert_not_called()
    status = await recovery.get_lock_status(chat_id)
    assert status.locked is True
    assert status.remaining_ms == LOCK_MS
    send_safe.reset_mock()

    await session_service.advance_or_restart(build_context("oi"))
    send_safe.assert_not_awaited()


@pytest.mark.asyncio
async def test_expired_lock_resumes_with_the_menu(session_service, build_context, send_safe, reset_delay, recovery, chat_id, clock):
    await open_menu(session_service, build_context, send_safe, reset_delay)
    await session_service.advance_or_restart(build_context("4"))
    send_safe.reset_mock()

    clock.advance(LOCK_MS + 1)
    await session_service.advance_or_restart(build_context("oi"))

    messages = sent(send_safe)
    assert messages[0] == strings.RESUMED_NOTICE
    assert messages[1] == strings.WELCOME_TEXT
    assert isinstance(messages[2], MenuTemplate)
    assert (await recovery.get_lock_status(chat_id)).locked is False


@pytest.mark.asyncio
async def test_locked_conversation_can_be_notified_once(flow_registry, recovery, prompts, build_context, send_safe, chat_id, clock):
    service = FlowSessionService(flow_registry, recovery, prompts, notify_when_locked=True)
    await recovery.lock(chat_id, clock() + LOCK_MS)

    await service.advance_or_restart(build_context("oi"))
    await service.advance_or_restart(build_context("oi de novo"))

    assert sent(send_safe) == [strings.INVALID_WHILE_LOCKED]


@pytest.mark.asyncio
async def test_fallback_wait_for_agent(session_service, build_context, send_safe, reset_delay, recovery, chat_id, flow_engine):
    await open_menu(session_service, build_context, send_safe, reset_delay)
    await session_service.advance_or_restart(build_context("zzzz"))
    await session_service.advance_or_restart(build_context("zzzz"))
    send_safe.reset_mock()

    await session_service.advance_or_restart(build_context(strings.FALLBACK_WAIT_FOR_AGENT))

    assert sent(send_safe) == [strings.AWAITING_AGENT]
    assert (await recovery.get_lock_status(chat_id)).locked is True
    assert not await flow_engine.is_active(chat_id)


@pytest.mark.asyncio
async def test_fallback_back_to_menu(session_service, build_context, send_safe, reset_delay, recovery, chat_id):
    await open_menu(session_service, build_context, send_safe, reset_delay)
    await session_service.advance_or_restart(build_context("zzzz"))
    await session_service.advance_or_restart(build_context("zzzz"))
    send_safe.reset_mock()

    await session_service.advance_or_restart(build_context("voltar ao menu principal"))

    messages = sent(send_safe)
    assert messages[0] == strings.WELCOME_TEXT
    assert isinstance(messages[1], MenuTemplate)
    assert await recovery.get_attempts(chat_id) == 0


@pytest.mark.asyncio
async def test_numeric_reply_in_fallback_still_selects_from_the_menu(session_service, build_context, send_safe, reset_delay):
    await open_menu(session_service, build_context, send_safe, reset_delay)
    await session_service.advance_or_restart(build_context("zzzz"))
    await session_service.advance_or_restart(build_context("zzzz"))
    send_safe.reset_mock()

    await session_service.advance_or_restart(build_context("1"))

    assert "Envie uma foto do seu tênis" in sent(send_safe)[0]


@pytest.mark.asyncio
async def test_numeric_reply_after_expiry_reenters_the_flow(session_service, build_context, send_safe, reset_delay, chat_id, flow_engine):
    await open_menu(session_service, build_context, send_safe, reset_delay)
    await flow_engine.cancel(chat_id)

    await session_service.advance_or_restart(build_context("2"))

    messages = sent(send_safe)
    assert messages[0] == strings.EXPIRED_FLOW
    assert messages[1] == strings.WELCOME_TEXT
    assert await flow_engine.is_active(chat_id)


@pytest.mark.asyncio
async def test_stale_prompt_restarts_without_expiry_notice(session_service, build_context, send_safe, reset_delay, chat_id, flow_engine, clock):
    await open_menu(session_service, build_context, send_safe, reset_delay)
    await flow_engine.cancel(chat_id)
    clock.advance(60_001)

    await session_service.advance_or_restart(build_context("2"))

    assert sent(send_safe)[0] == strings.WELCOME_TEXT


@pytest.mark.asyncio
async def test_catalog_is_used_when_menu_is_disabled(flow_registry, recovery, prompts, build_context, send_safe, chat_id):
    service = FlowSessionService(flow_registry, recovery, prompts, menu_flow_enabled=False)

    await service.advance_or_restart(build_context("oi"))
    assert sent(send_safe) == [
        format_prompt(strings.WELCOME_TEXT, ["1. Consertos", "2. Produtos", "3. Falar com atendente"])
    ]
    assert await prompts.last_flow_key(chat_id) == CATALOG_FLOW_KEY
    send_safe.reset_mock()

    await service.advance_or_restart(build_context("1"))
    assert sent(send_safe) == ["Tipos de conserto:\n1. Troca de sola\n2. Reparo de costura\n3. Voltar"]
    assert await prompts.last_flow_key(chat_id) == CATALOG_FLOW_KEY


@pytest.mark.asyncio
async def test_broken_flow_is_closed_with_generic_error(flow_registry, recovery, prompts, build_context, send_safe, chat_id, flow_engine):
    service = FlowSessionService(flow_registry, recovery, prompts)
    await service.advance_or_restart(build_context("oi"))
    state = await flow_engine.get_state(chat_id)
    state.flow.nodes["inicio"].options[0].next = "sumiu"
    await flow_engine.store.set(chat_id, state)
    send_safe.reset_mock()

    await service.advance_or_restart(build_context("1"))

    assert sent(send_safe) == [strings.GENERIC_FLOW_ERROR]
    assert not await flow_engine.is_active(chat_id)
