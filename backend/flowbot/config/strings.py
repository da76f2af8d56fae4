# /flowbot/config/strings.py

# This file contains all user-facing strings and menu templates, making them
# easy to manage, update and localize without changing engine logic.

from flowbot.models.flow import MenuTemplate, MenuSection, MenuRow

# Welcome
WELCOME_HEADER = "👟 Sapataria Alves 👟"
WELCOME_BODY = (
    "Como podemos te ajudar hoje? Escolha uma das opções no menu abaixo "
    "ou toque no botão correspondente."
)
WELCOME_TEXT = f"{WELCOME_HEADER}\n{WELCOME_BODY}"

# Recovery ladder
FRIENDLY_RETRY = (
    "Não consegui identificar sua solicitação. Por favor, utilize o menu para "
    "escolher uma das opções disponíveis."
)
FALLBACK_RETRY = (
    "Ainda não entendi sua necessidade. Você pode encerrar e aguardar um "
    "atendente ou voltar para o menu principal."
)
FALLBACK_CLOSURE = (
    "Tudo bem! Vamos encerrar por aqui e um atendente dará continuidade assim "
    "que possível. Muito obrigado pelo contato!"
)
LOCKED_NOTICE = (
    "Estamos finalizando seu atendimento anterior. Assim que um atendente "
    "estiver disponível, a conversa será retomada automaticamente."
)
RESUMED_NOTICE = "Obrigado por aguardar! Vamos retomar o atendimento a partir do menu principal."
AWAITING_AGENT = (
    "Sua dúvida foi encaminhada para nossa equipe. Em até alguns instantes um "
    "atendente continuará o atendimento."
)
INVALID_WHILE_LOCKED = (
    "Recebemos sua mensagem e manteremos o atendimento em espera por alguns "
    "minutos. Em breve retornaremos."
)

# Suggestions
SUGGESTION_PROMPT = (
    'Encontrei uma opção parecida com o que você digitou: "{option}". Essa é a '
    'escolha correta? Responda com "sim" ou selecione outra opção no menu.'
)
SUGGESTION_CONFIRM_HINT = "Se preferir outra opção, basta escolher direto no menu."

# Flow lifecycle
FLOW_UNAVAILABLE = "Fluxo indisponível no momento."
EXPIRED_FLOW = "Sua sessão anterior foi encerrada."
INVALID_OPTION = "Não entendi. Por favor, escolha uma das opções listadas."
GENERIC_FLOW_ERROR = "Ocorreu um erro no fluxo. Encerrando."
FLOW_CANCELLED = "Atendimento encerrado. Envie qualquer mensagem para recomeçar."

# Menu responses
RESPONSE_ORCAMENTO = (
    "Perfeito!\nEnvie uma foto do seu tênis/bolsa/sapato e descreva brevemente o que "
    "precisa (ex.: troca de sola, limpeza, restauração).\nNosso time vai analisar e "
    "enviar o orçamento inicial com prazo estimado."
)
RESPONSE_ANDAMENTO = (
    "Certo!\nPor favor, informe o número da sua Ordem de Serviço (OS) ou o telefone "
    "cadastrado.\nAssim consigo consultar no sistema e trazer mais informações."
)
RESPONSE_LOCALIZACAO = """Estamos na:
📍 C12 Bloco O Lote 07/14, Loja 05 – Taguatinga Centro, Brasília – DF.

🕒 Horário de funcionamento:
Segunda a Sexta: 09h – 17h
Sábado: 09h – 13h

👉 Clique aqui para abrir no Google Maps: https://maps.app.goo.gl/oP1C3Q9eBDjx96Eu6"""
RESPONSE_OUTRAS = """Claro!
Você pode perguntar sobre:
- Tipos de serviços que realizamos
- Valores médios e prazos
- Parcerias e indicações

Digite sua dúvida e eu vou te ajudar. Caso prefira, um atendente dará continuidade em instantes."""

# Interactive lists
INITIAL_MENU_TEMPLATE = MenuTemplate(
    title="Atendimento Sapataria Alves",
    body="Selecione como podemos te ajudar. Você pode tocar na opção desejada para continuar.",
    button_text="Ver opções",
    sections=[
        MenuSection(
            title="Serviços principais",
            rows=[
                MenuRow(id="orcamento", title="Solicitar orçamento", description="Envie fotos e receba uma estimativa inicial."),
                MenuRow(id="andamento", title="Verificar andamento da OS", description="Consulte o status da sua ordem de serviço."),
                MenuRow(id="localizacao", title="Localização e horário", description="Endereço completo e horários de atendimento."),
                MenuRow(id="outras", title="Outras informações", description="Envie dúvidas gerais ou pedidos específicos."),
            ],
        )
    ],
)

FALLBACK_WAIT_FOR_AGENT = "aguardar_atendente"
FALLBACK_BACK_TO_MENU = "voltar_menu"

FALLBACK_MENU_TEMPLATE = MenuTemplate(
    title="Posso te ajudar de outra forma?",
    body="Não se preocupe! Escolha uma opção abaixo para seguir com o atendimento.",
    button_text="Continuar atendimento",
    sections=[
        MenuSection(
            title="Próximos passos",
            rows=[
                MenuRow(id=FALLBACK_WAIT_FOR_AGENT, title="Encerrar e aguardar atendente", description="Vamos finalizar por aqui e avisar nossa equipe."),
                MenuRow(id=FALLBACK_BACK_TO_MENU, title="Voltar ao menu principal", description="Reabrir as opções iniciais."),
            ],
        )
    ],
)
