"""Outbound texts of the citizen service desk (pt-BR)."""

from typing import Optional

LEAVE_MESSAGE_OPTIONS = (
    "Digite:\n"
    "*1* para deixar um recado\n"
    "*2* para voltar à lista de setores\n"
    "*3* para encerrar o atendimento"
)

ANOTHER_DEPARTMENT_OPTIONS = (
    "Digite:\n"
    "*1* para escolher outro setor\n"
    "*2* para deixar um recado\n"
    "*3* para encerrar o atendimento"
)

ASK_NAME_AGAIN = "Por favor, informe o seu *nome* para continuarmos."
STILL_WAITING = "Seu atendimento já foi encaminhado ao setor. Aguarde, o atendente responderá em breve. ⏳"
STILL_IN_QUEUE = "Você continua na fila de atendimento. Assim que chegar a sua vez, avisaremos por aqui."
LEAVE_MESSAGE_PROMPT = (
    "Escreva o seu recado, em uma ou mais mensagens. Você também pode enviar fotos e documentos.\n"
    "Quando terminar, digite *encerrar*."
)
AGENT_NO_CASE = "Nenhum atendimento pendente para você no momento."
AGENT_DEFERRED_CITIZEN = (
    "O atendente está ocupado no momento e responderá assim que possível. Agradecemos a sua paciência."
)
AGENT_DEFERRED_AGENT = "Certo! Vou lembrar você deste atendimento em alguns minutos."
AGENT_ACTIVE_COMMANDS = (
    "Para encerrar digite *3* ou *encerrar*. "
    "Para transferir digite *transferir N* (N = número do setor)."
)
SURVEY_RESOLVED = "Sua solicitação foi resolvida?\n*1* Sim\n*2* Não"
SURVEY_RATING = "Em uma escala de *1* a *5*, qual nota você dá para o atendimento?"
SURVEY_ANOTHER = "Deseja falar com outro setor?\n*1* Sim\n*2* Não"
SURVEY_THANKS = "Obrigado pela sua avaliação! Até a próxima. 💙"


def greeting(salutation: str, tenant_name: str) -> str:
    return (
        f"{salutation}! 👋\n"
        f"Você está falando com *{tenant_name}*.\n\n"
        "Para começarmos, por favor informe o seu *nome*."
    )


def welcome_back(salutation: str, name: str, menu: str) -> str:
    return f"{salutation}, *{name}*! 👋\n\n{menu}"


def name_received(name: str, menu: str) -> str:
    return f"Obrigado, *{name}*!\n\n{menu}"


def invalid_option(menu: str) -> str:
    return f"Opção inválida. Digite apenas o número do setor desejado.\n\n{menu}"


def invalid_choice(options: str) -> str:
    return f"Não entendi a sua resposta.\n\n{options}"


def waiting_agent(department: str) -> str:
    return (
        f"Encaminhamos o seu atendimento para o setor *{department}*.\n"
        "Aguarde um momento, o atendente responderá em breve."
    )


def agent_confirmation_prompt(citizen_name: Optional[str], citizen_number: str, department: str) -> str:
    return (
        "📢 *Novo atendimento*\n\n"
        f"Cidadão: *{citizen_name or 'não informado'}*\n"
        f"Número: {citizen_number}\n"
        f"Setor: *{department}*\n\n"
        "Digite *1* para iniciar o atendimento ou *2* para atender mais tarde."
    )


def agent_waiting_help(citizen_name: Optional[str]) -> str:
    return (
        f"Digite *1* para iniciar o atendimento de *{citizen_name or 'cidadão'}* "
        "ou *2* para atender mais tarde."
    )


def in_queue(department: str, position: int) -> str:
    return (
        f"O atendente do setor *{department}* está em outro atendimento.\n"
        f"Você está na fila, posição *{position}*. Avisaremos assim que chegar a sua vez."
    )


def queue_turn(department: str) -> str:
    return f"Chegou a sua vez! Seu atendimento foi encaminhado ao setor *{department}*. Aguarde a confirmação."


def agent_accepted_citizen(agent_name: Optional[str]) -> str:
    return f"✅ *{agent_name or 'Atendente'}* iniciou o seu atendimento. Pode enviar a sua mensagem."


def agent_accepted_agent(citizen_name: Optional[str]) -> str:
    return f"Você está atendendo *{citizen_name or 'cidadão'}*.\n{AGENT_ACTIVE_COMMANDS}"


def agent_active_help(citizen_name: Optional[str], menu: str) -> str:
    return (
        f"Atendimento em curso com *{citizen_name or 'cidadão'}*.\n"
        f"{AGENT_ACTIVE_COMMANDS}\n\n{menu}"
    )


def relay_from_citizen(citizen_name: Optional[str], text: str) -> str:
    return f"👤 *{citizen_name or 'Cidadão'}*: {text}"


def relay_from_agent(agent_name: Optional[str], text: str) -> str:
    return f"👨‍💼 *{agent_name or 'Atendente'}*: {text}"


def off_hours(department: str, hours_text: str) -> str:
    return (
        f"No momento o setor *{department}* está fora do horário de atendimento.\n\n"
        f"Horário de atendimento:\n{hours_text}\n\n"
        f"{LEAVE_MESSAGE_OPTIONS}"
    )


def no_agent(department: str) -> str:
    return f"O setor *{department}* não possui atendente disponível no momento.\n\n{ANOTHER_DEPARTMENT_OPTIONS}"


def agent_unavailable(department: str) -> str:
    return (
        f"O atendente do setor *{department}* não pôde responder agora.\n\n"
        f"{LEAVE_MESSAGE_OPTIONS}"
    )


def leave_message_ack(protocol: str) -> str:
    return (
        "Seu recado foi registrado e a equipe vai analisar no próximo atendimento.\n"
        f"Protocolo: *{protocol}*.\n"
        "Para finalizar digite *encerrar*."
    )


def leave_message_to_agent(department: str, citizen_name: Optional[str], protocol: str, text: Optional[str]) -> str:
    header = (
        "📩 *Novo recado do cidadão*\n\n"
        f"Setor: *{department}*\n"
        f"Cidadão: *{citizen_name or 'não informado'}*\n"
        f"Protocolo: *{protocol}*"
    )
    return f"{header}\n\n{text}" if text else header


def closed(protocol: str) -> str:
    return (
        "Atendimento encerrado.\n"
        f"Protocolo: *{protocol}*.\n"
        "Guarde este número para acompanhar a sua solicitação."
    )


def closed_with_survey(protocol: str) -> str:
    return f"{closed(protocol)}\n\n{SURVEY_RESOLVED}"


def idle_closed(protocol: str) -> str:
    return f"Encerramos o seu atendimento por falta de interação.\nProtocolo: *{protocol}*."


def agent_closed(citizen_name: Optional[str], protocol: str) -> str:
    return f"Atendimento de *{citizen_name or 'cidadão'}* encerrado. Protocolo: *{protocol}*."


def citizen_closed_to_agent(citizen_name: Optional[str], protocol: str) -> str:
    return f"*{citizen_name or 'O cidadão'}* encerrou o atendimento. Protocolo: *{protocol}*."


def transferred_citizen(department: str) -> str:
    return f"Seu atendimento foi transferido para o setor *{department}*."


def transferred_agent(citizen_name: Optional[str], department: str) -> str:
    return f"Atendimento de *{citizen_name or 'cidadão'}* transferido para o setor *{department}*."


def invalid_transfer(menu: str) -> str:
    return f"Setor inválido para transferência. Use *transferir N*.\n\n{menu}"


def agent_reminder(citizen_name: Optional[str], department: str, count: int) -> str:
    return (
        f"⏰ Lembrete {count}: *{citizen_name or 'Um cidadão'}* aguarda atendimento no setor *{department}*.\n"
        "Digite *1* para iniciar ou *2* para atender mais tarde."
    )


def agent_moved_to_messages(citizen_name: Optional[str]) -> str:
    return f"O atendimento de *{citizen_name or 'cidadão'}* foi direcionado para recado por falta de resposta."


def protocol_not_found(code: str) -> str:
    return f"Não encontramos o protocolo *{code}*. Confira o código e tente novamente."


def survey_invalid(question: str) -> str:
    return f"Resposta inválida.\n\n{question}"
