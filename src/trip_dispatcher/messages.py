"""Outbound message texts (pt-BR).

Every text the dispatcher sends lives here so the state machines only decide
*which* message goes out, never how it reads.
"""

from __future__ import annotations

from trip_dispatcher.models import Trip
from trip_dispatcher.phones import format_date, format_phone

PASSENGER_COUNT_OPTIONS: dict[str, str] = {
    "1": "1 pessoa",
    "2": "2 pessoas",
    "3": "3 pessoas",
    "4": "4 pessoas ou mais",
}

LUGGAGE_OPTIONS: dict[str, str] = {
    "1": "1 a 2 malas",
    "2": "2 a 3 malas",
    "3": "3 a 4 malas",
    "4": "4 malas ou mais",
    "5": "Não vou levar malas",
}

RATING_OPTIONS = ("1", "2", "3")

INVALID_CODE = (
    "⚠️ Código inválido. Por favor, confirme os 4 últimos dígitos do seu telefone."
)
INVALID_OPTION = "⚠️ Responda apenas uma das opções disponíveis."
ALREADY_ACCEPTED = "⚠️ Desculpe, esta viagem já foi confirmada por outro motorista."


def _trip_details(trip: Trip) -> str:
    return (
        f"📅 Data: {format_date(trip.scheduled_date)}\n"
        f"⏰ Horário: {trip.scheduled_time}\n"
        f"📍 Origem: {trip.origin}\n"
        f"🏁 Destino: {trip.destination}"
    )


# ---------------------------------------------------------------------------
# Passenger
# ---------------------------------------------------------------------------


def passenger_trip_confirmation(trip: Trip) -> str:
    return f"Olá, {trip.passenger_name}! Sua viagem foi confirmada:\n{_trip_details(trip)}"


def passenger_code_prompt(trip: Trip) -> str:
    return (
        "🔎 *Confirme os 4 últimos dígitos do seu telefone:*\n"
        f"Os últimos 4 dígitos são: {trip.passenger_code}"
    )


def passenger_reminder(trip: Trip, lead: str) -> str:
    """Reminder sent *lead* (e.g. ``"1 hora"``) before departure."""
    return (
        "⏰ *Lembrete de viagem*\n\n"
        f"Olá {trip.passenger_name}, sua viagem está agendada para daqui a {lead}: "
        f"{format_date(trip.scheduled_date)} às {trip.scheduled_time}\n\n"
        f"🚖 Motorista: {trip.driver_name} - {format_phone(trip.driver_phone)}\n"
        f"📍 Origem: {trip.origin}\n"
        f"🏁 Destino: {trip.destination}\n"
        f"👥 Passageiros: {trip.passenger_count or '?'}\n"
        f"🧳 Malas: {trip.luggage_count or '?'}"
    )


def passenger_rating_request(trip: Trip) -> str:
    return (
        f"⭐ Olá, {trip.passenger_name}.\n\n"
        f"Esperamos que sua viagem com {trip.driver_name} ontem tenha ocorrido bem.\n"
        "Fique à vontade para incluir sugestões para melhoria ou se houve qualquer incômodo.\n"
        "Por favor, avalie:\n"
        "1️⃣ Ótima\n"
        "2️⃣ Boa\n"
        "3️⃣ Tive problemas na viagem"
    )


def passenger_recognized() -> str:
    options = "\n".join(
        f"{key}️⃣ {label}" for key, label in PASSENGER_COUNT_OPTIONS.items()
    )
    return (
        "✅ Confirmação realizada com sucesso!\n\n"
        "Agora precisamos confirmar algumas informações.\n"
        f"Quantas pessoas irão viajar?\n{options}"
    )


def luggage_prompt() -> str:
    return (
        "Agora informe a quantidade de malas:\n"
        "1️⃣ 1 mala\n"
        "2️⃣ 2 malas\n"
        "3️⃣ 3 malas\n"
        "4️⃣ 4 malas ou mais\n"
        "5️⃣ Não vou levar malas"
    )


def passenger_details_thanks() -> str:
    return "✅ Obrigado por confirmar seus dados."


def passenger_rating_thanks(trip: Trip, rating: str) -> str:
    name = trip.passenger_name
    return {
        "1": (
            f"⭐ Agradecemos pela confiança, {name}! "
            "Ficamos felizes em saber que sua experiência foi positiva."
        ),
        "2": f"🙂 Obrigado pelo feedback, {name}. Vamos melhorar onde for necessário.",
        "3": (
            f"⚠️ Lamentamos que tenha tido problemas, {name}. "
            "Sua opinião será registrada e vamos trabalhar para melhorar."
        ),
    }[rating]


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


def driver_assignment(trip: Trip) -> str:
    return (
        "Nova viagem atribuída\n\n"
        f"Olá, {trip.driver_name}!\n"
        "Você foi designado para uma nova corrida:\n\n"
        f"{_trip_details(trip)}"
    )


def driver_code_prompt(trip: Trip) -> str:
    return (
        "✅ Para confirmar, responda com os 4 últimos dígitos do seu telefone:\n"
        f"Os últimos 4 dígitos são: {trip.driver_code}"
    )


def driver_accepted(trip: Trip) -> str:
    return (
        f"✅ Confirmação recebida! Obrigado, {trip.driver_name}!\n"
        "Sua viagem foi confirmada:\n\n"
        f"{_trip_details(trip)}\n\n"
        "*Lembre-se de chegar com pelo menos 10 minutos de antecedência.*"
    )


def driver_reminder_12h(trip: Trip) -> str:
    return (
        "⏰ Lembrete de viagem\n\n"
        f"Olá {trip.driver_name}, sua corrida com o cliente {trip.passenger_name}, "
        f"está agendada às {trip.scheduled_time} de {format_date(trip.scheduled_date)}.\n\n"
        "Prepare-se e esteja no local combinado com pelo menos 10 minutos de antecedência.\n"
        "Boa rota e bom trabalho!"
    )


def driver_reminder_1h(trip: Trip) -> str:
    return (
        "⏰ Lembrete de viagem\n\n"
        f"Olá, {trip.driver_name}, sua corrida com o cliente {trip.passenger_name}, "
        f"está agendada às {trip.scheduled_time} de {format_date(trip.scheduled_date)}. "
        "Falta *1 hora* para a viagem.\n\n"
        "Prepare-se e esteja no local combinado com pelo menos 10 minutos de antecedência.\n\n"
        "Lembre-se de compartilhar a localização conosco antes de iniciar a viagem.\n\n"
        "Boa rota e bom trabalho!"
    )


def driver_distance_request(trip: Trip) -> str:
    return (
        f"📋Olá, {trip.driver_name}.\n\n"
        "Precisamos coletar algumas informações da viagem no dia "
        f"{format_date(trip.scheduled_date)} às {trip.scheduled_time}.\n\n"
        "Por favor, informe a *quilometragem percorrida* (apenas números, ex: 25):"
    )


def driver_rating_request(trip: Trip) -> str:
    return (
        f"Olá, {trip.driver_name}.\n\n"
        f"A viagem do dia {format_date(trip.scheduled_date)} às {trip.scheduled_time} "
        "foi concluída.\n"
        "Sua resposta é importante para que possamos melhorar a qualidade do serviço "
        "e entender qualquer transtorno.\n\n"
        "Avalie como foi a corrida:\n"
        "1️⃣ Sem problemas\n"
        "2️⃣ Ocorreram imprevistos leves\n"
        "3️⃣ Ocorreram problemas relevantes"
    )


DISTANCE_RECORDED = (
    "✅ Quilometragem registrada! Agora informe o valor final da corrida "
    "(apenas números, ex: 50):"
)
INVALID_DISTANCE = "⚠️ Entrada inválida. Por favor, informe a quilometragem (Ex: 25)"
FARE_RECORDED = (
    "✅ Valor registrado! E qual foi o *tempo de duração* total da viagem "
    "(em minutos, ex: 45):"
)
INVALID_FARE = "⚠️ Entrada inválida. Por favor, informe o valor (Ex: 50)"
DURATION_RECORDED = (
    "✅ Duração registrada! Por fim, adicione uma *justificativa* ou observação "
    '(ou responda "ok" se não há):'
)
INVALID_DURATION = "⚠️ Entrada inválida. Por favor, informe o tempo em *minutos* (Ex: 45)"


def driver_completion_thanks(trip: Trip) -> str:
    return f"✅ Dados da viagem registrados com sucesso, Obrigado, {trip.driver_name}!"


def driver_rating_thanks(trip: Trip, rating: str) -> str:
    name = trip.driver_name
    return {
        "1": (
            f"🌟 Agradecemos pelo retorno, {name}. "
            "Ficamos felizes em saber que ocorreu tudo bem durante a viagem."
        ),
        "2": (
            f"🙂 Obrigado por compartilhar conosco, {name}. "
            "Sua observação foi registrada e será analisada para possíveis melhorias."
        ),
        "3": (
            f"⚠️ Obrigado por compartilhar conosco, {name}. "
            "Sua observação foi registrada para que possamos melhorar a qualidade do serviço."
        ),
    }[rating]
