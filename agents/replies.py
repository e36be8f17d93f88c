from __future__ import annotations

import re
from typing import Dict, List, Optional

from agents.text_utils import normalize
from models.schemas import Button, Currency, FinishReason, IssueCategory, Step
from settings import SETTINGS

YES_NO_PROMPT = 'Respondé "sí" o "no", por favor.'
HANDOFF_QUESTION = "¿Querés que te atienda alguien del equipo? (sí/no)"
HANDOFF_DONE = "👤 Te derivo con un integrante del equipo. ¡Gracias!"
OPERATOR_HANDOFF = "👤 Te derivo con un integrante del equipo."
OPERATOR_DEFERRED = "👤 Te paso con un agente enseguida. Antes, ¿tenés fotos para adjuntar? (sí/no)"
BACK_TO_MENU = "👍 Perfecto. Si necesitás algo más, escribí *menu* para volver al inicio."
REPAIR_APOLOGY = "Uy, perdón, me confundí. Contame de nuevo con tus palabras qué necesitás y te ayudo. 🙂"
NOT_UNDERSTOOD = (
    "No me quedó claro. Por ejemplo: “se rompió la canilla”, “actualizar por ICL”, "
    "“alquilar depto en centro” o “operador”."
)
THANKS_REPLY = "✨ ¡De nada! ¿Querés algo más? Podés escribir *menu* para ver opciones."
GOODBYE_REPLY = "👋 ¡Hasta luego! Cuando quieras retomamos. Escribí *menu* para empezar de nuevo."
MORE_DETAIL = "Decime un poquito más de detalles así te ayudo mejor. 😊"
OWNER_OR_OTHER_PROMPT = "¿Te referís a *cobrar el alquiler* o a otra cosa? Si es cobro de alquiler, decime *alquiler*."
TELL_ME_MORE = "Dale, contame un poco más de qué tema se trata y veo cómo ayudarte."

CATEGORY_PROMPT = "¿Qué tipo de problema es? (Plomería, Gas, Electricidad, Artefacto roto u Otro)"
ADDRESS_PROMPT = "📍 Pasame la *dirección del inmueble*:"
DESCRIPTION_PROMPT = "📝 Contame una *descripción* (qué pasó, desde cuándo). Podés adjuntar foto si querés."
PHOTOS_QUESTION = "📷 ¿Tenés fotos para adjuntar? (sí/no)"
PHOTOS_UPLOAD_PROMPT = "Perfecto. Adjuntá la(s) foto(s). Cuando termines, escribí *listo*."
PHOTOS_WAITING = "Podés adjuntar fotos ahora. Cuando termines, escribí *listo*."
PHOTO_RECEIVED = "📸 ¡Foto recibida! Podés enviar otra. Cuando termines, escribí *listo*."
PHOTO_THANKS = "📸 ¡Gracias por la imagen!"
REPORT_DECLINED = "👍 Entendido. Lo dejamos registrado. Si necesitás algo más, escribí *menu* para volver al inicio."

CURRENCY_PROMPT = "💱 ¿En qué moneda? Respondé *1* para Pesos (ARS) o *2* para Dólares (USD)."
CURRENCY_INVALID = "No reconocí la moneda. Elegí *1* (Pesos) o *2* (Dólares)."
AMOUNT_INVALID = "Monto inválido. Probá de nuevo (solo números)."
INDEX_VALUE_INVALID = "Valor inválido. Probá de nuevo (tiene que ser mayor a cero)."
INDEX_INITIAL_PROMPT = "Ingresá el *valor del índice inicial* (ej: 21,54):"
INDEX_FINAL_PROMPT = "Ingresá el *valor del índice final* (ej: 24,19):"

BUDGET_PROMPT = "💰 Indicá *presupuesto aproximado* (ej: 250000):"
ZONE_PROMPT = "📍 Zona / barrio preferido (o *indiferente*):"
BEDROOMS_PROMPT = "🛏️ Dormitorios (número):"
BEDROOMS_INVALID = "Ingresá un número (0,1,2,3...)."
BATHROOMS_PROMPT = "🛁 Baños (número):"
BATHROOMS_INVALID = "Ingresá un número (0,1,2...)."
GARAGE_PROMPT = "🚗 ¿Cochera? (sí/no):"
AMENITIES_PROMPT = "🧩 Comodidades (ej: balcón, patio, parrilla). Podés listar varias:"
ADVISOR_QUESTION = "¿Querés que un asesor te contacte? (sí/no)"
SEARCH_SAVED = "👍 Queda guardado. Si querés volver al inicio, escribí *menu*."
PROPERTIES_PROMPT = "Contame si querés alquilar, comprar, temporario o vender; y el tipo (casa, depto, ph, etc.)."

SALE_TYPE_PROMPT = "🧾 ¿Qué *tipo de propiedad* querés vender? (casa, depto, local, etc.)"
SALE_ADDRESS_PROMPT = "📍 Pasame *dirección aproximada o zona* del inmueble:"
SALE_CONDITION_PROMPT = "🏷️ ¿*Estado general*? (ej.: a refaccionar, bueno, muy bueno/reciclado, a estrenar)"
SALE_COMMENTS_PROMPT = "🧾 *Comentarios adicionales* (m², antigüedad, amenities). Si no tenés, escribí *listo*."
APPRAISAL_QUESTION = "¿Querés que un asesor te contacte para coordinar *tasación*? (sí/no)"

GENERAL_PROMPT = 'Contame tu consulta o escribí "operador" para hablar con alguien del equipo.'
AI_ENTERED = "🤖 Activé el modo consulta. Preguntame lo que necesites; escribí *salir* para volver."
AI_EXITED = "👌 Salimos del modo consulta."
AI_EXPIRED = "⏱️ Cerramos el modo consulta por inactividad. Escribí *menu* para volver."

ASSIGNED_NOTICE = "👤 {agent} tomó tu caso."
RATE_REQUEST = "⭐ ¿Cómo calificarías la atención recibida? (1 a 5)"
RATE_THANKS = "¡Gracias por tu opinión!"
RATE_FOLLOWUP = "¿Deseás realizar alguna otra consulta? (Sí / No)"
RATE_FOLLOWUP_NO = "👋 ¡Gracias por comunicarte! Escribí *menu* cuando necesites algo más."
QUEUED_NOTICE = "📣 Un agente fue notificado."

FINISH_NOTICES: Dict[FinishReason, str] = {
    FinishReason.AGENT: "✅ El agente finalizó la conversación.",
    FinishReason.USER: "✅ Finalizaste la conversación.",
    FinishReason.LOGOUT: "✅ El agente finalizó la conversación.",
    FinishReason.TIMEOUT: "⏱️ La conversación fue cerrada por inactividad.",
}

OPERATION_PROMPTS: Dict[str, str] = {
    "alquilar": "🧭 ¿Qué tipo de propiedad querés alquilar? (casa, depto, ph, etc.)",
    "comprar": "🧭 ¿Qué tipo de propiedad querés comprar? (casa, depto, ph, etc.)",
    "temporario": "🧭 ¿Qué tipo de propiedad buscás para temporario? (casa, depto, ph, etc.)",
}

CATEGORY_MENU: Dict[int, IssueCategory] = {
    1: IssueCategory.PLUMBING,
    2: IssueCategory.GAS,
    3: IssueCategory.ELECTRICAL,
    4: IssueCategory.APPLIANCE,
    5: IssueCategory.OTHER,
}


def format_currency(amount: Optional[float], currency: Currency | None = None) -> str:
    if amount is None:
        return "-"
    grouped = f"{abs(amount):,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    symbol = "US$" if currency == Currency.USD else "$"
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol} {grouped}"


def main_menu() -> str:
    return "\n".join(
        [
            f"👋 Hola, soy el asistente virtual de {SETTINGS.company_name}.",
            "",
            "¿En qué podemos ayudarte hoy?",
            "Opciones principales:",
            "1. Administración de alquileres",
            "2. Consulta de propiedades",
            "3. Consultas generales",
            "",
            "Tip: podés escribir con tus palabras (“se rompió la canilla”, “actualizar por ICL”…)",
            "o simplemente el número (ej.: 1, 2 o 3).",
        ]
    )


def rentals_menu() -> str:
    return "\n".join(
        [
            "Opciones de administración de alquileres:",
            "1. Reportar un problema o rotura",
            "2. Actualizar alquiler por índice (ICL, CAC, UVA/UVI, CER, Casa Propia, IPC)",
            "3. Información para inquilinos",
            "4. Información para propietarios",
            "5. Hablar con un humano",
            "",
            "También podés describirlo con tus palabras (ej.: “fuga de gas”, “ICL”).",
        ]
    )


def index_menu() -> str:
    return "\n".join(
        [
            "Decime qué índice querés usar:",
            "ICL, CAC, UVA, UVI, CER, Casa Propia, IPC INDEC (1 o 2 meses), IPC CREEBBA (1 o 2 meses).",
            "Ejemplo: “ICL”, “IPC INDEC 2 meses”.",
        ]
    )


def office_info() -> str:
    return (
        f"📍 Dirección: {SETTINGS.office_address}\n"
        "🕒 Horarios: Lunes a viernes de 9 a 13 y de 16 a 19 hs\n"
        f"📞 Teléfono alternativo: {SETTINGS.office_phone}"
    )


TENANT_INFO = """📌 Cómo pagar mi alquiler
Podés pagar por transferencia, efectivo en oficina o plataformas electrónicas. Guardá siempre el comprobante.

📌 Qué pasa si me atraso
Podrían generarse intereses, notificaciones de deuda y gestiones legales. Avisá antes si sabés que vas a retrasarte.

📌 Cómo renovar el contrato
Se gestiona entre 60 y 90 días antes del vencimiento. Revisá condiciones antes de firmar.

📌 Cómo presentar un reclamo
Contactá a la inmobiliaria, explicá el motivo, enviá fotos y pedí confirmación escrita."""

OWNER_INFO = """📌 Cómo cobro los alquileres
Podés recibir el pago por transferencia, depósito o efectivo según lo acordado. Mantené tus datos bancarios actualizados.

📌 Qué impuestos administramos
Impuesto municipal, inmobiliario y servicios básicos (a modo de ejemplo).

📌 Cómo accedo a mis reportes
Por email, acceso web o copia impresa."""

_INDEX_DEFINITIONS = {
    "icl": "ICL: Índice de Contratos de Locación (BCRA) para actualización de alquileres.",
    "cac": "CAC: Índice de la Cámara Argentina de la Construcción, usado en ajustes de obras/alquileres.",
    "uva": "UVA: Unidad de Valor Adquisitivo (actualiza por inflación).",
    "uvi": "UVI: Unidad de Vivienda (similar a UVA, referida a construcción).",
    "cer": "CER: Coeficiente de Estabilización de Referencia (ajuste por inflación).",
    "casa propia": "Coeficiente Casa Propia: actualización de créditos/contratos del programa Casa Propia.",
}


def quick_answer(text: str) -> Optional[str]:
    """Canned answers for the handful of questions every office gets."""
    t = normalize(text)
    if not t:
        return None
    if re.search(r"(horari|a que hora|cuando ati|direcci|ubicaci|donde estan)", t):
        return office_info()
    if re.search(r"(como pago|formas? de pago|medios de pago|pagar alquil|transferencia|efectivo)", t):
        return (
            "💳 Formas de pago:\n• Transferencia bancaria\n• Efectivo en oficina\n• Plataformas electrónicas\n"
            "Conservá siempre el comprobante."
        )
    if re.search(r"(tasaci|tasar|valor de mi propiedad)", t):
        return (
            "📏 Tasación:\nCoordinamos una visita sin costo para estimar el valor. "
            "¿Querés que te contacte un asesor? Escribí *operador*."
        )
    definition = re.search(r"\bque es\b.*\b(icl|cac|uva|uvi|cer|casa propia)\b", t)
    if definition:
        return "ℹ️ " + _INDEX_DEFINITIONS.get(definition.group(1), "Es un índice de actualización utilizado en contratos.")
    if re.search(r"(renovar contrato|renovacion|me atraso|pago tarde|\binteres(es)?\b)", t):
        return (
            "📌 Renovación y atrasos:\n• Renovación: gestionarla 60–90 días antes del vencimiento.\n"
            "• Atrasos: pueden generar intereses y notificaciones. Avisá si sabés que vas a retrasarte."
        )
    return None


_YES_NO = [Button(label="Sí", value="sí"), Button(label="No", value="no")]
_CURRENCY = [Button(label="1. Pesos (ARS)", value="1"), Button(label="2. Dólares (USD)", value="2")]
_MAIN = [
    Button(label="1. Administración de alquileres", value="1"),
    Button(label="2. Consulta de propiedades", value="2"),
    Button(label="3. Consultas generales", value="3"),
]

_BUTTONS: Dict[Step, List[Button]] = {
    Step.MAIN: _MAIN,
    Step.RENTALS_MENU: [
        Button(label="1. Reportar un problema", value="1"),
        Button(label="2. Actualizar por índice", value="2"),
        Button(label="3. Info inquilinos", value="3"),
        Button(label="4. Info propietarios", value="4"),
        Button(label="5. Hablar con un operador", value="5"),
    ],
    Step.PROPERTIES_MENU: [
        Button(label="1. Alquilar", value="1"),
        Button(label="2. Comprar", value="2"),
        Button(label="3. Temporario", value="3"),
        Button(label="4. Vender", value="4"),
    ],
    Step.REPORT_CATEGORY: [Button(label=f"{n}. {c.value}", value=str(n)) for n, c in CATEGORY_MENU.items()],
    Step.INDEX_MENU: [
        Button(label="ICL", value="ICL"),
        Button(label="CAC", value="CAC"),
        Button(label="UVA", value="UVA"),
        Button(label="UVI", value="UVI"),
        Button(label="CER", value="CER"),
        Button(label="Casa Propia", value="Casa Propia"),
        Button(label="IPC INDEC 1 mes", value="IPC INDEC 1"),
        Button(label="IPC INDEC 2 meses", value="IPC INDEC 2"),
        Button(label="IPC CREEBBA 1 mes", value="IPC CREEBBA 1"),
        Button(label="IPC CREEBBA 2 meses", value="IPC CREEBBA 2"),
    ],
    Step.INDEX_CURRENCY: _CURRENCY,
    Step.SEARCH_CURRENCY: _CURRENCY,
    Step.REPORT_PHOTOS_ASK: _YES_NO,
    Step.REPORT_HANDOFF: _YES_NO,
    Step.INDEX_HANDOFF: _YES_NO,
    Step.SEARCH_GARAGE: _YES_NO,
    Step.SEARCH_HANDOFF: _YES_NO,
    Step.SALE_HANDOFF: _YES_NO,
    Step.RATE_FOLLOWUP: _YES_NO,
    Step.GENERAL_AI: [Button(label="Salir del modo consulta", value="salir")],
}


def buttons_for_step(step: Step) -> List[Button]:
    return list(_BUTTONS.get(step, []))
