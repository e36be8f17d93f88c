from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Step(str, Enum):
    START = "start"
    MAIN = "main"
    RENTALS_MENU = "rentals_menu"
    PROPERTIES_MENU = "properties_menu"
    GENERAL_MENU = "general_menu"
    GENERAL_AI = "general_ai"
    RATE_FOLLOWUP = "rate_followup"

    REPORT_CATEGORY = "report_category"
    REPORT_ADDRESS = "report_address"
    REPORT_DESCRIPTION = "report_description"
    REPORT_PHOTOS_ASK = "report_photos_ask"
    REPORT_PHOTOS_UPLOAD = "report_photos_upload"
    REPORT_HANDOFF = "report_handoff"

    INDEX_MENU = "index_menu"
    INDEX_CURRENCY = "index_currency"
    INDEX_AMOUNT = "index_amount"
    INDEX_INITIAL = "index_initial"
    INDEX_FINAL = "index_final"
    INDEX_HANDOFF = "index_handoff"

    SEARCH_TYPE = "search_type"
    SEARCH_CURRENCY = "search_currency"
    SEARCH_BUDGET = "search_budget"
    SEARCH_ZONE = "search_zone"
    SEARCH_BEDROOMS = "search_bedrooms"
    SEARCH_BATHROOMS = "search_bathrooms"
    SEARCH_GARAGE = "search_garage"
    SEARCH_AMENITIES = "search_amenities"
    SEARCH_HANDOFF = "search_handoff"

    SALE_TYPE = "sale_type"
    SALE_ADDRESS = "sale_address"
    SALE_CONDITION = "sale_condition"
    SALE_COMMENTS = "sale_comments"
    SALE_HANDOFF = "sale_handoff"


REPORT_STEPS = frozenset(
    {
        Step.REPORT_CATEGORY,
        Step.REPORT_ADDRESS,
        Step.REPORT_DESCRIPTION,
        Step.REPORT_PHOTOS_ASK,
        Step.REPORT_PHOTOS_UPLOAD,
        Step.REPORT_HANDOFF,
    }
)
INDEX_STEPS = frozenset(
    {Step.INDEX_MENU, Step.INDEX_CURRENCY, Step.INDEX_AMOUNT, Step.INDEX_INITIAL, Step.INDEX_FINAL, Step.INDEX_HANDOFF}
)
SEARCH_STEPS = frozenset(
    {
        Step.SEARCH_TYPE,
        Step.SEARCH_CURRENCY,
        Step.SEARCH_BUDGET,
        Step.SEARCH_ZONE,
        Step.SEARCH_BEDROOMS,
        Step.SEARCH_BATHROOMS,
        Step.SEARCH_GARAGE,
        Step.SEARCH_AMENITIES,
        Step.SEARCH_HANDOFF,
    }
)
SALE_STEPS = frozenset({Step.SALE_TYPE, Step.SALE_ADDRESS, Step.SALE_CONDITION, Step.SALE_COMMENTS, Step.SALE_HANDOFF})
# Steps where the resolver cascade may run.
NLU_STEPS = frozenset(
    {Step.START, Step.MAIN, Step.RENTALS_MENU, Step.PROPERTIES_MENU, Step.GENERAL_MENU, Step.INDEX_MENU}
)
# Typed-input steps; the dialogue engine validates these itself.
NUMERIC_STEPS = frozenset(
    {
        Step.REPORT_CATEGORY,
        Step.INDEX_CURRENCY,
        Step.INDEX_AMOUNT,
        Step.INDEX_INITIAL,
        Step.INDEX_FINAL,
        Step.SEARCH_CURRENCY,
        Step.SEARCH_BUDGET,
        Step.SEARCH_BEDROOMS,
        Step.SEARCH_BATHROOMS,
    }
)


class IntentType(str, Enum):
    REPORT_ISSUE = "report_issue"
    INDEX_UPDATE = "index_update"
    TENANT_INFO = "tenant_info"
    OWNER_INFO = "owner_info"
    PROPERTIES_RENT = "properties_rent"
    PROPERTIES_BUY = "properties_buy"
    PROPERTIES_TEMP = "properties_temp"
    PROPERTIES_SELL = "properties_sell"
    OPERATOR = "operator"
    GREETING = "greeting"
    THANKS = "thanks"
    GOODBYE = "goodbye"
    OTHER = "other"


class IssueCategory(str, Enum):
    PLUMBING = "Plomería"
    GAS = "Gas"
    ELECTRICAL = "Electricidad"
    APPLIANCE = "Artefacto roto"
    OTHER = "Otro"


class IndexCode(str, Enum):
    ICL = "ICL"
    CAC = "CAC"
    UVA = "UVA"
    UVI = "UVI"
    CER = "CER"
    CASA_PROPIA = "CASA_PROPIA"
    IPC_INDEC_2M = "IPC_INDEC_2M"
    IPC_INDEC_1M = "IPC_INDEC_1M"
    IPC_CREEBBA_2M = "IPC_CREEBBA_2M"
    IPC_CREEBBA_1M = "IPC_CREEBBA_1M"

    @property
    def label(self) -> str:
        return {
            IndexCode.ICL: "ICL (BCRA)",
            IndexCode.CAC: "CAC (Construcción)",
            IndexCode.UVA: "UVA",
            IndexCode.UVI: "UVI",
            IndexCode.CER: "CER",
            IndexCode.CASA_PROPIA: "Coeficiente Casa Propia",
            IndexCode.IPC_INDEC_2M: "IPC (INDEC) – 2 meses",
            IndexCode.IPC_INDEC_1M: "IPC (INDEC) – 1 mes",
            IndexCode.IPC_CREEBBA_2M: "IPC (CREEBBA) – 2 meses",
            IndexCode.IPC_CREEBBA_1M: "IPC (CREEBBA) – 1 mes",
        }[self]


class Currency(str, Enum):
    ARS = "ARS"
    USD = "USD"


class PropertyOperation(str, Enum):
    RENT = "alquilar"
    BUY = "comprar"
    TEMPORARY = "temporario"
    SELL = "vender"


class Disambiguation(str, Enum):
    OWNER_OR_OTHER = "owner_or_other"
    CLARIFY_GENERIC = "clarify_generic"


class ResolverTier(str, Enum):
    PATTERN = "pattern"
    HEURISTIC = "heuristic"
    CLASSIFIER = "classifier"
    QA = "qa"


class FinishReason(str, Enum):
    AGENT = "agent"
    USER = "user"
    TIMEOUT = "timeout"
    LOGOUT = "logout"


class MessageAuthor(str, Enum):
    USER = "user"
    BOT = "bot"
    AGENT = "agent"
    SYSTEM = "system"


class IntentSlots(BaseModel):
    model_config = ConfigDict(extra="ignore")

    category: Optional[str] = None
    index: Optional[str] = None
    zone: Optional[str] = None
    budget: Optional[float] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    garage: Optional[bool] = None
    description: Optional[str] = None


class NLUResult(BaseModel):
    intent: IntentType
    slots: IntentSlots = Field(default_factory=IntentSlots)
    confidence: float = 1.0
    follow_up_question: Optional[str] = None


class IntentHint(BaseModel):
    budget: float


class Resolution(BaseModel):
    tier: ResolverTier
    intent: Optional[NLUResult] = None
    hint: Optional[IntentHint] = None
    qa_answer: Optional[str] = None


class EscalationState(BaseModel):
    streak: int = 0
    last_escalation_at: Optional[float] = None


class AIAssistState(BaseModel):
    active: bool = False
    expires_at: Optional[float] = None


class Photo(BaseModel):
    url: str
    media_type: str = "image/*"
    name: str = ""


class Listing(BaseModel):
    id: str
    title: str
    price: float
    currency: Currency
    excerpt: str = ""
    image_url: Optional[str] = None
    link: str = ""
    zone: Optional[str] = None
    property_type: Optional[str] = None
    operation: Optional[PropertyOperation] = None


class ListingQuery(BaseModel):
    operation: PropertyOperation
    property_type: str
    zone: Optional[str] = None
    budget: float
    currency: Currency
    tolerance_percent: float = 15.0

    def price_band(self) -> tuple[float, float]:
        delta = self.budget * self.tolerance_percent / 100.0
        return self.budget - delta, self.budget + delta


class IndexCalculation(BaseModel):
    factor: float
    variation_percent: float
    new_amount: float


class FlowData(BaseModel):
    awaiting: Optional[Disambiguation] = None


class NavigationData(FlowData):
    flow: Literal["navigation"] = "navigation"


class IssueReportData(FlowData):
    flow: Literal["issue_report"] = "issue_report"
    category: Optional[IssueCategory] = None
    address: Optional[str] = None
    description: Optional[str] = None
    photos: List[Photo] = Field(default_factory=list)


class IndexCalcData(FlowData):
    flow: Literal["index_calc"] = "index_calc"
    index_code: Optional[IndexCode] = None
    currency: Optional[Currency] = None
    current_amount: Optional[float] = None
    initial_value: Optional[float] = None
    final_value: Optional[float] = None
    result: Optional[IndexCalculation] = None


class PropertySearchData(FlowData):
    flow: Literal["property_search"] = "property_search"
    operation: PropertyOperation = PropertyOperation.RENT
    property_type: Optional[str] = None
    currency: Optional[Currency] = None
    budget: Optional[float] = None
    zone: Optional[str] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    garage: Optional[bool] = None
    amenities: Optional[str] = None
    results: List[Listing] = Field(default_factory=list)
    zone_relaxed: bool = False


class SaleData(FlowData):
    flow: Literal["property_sale"] = "property_sale"
    property_type: Optional[str] = None
    address: Optional[str] = None
    condition: Optional[str] = None
    comments: Optional[str] = None


class AssistData(FlowData):
    flow: Literal["assist"] = "assist"
    ai: AIAssistState = Field(default_factory=AIAssistState)


SessionData = Annotated[
    Union[NavigationData, IssueReportData, IndexCalcData, PropertySearchData, SaleData, AssistData],
    Field(discriminator="flow"),
]


class Session(BaseModel):
    conversation_id: str
    step: Step = Step.START
    data: SessionData = Field(default_factory=NavigationData)
    history: List[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class EscalationPayload(BaseModel):
    reason: Optional[str] = None
    category: Optional[str] = None
    address: Optional[str] = None
    description: Optional[str] = None
    photos: List[str] = Field(default_factory=list)
    index_name: Optional[str] = None
    calculation: Optional[str] = None
    property_form: Dict[str, Any] = Field(default_factory=dict)

    def topic(self) -> str:
        if self.category:
            return f"🛠 {self.category}"
        if self.property_form:
            op = str(self.property_form.get("operation") or "")
            op_label = {"alquilar": "Alquiler", "comprar": "Compra", "temporario": "Temporario", "vender": "Venta"}.get(op, "Propiedad")
            kind = str(self.property_form.get("property_type") or "")
            return f"🏠 {op_label} {kind}".strip()
        if self.index_name:
            return f"📈 {self.index_name}"
        if self.reason:
            return self.reason.replace("(número)", "").strip()
        return "Consulta General"


class PendingQueueEntry(BaseModel):
    conversation_id: str
    enqueued_at: float
    payload: EscalationPayload = Field(default_factory=EscalationPayload)


class AgentIdentity(BaseModel):
    agent_id: str
    name: str = "Agente"


class HandoffRecord(BaseModel):
    conversation_id: str
    agent: AgentIdentity
    agent_channel: Optional[str] = None
    payload: EscalationPayload = Field(default_factory=EscalationPayload)
    assigned_at: float
    last_activity: float
    no_timeout: bool = False


class AssignResult(BaseModel):
    record: HandoffRecord
    created: bool
    payload: EscalationPayload


class Button(BaseModel):
    label: str
    value: str


class OutboundMessage(BaseModel):
    author: MessageAuthor = MessageAuthor.BOT
    kind: str = "text"
    text: str = ""
    buttons: List[Button] = Field(default_factory=list)
    cards: List[Listing] = Field(default_factory=list)
    media_url: Optional[str] = None


class TranscriptMessage(BaseModel):
    who: MessageAuthor
    text: str = ""
    media_url: Optional[str] = None
    type: str = "text"
    timestamp: float


class TurnResult(BaseModel):
    conversation_id: str
    step: Step
    replies: List[str] = Field(default_factory=list)
    buttons: List[Button] = Field(default_factory=list)
    cards: List[Listing] = Field(default_factory=list)
    escalation: Optional[EscalationPayload] = None
    enqueued: bool = False
    human_mode: bool = False


class AgentDecisionLog(BaseModel):
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    conversation_id: str
    agent: str
    action: str
    reasoning: str
    step: Optional[str] = None
    outcome: str = "ok"
