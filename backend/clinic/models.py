# clinic/models.py
#
# This module contains all Pydantic models used for data validation,
# serialization, and API request/response schemas.
#
# Stored documents are loosely typed; response models therefore allow extra
# fields so older documents round-trip without loss.

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Role = Literal['doctor', 'nurse', 'receptionist', 'admin', 'resident']
ConsultationStatus = Literal['waiting', 'in_progress', 'finished', 'delivered']
AppointmentStatus = Literal[
    'scheduled', 'confirmed_phone', 'paid_checked_in', 'in_progress',
    'completed', 'cancelled', 'no_show',
]
DocumentType = Literal['prescription', 'labs', 'report']


def title_case(value: str) -> str:
    """'  maynor   BOTEO ' -> 'Maynor Boteo'"""
    return " ".join(w[:1].upper() + w[1:] for w in value.lower().split())


# --- Users & Auth ---

class DigitalCertData(BaseModel):
    model_config = ConfigDict(extra='allow')

    fileKey: Optional[str] = None
    issuedBy: Optional[str] = None
    issuedTo: Optional[str] = None
    serialNumber: Optional[str] = None
    expiryDate: Optional[str] = None


class UserProfile(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: str
    email: Optional[str] = None
    role: str
    name: Optional[str] = None
    specialty: Optional[str] = None
    isActive: bool = True
    disableReason: Optional[str] = None
    digitalCertData: Optional[DigitalCertData] = None
    createdAt: Optional[str] = None


class LoginResponse(BaseModel):
    message: str
    api_token: str
    user_profile: UserProfile
    sessionStart: int
    expiresInMs: int


class SessionInfo(BaseModel):
    sessionStart: int
    expiresInMs: int


class UserCreate(BaseModel):
    email: str
    password: str = Field(min_length=6)
    name: str = Field(min_length=1)
    role: Role
    specialty: Optional[str] = None


class UserUpdate(BaseModel):
    name: Optional[str] = None
    role: Optional[Role] = None
    specialty: Optional[str] = None


class SelfProfileUpdate(BaseModel):
    name: Optional[str] = None
    specialty: Optional[str] = None


class EmailChange(BaseModel):
    newEmail: str

    @field_validator("newEmail")
    @classmethod
    def validate_email(cls, v):
        v = v.strip()
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("Correo electrónico inválido")
        return v


class PasswordChange(BaseModel):
    newPassword: str = Field(min_length=6)


class StatusToggle(BaseModel):
    isActive: bool
    reason: Optional[str] = None


# --- Patients ---

class Address(BaseModel):
    country: Optional[str] = None
    department: Optional[str] = None
    municipality: Optional[str] = None
    zone: Optional[str] = None

    @model_validator(mode="after")
    def cascade_clear(self):
        # A cleared level clears everything beneath it.
        if not self.country:
            self.department = None
        if not self.department:
            self.municipality = None
        if not self.municipality:
            self.zone = None
        return self


class PatientBase(BaseModel):
    fullName: str = Field(min_length=3)
    occupation: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    noResponsible: bool = False
    responsibleName: Optional[str] = None
    responsiblePhone: Optional[str] = None
    responsibleEmail: Optional[str] = None
    address: Optional[Address] = None
    consultationType: Literal['Nueva', 'Reconsulta'] = 'Nueva'
    previousTreatment: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=0, le=120)
    gender: Optional[Literal['M', 'F']] = None
    origin: Optional[str] = None
    protocol_code: Optional[str] = None
    medical_history: Optional[str] = None

    @field_validator("fullName")
    @classmethod
    def normalize_name(cls, v):
        return title_case(v)

    @model_validator(mode="after")
    def check_rules(self):
        if self.origin == 'IGSS' and not self.protocol_code:
            raise ValueError("El código de protocolo es obligatorio para pacientes IGSS")
        if self.noResponsible:
            self.responsibleName = "No hay"
            self.responsiblePhone = "No hay"
            self.responsibleEmail = "No hay"
        return self


class PatientCreate(PatientBase):
    billingCode: str = Field(min_length=1)

    @field_validator("billingCode")
    @classmethod
    def strip_code(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("El código es obligatorio")
        return v


class PatientUpdate(PatientBase):
    fullName: Optional[str] = None
    consultationType: Optional[Literal['Nueva', 'Reconsulta']] = None

    @field_validator("fullName")
    @classmethod
    def normalize_name(cls, v):
        return title_case(v) if v else v


class HistoryFile(BaseModel):
    name: str
    url: str
    type: Optional[str] = None
    uploadedAt: str


class Patient(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: str
    billingCode: Optional[str] = None
    fullName: str
    isActive: bool = True
    historyFiles: List[HistoryFile] = []


# --- Consultation form ---

class ReferralGroup(BaseModel):
    id: Optional[str] = None
    pathology: str
    exams: List[str] = []
    note: Optional[str] = None


class SpecialtyReferral(BaseModel):
    id: Optional[str] = None
    specialty: str
    note: Optional[str] = None


class PrescriptionItem(BaseModel):
    model_config = ConfigDict(extra='allow')

    medId: Optional[str] = None
    name: str
    quantity: float = 1
    dosage: str = ""
    duration_days: Optional[str] = None
    isExternal: bool = False
    units_per_box: Optional[int] = None
    presentation: Optional[str] = None


class Vitals(BaseModel):
    model_config = ConfigDict(extra='allow')

    temp: Optional[str] = None
    pressure: Optional[str] = None
    weight: Optional[str] = None


class Signature(BaseModel):
    model_config = ConfigDict(extra='allow')

    type: Literal['manual', 'digital_p12']
    signerName: Optional[str] = None
    signatureDate: Optional[int] = None
    certificateSerial: Optional[str] = None
    issuedBy: Optional[str] = None


class ConsultationForm(BaseModel):
    """The editable clinical content of a consultation."""
    vitals: Optional[Vitals] = None
    diagnosis: str = ""
    referralGroups: List[ReferralGroup] = []
    referralNote: str = ""
    exams: List[str] = []
    otherExams: str = ""
    specialtyReferrals: List[SpecialtyReferral] = []
    mentalHealthObservation: str = ""
    prescription: List[PrescriptionItem] = []
    prescriptionNotes: str = ""
    followUpText: str = ""
    signature: Optional[Signature] = None

    @field_validator("signature")
    @classmethod
    def manual_marker_only(cls, v):
        # Digital signatures are produced server-side from the stored certificate
        if v is not None and v.type != 'manual':
            raise ValueError("La firma digital se aplica con la contraseña del certificado, no desde el formulario")
        return v


class SignatureRequest(BaseModel):
    method: Literal['manual', 'digital']
    password: Optional[str] = None


class FinishRequest(BaseModel):
    form: ConsultationForm
    confirmedKeys: List[str] = []
    signature: Optional[SignatureRequest] = None


class ConsultationEdit(ConsultationForm):
    pass


class CheckInRequest(BaseModel):
    patientId: str
    doctorId: str
    paymentReceipt: str = Field(min_length=1)
    paymentAmount: float = Field(ge=0)
    appointmentId: Optional[str] = None


class CancelRequest(BaseModel):
    reason: str = Field(min_length=1)

    @field_validator("reason")
    @classmethod
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError("El motivo es obligatorio")
        return v.strip()


class DeliverRequest(BaseModel):
    nonPrintReason: Optional[str] = None


class Consultation(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: str
    status: ConsultationStatus
    patientId: str
    patientName: Optional[str] = None
    doctorId: Optional[str] = None
    doctorName: Optional[str] = None
    date: int
    omittedFields: Dict[str, Any] = {}
    printedDocs: Dict[str, bool] = {}


# --- Appointments ---

class AppointmentCreate(BaseModel):
    patientId: str
    patientName: str
    doctorId: str
    doctorName: str
    date: int
    endDate: Optional[int] = None
    reason: Optional[str] = None


class ConfirmRequest(BaseModel):
    method: Literal['En Persona', 'Por Teléfono', 'Por WhatsApp'] = 'Por Teléfono'


class PaymentRequest(BaseModel):
    receipt: str = Field(min_length=1)
    amount: float = Field(ge=0)


class Appointment(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: str
    patientId: str
    patientName: str
    doctorId: str
    doctorName: Optional[str] = None
    date: int
    status: AppointmentStatus


# --- Notifications ---

class Notification(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: str
    title: str
    message: str
    type: Literal['info', 'success', 'alert'] = 'info'
    targetRole: Optional[str] = None
    targetUserId: Optional[str] = None
    read: bool = False
    timestamp: str


# --- Admin / backup ---

class DeleteRequest(BaseModel):
    reason: str = Field(min_length=1)


class BackupSettings(BaseModel):
    model_config = ConfigDict(extra='allow')

    enabled: bool = False
    days: List[int] = []
    lastBackupDate: Optional[str] = None
    lastBackupDisplay: Optional[str] = None

    @field_validator("days")
    @classmethod
    def valid_weekdays(cls, v):
        # 0 = Sunday ... 6 = Saturday
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("Los días deben estar entre 0 (domingo) y 6 (sábado)")
        return sorted(set(v))


class Paginated(BaseModel):
    items: List[Dict[str, Any]]
    total: int
    page: int
    perPage: int
    pages: int


# --- Dosage / medicines ---

class DosageRequest(BaseModel):
    medName: str
    instructions: str = ""
    unitsPerBox: int = 0


class DosageResult(BaseModel):
    quantity: float
    duration: str
    explanation: Optional[str] = None


class ExternalMedicineRequest(BaseModel):
    name: str = Field(min_length=2)


class TextRequest(BaseModel):
    text: str = ""


class IncomeSummary(BaseModel):
    totalIncome: float
    consultationCount: int
    averageTicket: float
    transactions: List[Dict[str, Any]]
