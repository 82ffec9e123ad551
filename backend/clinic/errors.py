# clinic/errors.py
#
# Domain errors raised below the router layer. Routers translate them into
# HTTPException responses.

from typing import List


class ClinicError(Exception):
    """Base class for domain errors."""


class DuplicatePatientError(ClinicError):
    def __init__(self, billing_code: str):
        super().__init__("Código ya registrado")
        self.billing_code = billing_code


class CertificatePasswordError(ClinicError):
    def __init__(self):
        super().__init__("Contraseña incorrecta")


class CertificateMissingError(ClinicError):
    def __init__(self):
        super().__init__("No tiene un certificado digital registrado")


class InvalidBackupError(ClinicError):
    def __init__(self, message: str = "Archivo inválido o incompatible."):
        super().__init__(message)


class WizardGateError(ClinicError):
    def __init__(self, missing: List[str]):
        super().__init__("Secciones sin contenido ni confirmación: " + ", ".join(missing))
        self.missing = missing


class StaleStateError(ClinicError):
    """The stored document is no longer in the state the caller expected."""
