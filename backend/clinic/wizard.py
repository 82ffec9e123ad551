# clinic/wizard.py
#
# The consultation wizard: a linear step sequence whose only guarded
# transition is finishing. Finishing requires every tracked section to either
# have content or carry an explicit omission confirmation from the doctor.

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import WizardGateError

SECTIONS = ('diagnosis', 'prescription', 'exams', 'referrals', 'nursing', 'signature')

SECTION_LABELS = {
    'diagnosis': 'Diagnóstico',
    'prescription': 'Receta',
    'exams': 'Laboratorios',
    'referrals': 'Referencias',
    'nursing': 'Indicaciones de Enfermería',
    'signature': 'Firma',
}


class WizardStep(str, Enum):
    IDLE = 'idle'
    DIAGNOSIS = 'diagnosis'
    PRESCRIPTION = 'prescription'
    EXAMS = 'exams'
    FINALIZE = 'finalize'
    FINISHED = 'finished'


_ORDER = [WizardStep.IDLE, WizardStep.DIAGNOSIS, WizardStep.PRESCRIPTION, WizardStep.EXAMS, WizardStep.FINALIZE]


def _blank(value: Any) -> bool:
    return not value or not str(value).strip()


def has_content(section: str, form: Dict[str, Any]) -> bool:
    if section == 'diagnosis':
        return not _blank(form.get('diagnosis'))
    if section == 'prescription':
        return bool(form.get('prescription')) or not _blank(form.get('prescriptionNotes'))
    if section == 'exams':
        return (bool(form.get('referralGroups')) or bool(form.get('exams'))
                or not _blank(form.get('otherExams')) or not _blank(form.get('referralNote')))
    if section == 'referrals':
        return bool(form.get('specialtyReferrals'))
    if section == 'nursing':
        return not _blank(form.get('followUpText'))
    if section == 'signature':
        return form.get('signature') is not None
    raise ValueError(f"Unknown section: {section}")


def missing_sections(form: Dict[str, Any]) -> List[str]:
    return [s for s in SECTIONS if not has_content(s, form)]


def finish_state(form: Dict[str, Any], confirmed: Iterable[str]) -> Tuple[bool, Dict[str, bool]]:
    """
    Returns (ready, omittedFields). Ready when every empty section is
    confirmed; the omission map holds only sections both empty and confirmed.
    """
    confirmed = set(confirmed)
    missing = missing_sections(form)
    ready = all(s in confirmed for s in missing)
    omitted = {s: True for s in missing if s in confirmed}
    return ready, omitted


def _is_flagged(value: Any) -> bool:
    return value is True or value == 'true'


def reclassify_omissions(omitted: Optional[Dict[str, Any]], form: Dict[str, Any]) -> Dict[str, Any]:
    """A section flagged as omitted that now has content becomes 'edited'."""
    result = dict(omitted or {})
    for section, value in result.items():
        if section in SECTIONS and _is_flagged(value) and has_content(section, form):
            result[section] = 'edited'
    return result


class ConsultationWizard:
    """Step machine over a form. next()/back() are free; finish() is gated."""

    def __init__(self, form: Optional[Dict[str, Any]] = None, step: WizardStep = WizardStep.IDLE,
                 confirmed: Optional[Iterable[str]] = None):
        self.form = dict(form or {})
        self.step = WizardStep(step)
        self.confirmed = set(confirmed or [])
        self.omitted_fields: Dict[str, bool] = {}

    def start(self):
        if self.step == WizardStep.IDLE:
            self.step = WizardStep.DIAGNOSIS
        return self.step

    def next(self):
        if self.step in _ORDER and self.step != WizardStep.FINALIZE:
            self.step = _ORDER[_ORDER.index(self.step) + 1]
        return self.step

    def back(self):
        if self.step in _ORDER and _ORDER.index(self.step) > 1:
            self.step = _ORDER[_ORDER.index(self.step) - 1]
        return self.step

    def toggle_confirmation(self, section: str):
        if section not in SECTIONS:
            raise ValueError(f"Unknown section: {section}")
        if section in self.confirmed:
            self.confirmed.discard(section)
        else:
            self.confirmed.add(section)

    def update(self, **fields):
        self.form.update(fields)

    @property
    def missing(self) -> List[str]:
        return missing_sections(self.form)

    @property
    def can_finish(self) -> bool:
        return finish_state(self.form, self.confirmed)[0]

    def finish(self) -> Dict[str, bool]:
        ready, omitted = finish_state(self.form, self.confirmed)
        if not ready:
            raise WizardGateError([s for s in self.missing if s not in self.confirmed])
        self.omitted_fields = omitted
        self.step = WizardStep.FINISHED
        return omitted

    def snapshot(self) -> Dict[str, Any]:
        return {'step': self.step.value, 'form': self.form, 'confirmedKeys': sorted(self.confirmed)}

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "ConsultationWizard":
        return cls(form=data.get('form'), step=data.get('step', WizardStep.IDLE.value),
                   confirmed=data.get('confirmedKeys'))
