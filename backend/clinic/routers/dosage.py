# clinic/routers/dosage.py
#
# This router exposes the AI-assisted dispensing helpers. None of them fail
# on an upstream error; each answers with its local fallback instead.

from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..dosage import analyze_external_medicine, calculate_dosage, improve_medical_text
from ..models import DosageRequest, DosageResult, ExternalMedicineRequest, TextRequest
from ..security import get_current_user

router = APIRouter(prefix="/dosage", tags=["Dosage"])


@router.post("/calculate", response_model=DosageResult)
async def calculate(request: DosageRequest, current_user: Dict[str, Any] = Depends(get_current_user)):
    """Quantity to dispense and treatment duration for free-text instructions."""
    return DosageResult(**await calculate_dosage(request.medName, request.instructions, request.unitsPerBox))


@router.post("/analyze-external")
async def analyze_external(request: ExternalMedicineRequest, current_user: Dict[str, Any] = Depends(get_current_user)):
    return await analyze_external_medicine(request.name)


@router.post("/improve-text")
async def improve_text(request: TextRequest, current_user: Dict[str, Any] = Depends(get_current_user)):
    return {"text": await improve_medical_text(request.text)}
