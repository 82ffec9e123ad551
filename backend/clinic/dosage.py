# clinic/dosage.py
#
# Dispensing helpers backed by the Gemini API. Every call degrades
# gracefully: dosage falls back to a local regex heuristic, medicine analysis
# to a fixed placeholder and text improvement to the original text.

import json
import logging
import math
import re
from typing import Any, Dict, Optional

import httpx

from .config import get_settings

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

_FREQUENCIES = [
    (re.compile(r'cada 24|1 vez|una vez|\bom\b|\bod\b'), 1),
    (re.compile(r'cada 12|2 veces|dos veces|\bbid\b'), 2),
    (re.compile(r'cada 8|3 veces|tres veces|\btid\b'), 3),
    (re.compile(r'cada 6|4 veces|cuatro veces|\bqid\b'), 4),
    (re.compile(r'cada 4|6 veces|seis veces'), 6),
]
_DOSE = re.compile(r'(\d+)\s*(?:tab|cap|comp|ml|cc|unid)')
_LEADING_NUMBER = re.compile(r'^(\d+)\s')
_DAYS = re.compile(r'(\d+)\s*(?:dias|días|día|dia|semana|mes)')


def local_dosage(instructions: str, units_per_box: int = 0) -> Dict[str, Any]:
    """Regex estimate of quantity and duration from free-text instructions."""
    lower = instructions.lower()

    daily_freq = 1
    for pattern, freq in _FREQUENCIES:
        if pattern.search(lower):
            daily_freq = freq
            break

    amount_per_dose = 1
    dose_match = _DOSE.search(lower)
    if dose_match:
        amount_per_dose = int(dose_match.group(1))
    else:
        leading = _LEADING_NUMBER.match(lower)
        if leading:
            amount_per_dose = int(leading.group(1))

    days_match = _DAYS.search(lower)
    if days_match:
        value = int(days_match.group(1))
        if 'semana' in lower:
            days = value * 7
        elif 'mes' in lower:
            days = value * 30
        else:
            days = value
        total = daily_freq * amount_per_dose * days
        return {'quantity': total if total > 0 else 1, 'duration': f"{days} días"}

    if units_per_box > 1:
        daily_dose = daily_freq * amount_per_dose
        if daily_dose > 0:
            return {
                'quantity': units_per_box,
                'duration': f"{math.floor(units_per_box / daily_dose)} días (1 Caja)",
            }

    return {'quantity': 1, 'duration': "Hasta terminar / Según indicación"}


async def _generate(prompt: str, json_response: bool = True) -> str:
    settings = get_settings()
    if not settings.gemini_enabled:
        raise RuntimeError("GEMINI_API_KEY not configured")

    body: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
    if json_response:
        body["generationConfig"] = {"responseMimeType": "application/json"}

    async with httpx.AsyncClient(timeout=settings.gemini_timeout_seconds) as client:
        response = await client.post(
            GEMINI_URL.format(model=settings.gemini_model),
            params={"key": settings.gemini_api_key},
            json=body,
        )
        response.raise_for_status()
        data = response.json()

    text = (data.get("candidates") or [{}])[0].get("content", {}).get("parts", [{}])[0].get("text")
    if not text:
        raise ValueError("Empty response from Gemini")
    return text


async def calculate_dosage(med_name: str, instructions: str, units_per_box: int = 0) -> Dict[str, Any]:
    if not instructions.strip():
        return {'quantity': 1, 'duration': "Indefinido"}

    box = units_per_box if units_per_box > 1 else "Desconocido/Unitario"
    prompt = f"""
      Eres un farmacéutico calculando dosis.
      DATOS:
      - Medicamento: "{med_name}"
      - Indicación: "{instructions}"
      - Stock/Presentación (Unidades en caja): {box}

      REGLAS DE CÁLCULO (EN ORDEN):
      1. ¿DURACIÓN EXPLÍCITA? Calcula CANTIDAD = (Dosis Diaria * Días). Duración = Texto original.
      2. ¿SIN DURACIÓN Y CAJA CONOCIDA? (UnitsPerBox > 1): CANTIDAD = UnitsPerBox,
         Duración = (UnitsPerBox / Dosis Diaria) días (1 Caja).
      3. ¿SIN DURACIÓN Y EXTERNO/DESCONOCIDO? NO INVENTES DÍAS. CANTIDAD = 1,
         Duración = "Según indicación médica" o "Hasta terminar".

      Responde ÚNICAMENTE JSON:
      {{ "quantity": NUMBER, "duration": "STRING" }}
    """
    try:
        result = json.loads(await _generate(prompt))
        quantity = result.get('quantity')
        return {
            'quantity': quantity if isinstance(quantity, (int, float)) and not isinstance(quantity, bool) else 1,
            'duration': result.get('duration') or "Según indicación",
            'explanation': "IA",
        }
    except Exception as e:
        logger.warning("DOSAGE: Gemini unavailable for '%s', using local estimate: %s", med_name, e)
        return dict(local_dosage(instructions, units_per_box), explanation="Local")


def external_medicine_fallback(med_name: str) -> Dict[str, str]:
    return {
        'activeIngredient': "No identificado",
        'distributorGT': "Desconocido",
        'pharmacy': "Farmacias Generales",
        'commercialName': med_name,
    }


async def analyze_external_medicine(med_name: str) -> Dict[str, Any]:
    prompt = f"""
        Actúa como un experto farmacéutico en Guatemala.
        Analiza el nombre del medicamento ingresado: "{med_name}".
        Identifica: componente activo, distribuidor probable en Guatemala,
        farmacia común donde se encuentra y nombre comercial estándar.

        Responde ÚNICAMENTE con este JSON:
        {{
            "activeIngredient": "string",
            "distributorGT": "string",
            "pharmacy": "string",
            "commercialName": "string"
        }}
    """
    try:
        result = json.loads(await _generate(prompt))
        if not isinstance(result, dict):
            raise ValueError("Unexpected analysis payload")
        return result
    except Exception as e:
        logger.warning("DOSAGE: Error analyzing external med '%s': %s", med_name, e)
        return external_medicine_fallback(med_name)


async def improve_medical_text(text: str) -> str:
    if not text.strip():
        return ""
    prompt = f"""
      Actúa como un médico especialista redactor de informes clínicos.
      Texto original: "{text}"
      Reescribe este texto para que sea una "Referencia a Especialidad" o "Nota de Salud Mental"
      profesional, formal y concisa. Solo devuelve el texto mejorado.
    """
    try:
        return (await _generate(prompt, json_response=False)).strip() or text
    except Exception as e:
        logger.warning("DOSAGE: Text improvement unavailable: %s", e)
        return text
